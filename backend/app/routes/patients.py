"""Patient API routes."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import verify_api_key
from app.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from app.database import get_db
from app.repositories.patient import ProfileRepository
from app.schemas.patient import PatientListResponse, PatientResponse

router = APIRouter(prefix="/patients", tags=["patients"])


@router.get("", response_model=PatientListResponse)
async def list_patients(
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    skip: int = 0,
    limit: int = DEFAULT_PAGE_SIZE,
) -> PatientListResponse:
    """List patients with pagination.

    Args:
        skip: Number of records to skip (for pagination).
        limit: Maximum number of records to return (max 100).
    """
    # Enforce page bounds
    skip = max(skip, 0)
    limit = max(1, min(limit, MAX_PAGE_SIZE))

    patients, total = await ProfileRepository(db).list_patients(skip=skip, limit=limit)
    return PatientListResponse(
        items=[PatientResponse.model_validate(p) for p in patients],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/{patient_id}", response_model=PatientResponse)
async def get_patient(
    patient_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
) -> PatientResponse:
    """Get a single patient by ID.

    Raises:
        HTTPException: 404 if patient not found.
    """
    patient = await ProfileRepository(db).get_patient(patient_id)
    if patient is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Patient not found",
        )
    return PatientResponse.model_validate(patient)
