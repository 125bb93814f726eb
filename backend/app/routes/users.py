"""Profile provisioning for users created by the external auth provider."""

import logging

from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import verify_api_key
from app.database import get_db
from app.repositories.patient import ProfileRepository
from app.schemas.patient import SignupRequest, SignupResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", response_model=SignupResponse, status_code=status.HTTP_201_CREATED)
async def create_user_profile(
    data: SignupRequest = Body(...),
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
) -> SignupResponse:
    """Create the patient, doctor or admin profile for an auth identity.

    The payload shape is selected by ``role``.

    Raises:
        HTTPException: 409 if the auth identity already has a profile of this role.
    """
    try:
        profile = await ProfileRepository(db).create_profile(data)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning("Duplicate %s profile for auth user %s", data.role, data.auth_user_id)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A {data.role} profile already exists for this user",
        )

    logger.info("Created %s profile %s", data.role, profile.id)
    return SignupResponse(id=profile.id, role=data.role, auth_user_id=profile.auth_user_id)
