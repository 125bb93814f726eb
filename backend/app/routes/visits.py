"""Visit API routes: recording, lookup and similarity search."""

import logging
import uuid
from collections.abc import AsyncGenerator

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import verify_api_key
from app.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from app.database import get_db
from app.exceptions import EmbeddingUnavailableError
from app.repositories.patient import ProfileRepository
from app.repositories.visit import VisitRepository
from app.schemas.visit import (
    SimilaritySearchRequest,
    SimilaritySearchResponse,
    SimilarVisitResponse,
    VisitCreate,
    VisitListResponse,
    VisitResponse,
)
from app.services.embeddings import EmbeddingService, generate_visit_embedding
from app.services.vector_search import VectorSearchService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/visits", tags=["visits"])


async def get_embedding_service() -> AsyncGenerator[EmbeddingService, None]:
    service = EmbeddingService()
    try:
        yield service
    finally:
        await service.close()


@router.post("", response_model=VisitResponse, status_code=status.HTTP_201_CREATED)
async def create_visit(
    visit_data: VisitCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
) -> VisitResponse:
    """Record a visit from a doctor form or a patient self-entry.

    The embedding is generated in the background after the response.

    Raises:
        HTTPException: 404 if the patient or doctor does not exist.
    """
    profiles = ProfileRepository(db)
    if await profiles.get_patient(visit_data.patient_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")
    if visit_data.doctor_id is not None and await profiles.get_doctor(visit_data.doctor_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Doctor not found")

    fields = visit_data.model_dump(exclude_none=True)
    visit = await VisitRepository(db).create(**fields)
    await db.commit()

    background_tasks.add_task(generate_visit_embedding, visit.id)
    logger.info("Recorded %s visit %s for patient %s", visit.visit_type.value, visit.id, visit.patient_id)
    return VisitResponse.model_validate(visit)


@router.get("", response_model=VisitListResponse)
async def list_visits(
    patient_id: uuid.UUID,
    skip: int = Query(0, ge=0),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
) -> VisitListResponse:
    """List a patient's visits, newest first."""
    visits, total = await VisitRepository(db).list_for_patient(patient_id, skip=skip, limit=limit)
    return VisitListResponse(
        items=[VisitResponse.model_validate(v) for v in visits],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/{visit_id}", response_model=VisitResponse)
async def get_visit(
    visit_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
) -> VisitResponse:
    """Get a single visit by ID."""
    visit = await VisitRepository(db).get(visit_id)
    if visit is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Visit not found")
    return VisitResponse.model_validate(visit)


@router.post("/{visit_id}/embedding", response_model=VisitResponse)
async def regenerate_visit_embedding(
    visit_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    embedding_service: EmbeddingService = Depends(get_embedding_service),
    _api_key: str = Depends(verify_api_key),
) -> VisitResponse:
    """Generate (or regenerate) a visit's embedding synchronously.

    Raises:
        HTTPException: 404 unknown visit, 503 embedding provider unavailable.
    """
    visit = await VisitRepository(db).get(visit_id)
    if visit is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Visit not found")

    try:
        await embedding_service.embed_visit(visit)
    except EmbeddingUnavailableError:
        logger.error("Embedding generation failed for visit %s", visit_id, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Embedding service is unavailable right now",
        )

    await db.commit()
    return VisitResponse.model_validate(visit)


@router.post("/search", response_model=SimilaritySearchResponse)
async def search_similar_visits(
    request: SimilaritySearchRequest,
    db: AsyncSession = Depends(get_db),
    embedding_service: EmbeddingService = Depends(get_embedding_service),
    _api_key: str = Depends(verify_api_key),
) -> SimilaritySearchResponse:
    """Find a patient's past visits similar to a free-text query.

    Raises:
        HTTPException: 404 unknown patient, 503 embedding provider unavailable.
    """
    if await ProfileRepository(db).get_patient(request.patient_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")

    try:
        results = await VectorSearchService(db).search_by_text(
            patient_id=request.patient_id,
            query_text=request.query,
            embed_fn=embedding_service.embed_text,
            limit=request.limit,
            threshold=request.threshold,
            embedding_model=embedding_service.model,
        )
    except EmbeddingUnavailableError:
        logger.error("Similarity search could not embed the query", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Embedding service is unavailable right now",
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    items = [
        SimilarVisitResponse(
            visit=VisitResponse.model_validate(r.visit),
            doctor_name=r.visit.doctor_name,
            similarity=r.score,
        )
        for r in results
    ]
    average = sum(r.score for r in results) / len(results) if results else None

    return SimilaritySearchResponse(
        results=items,
        total=len(items),
        threshold=request.threshold,
        limit=request.limit,
        average_similarity=average,
    )
