"""Vector search over visit embeddings.

Uses pgvector's cosine distance operator with an HNSW index, scoped to a
single patient's visits.

SECURITY: This service enforces patient-scoped queries but does NOT perform
authentication or authorization. API routes MUST verify that the caller may
access the requested patient_id before calling these methods.
"""

import logging
import math
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.visit import EMBEDDING_DIMENSION, Visit

logger = logging.getLogger(__name__)

# Default similarity threshold (cosine similarity, 0-1 scale)
DEFAULT_THRESHOLD = 0.7

# Default maximum results to return
DEFAULT_LIMIT = 5

# Hard maximum limit to prevent resource exhaustion
MAX_LIMIT = 100


@dataclass
class SearchResult:
    """A visit with its similarity score.

    Attributes:
        visit: The matching visit (doctor relationship loaded).
        score: Cosine similarity score (0-1, higher is more similar).
    """

    visit: Visit
    score: float


def _validate_search_params(query_embedding: list[float], limit: int, threshold: float) -> None:
    if not query_embedding:
        raise ValueError("query_embedding cannot be empty")
    if len(query_embedding) != EMBEDDING_DIMENSION:
        raise ValueError(
            f"query_embedding must have exactly {EMBEDDING_DIMENSION} dimensions, "
            f"got {len(query_embedding)}"
        )
    if not all(
        isinstance(v, (int, float)) and not math.isnan(v) and not math.isinf(v)
        for v in query_embedding
    ):
        raise ValueError("query_embedding contains invalid values (NaN or Inf)")

    if limit < 1:
        raise ValueError("limit must be at least 1")
    if limit > MAX_LIMIT:
        raise ValueError(f"limit cannot exceed {MAX_LIMIT}")

    if not (0.0 <= threshold <= 1.0):
        raise ValueError("threshold must be between 0.0 and 1.0")


class VectorSearchService:
    """
    Semantic similarity search over a patient's past visits.

    Example:
        async with async_session_maker() as session:
            service = VectorSearchService(session)
            results = await service.search_similar(
                patient_id=patient_uuid,
                query_embedding=embedding_vector,
                limit=3,
                threshold=0.5,
            )
            for result in results:
                print(f"{result.visit.diagnosis}: {result.score:.3f}")
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    async def search_similar(
        self,
        patient_id: uuid.UUID,
        query_embedding: list[float],
        limit: int = DEFAULT_LIMIT,
        threshold: float = DEFAULT_THRESHOLD,
        embedding_model: str | None = None,
    ) -> list[SearchResult]:
        """
        Find the patient's visits most similar to the query embedding.

        Args:
            patient_id: The patient to scope the search to.
            query_embedding: The query embedding vector (1536 dimensions).
            limit: Maximum number of results (1-100).
            threshold: Minimum cosine similarity (0-1) for a visit to be returned.
            embedding_model: If given, only vectors produced by this model are
                compared; vectors from other models live in a different space.

        Returns:
            Results ordered by similarity (highest first), ties broken by the
            most recent visit date. May be empty.

        Raises:
            ValueError: If parameters are invalid (wrong dimensions, out of range, etc.)
        """
        _validate_search_params(query_embedding, limit, threshold)

        # pgvector's <=> operator returns cosine distance (0 = identical, 2 = opposite)
        # similarity = 1 - distance, so similarity >= threshold <=> distance <= 1 - threshold
        max_distance = 1 - threshold

        conditions = [
            Visit.patient_id == patient_id,
            Visit.embedding.isnot(None),
        ]
        if embedding_model is not None:
            conditions.append(Visit.embedding_model == embedding_model)

        # Filter and order on the distance expression directly, no subquery
        distance = Visit.embedding.cosine_distance(query_embedding)
        query = (
            select(Visit, distance.label("distance"))
            .where(*conditions, distance <= max_distance)
            .order_by(distance, Visit.visit_date.desc())
            .limit(limit)
        )

        result = await self._session.execute(query)

        search_results = []
        for visit, row_distance in result.all():
            similarity = 1 - float(row_distance)
            if similarity < threshold:
                continue
            search_results.append(SearchResult(visit=visit, score=min(similarity, 1.0)))

        return search_results

    async def search_by_text(
        self,
        patient_id: uuid.UUID,
        query_text: str,
        embed_fn: Callable[[str], Awaitable[list[float]]],
        limit: int = DEFAULT_LIMIT,
        threshold: float = DEFAULT_THRESHOLD,
        embedding_model: str | None = None,
    ) -> list[SearchResult]:
        """
        Search for visits similar to a text query.

        Args:
            patient_id: The patient to scope the search to.
            query_text: The text query to search for.
            embed_fn: Async function that takes text and returns embedding vector.
                     Typically EmbeddingService.embed_text.
            limit: Maximum number of results.
            threshold: Minimum similarity score (0-1).
            embedding_model: Restrict to vectors from this model.

        Raises:
            ValueError: If query_text is empty.
        """
        if not query_text or not query_text.strip():
            raise ValueError("query_text cannot be empty")

        query_embedding = await embed_fn(query_text)

        return await self.search_similar(
            patient_id=patient_id,
            query_embedding=query_embedding,
            limit=limit,
            threshold=threshold,
            embedding_model=embedding_model,
        )
