"""Visit repository."""

import uuid
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.visit import Visit


class VisitRepository:
    """Read and write access to visits.

    Writes are flushed so generated ids are available; committing is left
    to the caller.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, **fields: Any) -> Visit:
        visit = Visit(**fields)
        self.db.add(visit)
        await self.db.flush()
        return visit

    async def get(self, visit_id: uuid.UUID) -> Visit | None:
        return await self.db.get(Visit, visit_id)

    async def get_for_patient(self, visit_id: uuid.UUID, patient_id: uuid.UUID) -> Visit | None:
        """Fetch a visit only if it belongs to the given patient."""
        result = await self.db.execute(
            select(Visit).where(Visit.id == visit_id, Visit.patient_id == patient_id)
        )
        return result.scalar_one_or_none()

    async def list_recent(self, patient_id: uuid.UUID, limit: int = 10) -> list[Visit]:
        """Most recent visits for a patient, newest first."""
        result = await self.db.execute(
            select(Visit)
            .where(Visit.patient_id == patient_id)
            .order_by(Visit.visit_date.desc(), Visit.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_for_patient(
        self, patient_id: uuid.UUID, skip: int = 0, limit: int = 50
    ) -> tuple[list[Visit], int]:
        """Paginated visits for a patient, newest first.

        Returns:
            Tuple of (visits, total count).
        """
        total = await self.db.scalar(
            select(func.count()).select_from(Visit).where(Visit.patient_id == patient_id)
        )
        result = await self.db.execute(
            select(Visit)
            .where(Visit.patient_id == patient_id)
            .order_by(Visit.visit_date.desc(), Visit.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0

    async def list_needing_embedding(self, model: str, limit: int = 100) -> list[Visit]:
        """Visits with no embedding, or one produced by a different model."""
        result = await self.db.execute(
            select(Visit)
            .where(
                or_(
                    Visit.embedding.is_(None),
                    Visit.embedding_model.is_(None),
                    Visit.embedding_model != model,
                )
            )
            .order_by(Visit.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())
