"""Chat message repository.

Every query is scoped by ``patient_id``: session ids are caller-chosen and
only unique within one patient's conversations.
"""

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.chat import ChatMessage, ChatMessageVisit, ChatRole


@dataclass
class SessionStats:
    """Aggregate view of one chat session."""

    session_id: str
    message_count: int
    last_activity: datetime
    last_message: str
    last_role: ChatRole


class ChatRepository:
    """Repository for chat messages and their visit links."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add_message(
        self,
        *,
        patient_id: uuid.UUID,
        session_id: str,
        role: ChatRole,
        message: str,
        timestamp: datetime,
        has_diagnosis: bool | None = None,
        idempotency_key: str | None = None,
    ) -> ChatMessage:
        chat_message = ChatMessage(
            patient_id=patient_id,
            session_id=session_id,
            role=role,
            message=message,
            timestamp=timestamp,
            has_diagnosis=has_diagnosis,
            idempotency_key=idempotency_key,
        )
        self.db.add(chat_message)
        await self.db.flush()
        return chat_message

    async def link_visits(
        self, message_ids: Iterable[uuid.UUID], visit_ids: Iterable[uuid.UUID]
    ) -> int:
        """Link every message to every visit. Returns the number of links added."""
        visit_ids = list(dict.fromkeys(visit_ids))
        links = [
            ChatMessageVisit(chat_message_id=message_id, visit_id=visit_id)
            for message_id in message_ids
            for visit_id in visit_ids
        ]
        if not links:
            return 0
        self.db.add_all(links)
        await self.db.flush()
        return len(links)

    async def find_by_idempotency_key(
        self, patient_id: uuid.UUID, session_id: str, idempotency_key: str
    ) -> ChatMessage | None:
        result = await self.db.execute(
            select(ChatMessage).where(
                ChatMessage.patient_id == patient_id,
                ChatMessage.session_id == session_id,
                ChatMessage.idempotency_key == idempotency_key,
            )
        )
        return result.scalars().first()

    async def get_history(
        self,
        patient_id: uuid.UUID,
        session_id: str | None = None,
        limit: int = 50,
    ) -> list[ChatMessage]:
        """Latest ``limit`` messages, returned oldest first."""
        stmt = select(ChatMessage).where(ChatMessage.patient_id == patient_id)
        if session_id is not None:
            stmt = stmt.where(ChatMessage.session_id == session_id)
        stmt = stmt.order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc()).limit(limit)

        result = await self.db.execute(stmt)
        messages = list(result.scalars().all())
        messages.reverse()
        return messages

    async def list_sessions(self, patient_id: uuid.UUID, limit: int = 10) -> list[SessionStats]:
        """Most recently active sessions for a patient."""
        last_activity = func.max(ChatMessage.timestamp).label("last_activity")
        stats_result = await self.db.execute(
            select(
                ChatMessage.session_id,
                func.count(ChatMessage.id).label("message_count"),
                last_activity,
            )
            .where(ChatMessage.patient_id == patient_id)
            .group_by(ChatMessage.session_id)
            .order_by(last_activity.desc())
            .limit(limit)
        )
        rows = stats_result.all()
        if not rows:
            return []

        # Latest message per session (DISTINCT ON)
        latest_result = await self.db.execute(
            select(ChatMessage)
            .where(
                ChatMessage.patient_id == patient_id,
                ChatMessage.session_id.in_([row.session_id for row in rows]),
            )
            .distinct(ChatMessage.session_id)
            .order_by(ChatMessage.session_id, ChatMessage.timestamp.desc())
        )
        latest = {message.session_id: message for message in latest_result.scalars().all()}

        return [
            SessionStats(
                session_id=row.session_id,
                message_count=row.message_count,
                last_activity=row.last_activity,
                last_message=latest[row.session_id].message,
                last_role=latest[row.session_id].role,
            )
            for row in rows
        ]

    async def delete_session(self, patient_id: uuid.UUID, session_id: str) -> int:
        """Delete all messages of a session. Returns the number deleted."""
        result = await self.db.execute(
            delete(ChatMessage).where(
                ChatMessage.patient_id == patient_id,
                ChatMessage.session_id == session_id,
            )
        )
        return result.rowcount or 0

    async def delete_message(self, message_id: uuid.UUID) -> bool:
        result = await self.db.execute(delete(ChatMessage).where(ChatMessage.id == message_id))
        return bool(result.rowcount)
