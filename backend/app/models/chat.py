"""Chat message and chat-to-visit link models.

Messages are grouped by a caller-chosen ``session_id`` which is only
meaningful together with ``patient_id``; the database never assigns it.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class ChatRole(str, enum.Enum):
    """Author of a chat message."""

    USER = "user"
    AI = "ai"


class ChatMessage(Base):
    """One turn of a diagnostic conversation."""

    __tablename__ = "chat_messages"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
    )
    session_id: Mapped[str] = mapped_column(String(128), nullable=False)
    role: Mapped[ChatRole] = mapped_column(
        Enum(
            ChatRole,
            name="chat_role",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
    has_diagnosis: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)

    visit_links: Mapped[list[ChatMessageVisit]] = relationship(
        lazy="selectin",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_chat_patient_session_ts", "patient_id", "session_id", "timestamp"),
        Index(
            "uq_chat_idempotency_key",
            "patient_id",
            "session_id",
            "idempotency_key",
            unique=True,
            postgresql_where=text("idempotency_key IS NOT NULL"),
        ),
    )

    @property
    def linked_visit_ids(self) -> list[uuid.UUID]:
        return [link.visit_id for link in self.visit_links]

    def __repr__(self) -> str:
        return f"<ChatMessage(id={self.id}, session={self.session_id!r}, role={self.role})>"


class ChatMessageVisit(Base):
    """Link between a chat message and a visit it drew on or produced."""

    __tablename__ = "chat_message_visits"
    __mapper_args__ = {"eager_defaults": True}

    chat_message_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("chat_messages.id", ondelete="CASCADE"),
        primary_key=True,
    )
    visit_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("visits.id", ondelete="CASCADE"),
        primary_key=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("now()"),
    )
