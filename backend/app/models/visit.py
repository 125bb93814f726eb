"""Visit model: one clinical encounter, in person or virtual.

Each visit optionally carries a pgvector embedding of its rendered text so
that similar past cases can be retrieved while building a chat context.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import DateTime, Enum, Float, ForeignKey, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.staff import Doctor

EMBEDDING_DIMENSION = 1536


class VisitType(str, enum.Enum):
    """How the visit happened."""

    IN_PERSON = "in_person"
    VIRTUAL_CONSULTATION = "virtual_consultation"
    FOLLOW_UP = "follow_up"
    SELF_RECORDED = "self_recorded"


class UrgencyLevel(str, enum.Enum):
    """Clinical urgency."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ConfidenceLevel(str, enum.Enum):
    """Confidence in a diagnosis."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Visit(Base):
    """A recorded encounter with vitals, findings and an optional embedding."""

    __tablename__ = "visits"
    __mapper_args__ = {"eager_defaults": True}

    # === Identity ===
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # === References ===
    patient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    doctor_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("doctors.id", ondelete="SET NULL"),
        nullable=True,
        comment="Absent for self-recorded and unattended AI visits",
    )
    chat_session_id: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        comment="Chat session that created or last updated this visit",
    )

    visit_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
    visit_type: Mapped[VisitType] = mapped_column(
        Enum(
            VisitType,
            name="visit_type",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=VisitType.IN_PERSON,
    )

    # === Vitals ===
    weight: Mapped[float | None] = mapped_column(Float, nullable=True)
    height: Mapped[float | None] = mapped_column(Float, nullable=True)
    systolic_bp: Mapped[int | None] = mapped_column(Integer, nullable=True)
    diastolic_bp: Mapped[int | None] = mapped_column(Integer, nullable=True)
    heart_rate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    temperature: Mapped[float | None] = mapped_column(Float, nullable=True)
    blood_sugar: Mapped[float | None] = mapped_column(Float, nullable=True)
    oxygen_saturation: Mapped[float | None] = mapped_column(Float, nullable=True)
    respiratory_rate: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # === Findings ===
    symptoms: Mapped[str | None] = mapped_column(Text, nullable=True)
    diagnosis: Mapped[str | None] = mapped_column(Text, nullable=True)
    treatment_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    prescribed_medications: Mapped[str | None] = mapped_column(Text, nullable=True)
    follow_up_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    urgency_level: Mapped[UrgencyLevel | None] = mapped_column(
        Enum(
            UrgencyLevel,
            name="urgency_level",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=True,
    )
    confidence_level: Mapped[ConfidenceLevel | None] = mapped_column(
        Enum(
            ConfidenceLevel,
            name="confidence_level",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=True,
    )

    # === Semantic search ===
    embedding: Mapped[list[float] | None] = mapped_column(
        Vector(EMBEDDING_DIMENSION),
        nullable=True,
    )
    embedding_model: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Model that produced the stored embedding",
    )
    embedding_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    # === Timing ===
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("now()"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("now()"),
        onupdate=func.now(),
    )

    # === Relationships ===
    doctor: Mapped[Doctor | None] = relationship(lazy="selectin")

    __table_args__ = (
        Index("idx_visit_patient_date", "patient_id", "visit_date"),
        Index(
            "idx_visit_embedding_hnsw",
            "embedding",
            postgresql_using="hnsw",
            postgresql_with={"m": 16, "ef_construction": 64},
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )

    @property
    def doctor_name(self) -> str | None:
        return self.doctor.name if self.doctor is not None else None

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None

    def __repr__(self) -> str:
        return f"<Visit(id={self.id}, type={self.visit_type}, date={self.visit_date})>"
