"""initial_schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

gender_enum = postgresql.ENUM(
    "male", "female", "other", "prefer_not_to_say", name="gender", create_type=False
)
visit_type_enum = postgresql.ENUM(
    "in_person", "virtual_consultation", "follow_up", "self_recorded",
    name="visit_type",
    create_type=False,
)
urgency_level_enum = postgresql.ENUM(
    "low", "medium", "high", "urgent", name="urgency_level", create_type=False
)
confidence_level_enum = postgresql.ENUM(
    "low", "medium", "high", name="confidence_level", create_type=False
)
chat_role_enum = postgresql.ENUM("user", "ai", name="chat_role", create_type=False)

_ENUMS = (gender_enum, visit_type_enum, urgency_level_enum, confidence_level_enum, chat_role_enum)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    """Create profile, visit and chat tables with pgvector support."""
    # Enable pgvector extension (idempotent)
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    bind = op.get_bind()
    for enum_type in _ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "patients",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("auth_user_id", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("age", sa.Integer, nullable=False),
        sa.Column("gender", gender_enum, nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("address", sa.Text, nullable=True),
        sa.Column("emergency_contact_name", sa.String(255), nullable=True),
        sa.Column("emergency_contact_phone", sa.String(50), nullable=True),
        sa.Column("medical_history", sa.Text, nullable=True),
        sa.Column("allergies", sa.Text, nullable=True),
        sa.Column("current_medications", sa.Text, nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "doctors",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("auth_user_id", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("specialization", sa.String(255), nullable=True),
        sa.Column("license_number", sa.String(100), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("years_of_experience", sa.Integer, nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "admins",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("auth_user_id", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("permissions", postgresql.JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        *_timestamps(),
    )

    op.create_table(
        "visits",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("patients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("doctor_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("doctors.id", ondelete="SET NULL"), nullable=True, comment="Absent for self-recorded and unattended AI visits"),
        sa.Column("chat_session_id", sa.String(128), nullable=True, comment="Chat session that created or last updated this visit"),
        sa.Column("visit_date", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("visit_type", visit_type_enum, nullable=False, server_default="in_person"),
        sa.Column("weight", sa.Float, nullable=True),
        sa.Column("height", sa.Float, nullable=True),
        sa.Column("systolic_bp", sa.Integer, nullable=True),
        sa.Column("diastolic_bp", sa.Integer, nullable=True),
        sa.Column("heart_rate", sa.Integer, nullable=True),
        sa.Column("temperature", sa.Float, nullable=True),
        sa.Column("blood_sugar", sa.Float, nullable=True),
        sa.Column("oxygen_saturation", sa.Float, nullable=True),
        sa.Column("respiratory_rate", sa.Integer, nullable=True),
        sa.Column("symptoms", sa.Text, nullable=True),
        sa.Column("diagnosis", sa.Text, nullable=True),
        sa.Column("treatment_notes", sa.Text, nullable=True),
        sa.Column("prescribed_medications", sa.Text, nullable=True),
        sa.Column("follow_up_instructions", sa.Text, nullable=True),
        sa.Column("urgency_level", urgency_level_enum, nullable=True),
        sa.Column("confidence_level", confidence_level_enum, nullable=True),
        sa.Column("embedding", Vector(1536), nullable=True),
        sa.Column("embedding_model", sa.String(100), nullable=True, comment="Model that produced the stored embedding"),
        sa.Column("embedding_text", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_visits_patient_id", "visits", ["patient_id"])
    op.create_index("idx_visit_patient_date", "visits", ["patient_id", "visit_date"])

    # HNSW index for cosine similarity searches
    op.create_index(
        "idx_visit_embedding_hnsw",
        "visits",
        ["embedding"],
        unique=False,
        postgresql_using="hnsw",
        postgresql_with={"m": 16, "ef_construction": 64},
        postgresql_ops={"embedding": "vector_cosine_ops"},
    )

    op.create_table(
        "chat_messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("patients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("session_id", sa.String(128), nullable=False),
        sa.Column("role", chat_role_enum, nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("has_diagnosis", sa.Boolean, nullable=True),
        sa.Column("idempotency_key", sa.String(128), nullable=True),
    )
    op.create_index(
        "idx_chat_patient_session_ts",
        "chat_messages",
        ["patient_id", "session_id", "timestamp"],
    )
    op.create_index(
        "uq_chat_idempotency_key",
        "chat_messages",
        ["patient_id", "session_id", "idempotency_key"],
        unique=True,
        postgresql_where=sa.text("idempotency_key IS NOT NULL"),
    )

    op.create_table(
        "chat_message_visits",
        sa.Column("chat_message_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("chat_messages.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("visit_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("visits.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_chat_message_visits_visit_id", "chat_message_visits", ["visit_id"])


def downgrade() -> None:
    """Drop all tables and enum types."""
    op.drop_table("chat_message_visits")
    op.drop_index("uq_chat_idempotency_key", table_name="chat_messages")
    op.drop_index("idx_chat_patient_session_ts", table_name="chat_messages")
    op.drop_table("chat_messages")
    op.drop_index("idx_visit_embedding_hnsw", table_name="visits")
    op.drop_index("idx_visit_patient_date", table_name="visits")
    op.drop_index("ix_visits_patient_id", table_name="visits")
    op.drop_table("visits")
    op.drop_table("admins")
    op.drop_table("doctors")
    op.drop_table("patients")

    bind = op.get_bind()
    for enum_type in reversed(_ENUMS):
        enum_type.drop(bind, checkfirst=True)
    # Note: We don't drop the pgvector extension as other tables might use it
