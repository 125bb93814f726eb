"""Pydantic schemas for the diagnostic chat API."""

from datetime import datetime
from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.constants import (
    MAX_CONVERSATION_HISTORY,
    MAX_IDEMPOTENCY_KEY_LENGTH,
    MAX_MESSAGE_LENGTH,
    SESSION_ID_PATTERN,
)
from app.models.chat import ChatMessage, ChatRole
from app.models.visit import UrgencyLevel


class VisitAction(str, Enum):
    """What a turn did to the visit record."""

    CREATED = "created"
    UPDATED = "updated"
    NONE = "none"


class ConversationTurn(BaseModel):
    """A prior turn of the running conversation, as held by the client."""

    role: Literal["user", "ai"]
    message: str = Field(max_length=MAX_MESSAGE_LENGTH)


class ChatTurnRequest(BaseModel):
    """Request body for submitting one patient turn."""

    patient_id: UUID
    session_id: str = Field(pattern=SESSION_ID_PATTERN)
    message: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    conversation_history: list[ConversationTurn] = Field(
        default_factory=list,
        max_length=MAX_CONVERSATION_HISTORY,
    )
    doctor_id: UUID | None = None
    visit_id: UUID | None = Field(
        default=None,
        description="Existing visit to update instead of creating a new one",
    )
    idempotency_key: str | None = Field(
        default=None,
        min_length=1,
        max_length=MAX_IDEMPOTENCY_KEY_LENGTH,
    )

    @field_validator("message")
    @classmethod
    def _message_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        return value


class ChatTurnResponse(BaseModel):
    """Summary of a completed turn."""

    success: bool = True
    response: str
    diagnosis_detected: bool
    diagnosis: str | None = None
    urgency_level: UrgencyLevel | None = None
    visit_action: VisitAction
    visit_id: UUID | None = None
    new_visit_created: bool
    context_visits: int
    similar_visits: int
    context_degraded: bool
    user_message_id: UUID
    ai_message_id: UUID


class TurnAccepted(BaseModel):
    """Acknowledgement for an asynchronously processed turn."""

    status: Literal["accepted"] = "accepted"
    patient_id: UUID
    session_id: str
    poll_url: str


class ChatMessageResponse(BaseModel):
    """A stored chat message with the visits it is linked to."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    patient_id: UUID
    session_id: str
    role: ChatRole
    message: str
    timestamp: datetime
    has_diagnosis: bool | None = None
    linked_visit_ids: list[UUID] = Field(default_factory=list)

    @classmethod
    def from_message(cls, message: ChatMessage) -> "ChatMessageResponse":
        return cls.model_validate(message)


class ChatHistoryResponse(BaseModel):
    """Chronological chat history for a patient or one of their sessions."""

    patient_id: UUID
    session_id: str | None
    messages: list[ChatMessageResponse]
    total: int
    available_sessions: list[str] = Field(description="Most recent session ids for the patient")


class SessionSummary(BaseModel):
    """One row of the session listing."""

    session_id: str
    last_message: str
    last_role: ChatRole
    last_activity: datetime
    message_count: int


class SessionListResponse(BaseModel):
    """Recent chat sessions for a patient."""

    patient_id: UUID
    sessions: list[SessionSummary]


class NewSessionRequest(BaseModel):
    patient_id: UUID


class NewSessionResponse(BaseModel):
    patient_id: UUID
    session_id: str


class DeletedResponse(BaseModel):
    deleted: int
