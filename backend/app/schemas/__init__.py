"""Pydantic schemas."""

from app.schemas.chat import (
    ChatHistoryResponse,
    ChatMessageResponse,
    ChatTurnRequest,
    ChatTurnResponse,
    ConversationTurn,
    SessionListResponse,
    SessionSummary,
    TurnAccepted,
    VisitAction,
)
from app.schemas.diagnosis import DiagnosisResult
from app.schemas.patient import (
    AdminSignupData,
    DoctorSignupData,
    PatientListResponse,
    PatientResponse,
    PatientSignupData,
    SignupRequest,
    SignupResponse,
)
from app.schemas.visit import (
    SimilaritySearchRequest,
    SimilaritySearchResponse,
    SimilarVisitResponse,
    VisitCreate,
    VisitListResponse,
    VisitResponse,
)

__all__ = [
    "AdminSignupData",
    "ChatHistoryResponse",
    "ChatMessageResponse",
    "ChatTurnRequest",
    "ChatTurnResponse",
    "ConversationTurn",
    "DiagnosisResult",
    "DoctorSignupData",
    "PatientListResponse",
    "PatientResponse",
    "PatientSignupData",
    "SessionListResponse",
    "SessionSummary",
    "SignupRequest",
    "SignupResponse",
    "SimilarVisitResponse",
    "SimilaritySearchRequest",
    "SimilaritySearchResponse",
    "TurnAccepted",
    "VisitAction",
    "VisitCreate",
    "VisitListResponse",
    "VisitResponse",
]
