"""SQLAlchemy models."""

from app.models.chat import ChatMessage, ChatMessageVisit, ChatRole
from app.models.patient import Gender, Patient
from app.models.staff import Admin, Doctor
from app.models.visit import ConfidenceLevel, UrgencyLevel, Visit, VisitType

__all__ = [
    "Admin",
    "ChatMessage",
    "ChatMessageVisit",
    "ChatRole",
    "ConfidenceLevel",
    "Doctor",
    "Gender",
    "Patient",
    "UrgencyLevel",
    "Visit",
    "VisitType",
]
