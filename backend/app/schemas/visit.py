"""Pydantic schemas for the Visit API and similarity search."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.visit import ConfidenceLevel, UrgencyLevel, VisitType


class VisitCreate(BaseModel):
    """Schema for recording a visit from a doctor form or a patient self-entry."""

    patient_id: UUID
    doctor_id: UUID | None = None
    visit_date: datetime | None = None
    visit_type: VisitType = VisitType.IN_PERSON

    weight: float | None = Field(default=None, gt=0, le=700, description="kg")
    height: float | None = Field(default=None, gt=0, le=300, description="cm")
    systolic_bp: int | None = Field(default=None, gt=0, le=300)
    diastolic_bp: int | None = Field(default=None, gt=0, le=250)
    heart_rate: int | None = Field(default=None, gt=0, le=300)
    temperature: float | None = Field(default=None, ge=25, le=45, description="Celsius")
    blood_sugar: float | None = Field(default=None, ge=0, le=1000, description="mg/dL")
    oxygen_saturation: float | None = Field(default=None, ge=0, le=100)
    respiratory_rate: int | None = Field(default=None, gt=0, le=100)

    symptoms: str | None = Field(default=None, max_length=10000)
    diagnosis: str | None = Field(default=None, max_length=10000)
    treatment_notes: str | None = Field(default=None, max_length=10000)
    prescribed_medications: str | None = Field(default=None, max_length=10000)
    follow_up_instructions: str | None = Field(default=None, max_length=10000)
    urgency_level: UrgencyLevel | None = None
    confidence_level: ConfidenceLevel | None = None


class VisitResponse(BaseModel):
    """Schema for a visit in API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    patient_id: UUID
    doctor_id: UUID | None
    chat_session_id: str | None
    visit_date: datetime
    visit_type: VisitType

    weight: float | None
    height: float | None
    systolic_bp: int | None
    diastolic_bp: int | None
    heart_rate: int | None
    temperature: float | None
    blood_sugar: float | None
    oxygen_saturation: float | None
    respiratory_rate: int | None

    symptoms: str | None
    diagnosis: str | None
    treatment_notes: str | None
    prescribed_medications: str | None
    follow_up_instructions: str | None
    urgency_level: UrgencyLevel | None
    confidence_level: ConfidenceLevel | None

    embedding_model: str | None = Field(description="Model that produced the stored embedding")
    has_embedding: bool
    created_at: datetime | None = None


class VisitListResponse(BaseModel):
    """Paginated visit list."""

    items: list[VisitResponse]
    total: int
    skip: int
    limit: int


class SimilaritySearchRequest(BaseModel):
    """Free-text similarity search over one patient's visits."""

    patient_id: UUID
    query: str = Field(min_length=1, max_length=10000)
    limit: int = Field(default=5, ge=1, le=20)
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)


class SimilarVisitResponse(BaseModel):
    """A visit returned by similarity search, with its score."""

    visit: VisitResponse
    doctor_name: str | None = None
    similarity: float = Field(ge=0.0, le=1.0)


class SimilaritySearchResponse(BaseModel):
    """Ranked similar visits plus summary statistics."""

    results: list[SimilarVisitResponse]
    total: int
    threshold: float
    limit: int
    average_similarity: float | None = None
