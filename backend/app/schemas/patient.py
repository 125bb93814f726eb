"""Pydantic schemas for patient lookup and profile provisioning."""

from datetime import datetime
from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.patient import Gender


class PatientResponse(BaseModel):
    """Schema for a patient in API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    auth_user_id: str
    name: str
    age: int
    gender: Gender
    phone: str | None
    email: str | None
    address: str | None
    emergency_contact_name: str | None
    emergency_contact_phone: str | None
    medical_history: str | None
    allergies: str | None
    current_medications: str | None
    created_at: datetime | None = None


class PatientListResponse(BaseModel):
    """Paginated patient list."""

    items: list[PatientResponse]
    total: int
    skip: int
    limit: int


# === Profile provisioning (tagged on role) ===


class _SignupBase(BaseModel):
    auth_user_id: str = Field(min_length=1, max_length=255)
    name: str = Field(min_length=1, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    email: str | None = Field(default=None, max_length=255)


class PatientSignupData(_SignupBase):
    role: Literal["patient"]
    age: int = Field(ge=0, le=150)
    gender: Gender
    address: str | None = None
    emergency_contact_name: str | None = Field(default=None, max_length=255)
    emergency_contact_phone: str | None = Field(default=None, max_length=50)
    medical_history: str | None = None
    allergies: str | None = None
    current_medications: str | None = None


class DoctorSignupData(_SignupBase):
    role: Literal["doctor"]
    specialization: str | None = Field(default=None, max_length=255)
    license_number: str | None = Field(default=None, max_length=100)
    years_of_experience: int | None = Field(default=None, ge=0, le=80)


class AdminSignupData(_SignupBase):
    role: Literal["admin"]
    permissions: list[str] = Field(default_factory=list)


SignupRequest = Annotated[
    PatientSignupData | DoctorSignupData | AdminSignupData,
    Field(discriminator="role"),
]


class SignupResponse(BaseModel):
    """Identifier of the provisioned profile."""

    id: UUID
    role: Literal["patient", "doctor", "admin"]
    auth_user_id: str
