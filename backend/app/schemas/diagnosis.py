"""Structured diagnosis extracted from an assistant reply."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from app.models.visit import ConfidenceLevel, UrgencyLevel

_LEVEL_FIELDS: dict[str, type] = {
    "confidence": ConfidenceLevel,
    "urgency_level": UrgencyLevel,
}


class DiagnosisResult(BaseModel):
    """Result of diagnosis extraction.

    Accepts both snake_case names and the camelCase keys the extraction prompt
    asks the model for. Unknown confidence/urgency values are dropped rather
    than rejected. ``diagnosis`` is always present when ``has_diagnosis`` is
    true and always absent when it is false.
    """

    model_config = ConfigDict(populate_by_name=True)

    has_diagnosis: bool = Field(default=False, alias="hasDiagnosis")
    diagnosis: str | None = None
    confidence: ConfidenceLevel | None = None
    recommended_treatment: str | None = Field(default=None, alias="recommendedTreatment")
    follow_up_instructions: str | None = Field(default=None, alias="followUpInstructions")
    urgency_level: UrgencyLevel | None = Field(default=None, alias="urgencyLevel")

    @field_validator("diagnosis", "recommended_treatment", "follow_up_instructions", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            if not value or value.lower() in ("null", "none", "n/a"):
                return None
        return value

    @field_validator("confidence", "urgency_level", mode="before")
    @classmethod
    def _normalize_level(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return None
        if not isinstance(value, str):
            return None
        try:
            return _LEVEL_FIELDS[info.field_name](value.strip().lower())
        except ValueError:
            return None

    @model_validator(mode="after")
    def _check_consistency(self) -> "DiagnosisResult":
        if not self.has_diagnosis:
            self.diagnosis = None
            self.recommended_treatment = None
            self.follow_up_instructions = None
            self.urgency_level = None
        elif not self.diagnosis:
            raise ValueError("hasDiagnosis is true but no diagnosis text was given")
        return self
