"""Normalized assessment schema shared by every provider.

External provider payloads are parsed into `AssessmentResult` at the adapter
boundary; nothing deeper in the pipeline sees provider-specific JSON.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, Field

UNKNOWN = "Unknown"


class DetectedDamage(BaseModel):
    """One damage finding reported by a provider."""

    type: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    severity: float = Field(default=0.0, ge=0.0, le=1.0)
    location: str | None = None


class AssessmentRequest(BaseModel):
    """Context sent alongside the device photos."""

    image_urls: list[str] = Field(default_factory=list)
    device_brand: str | None = None
    device_model: str | None = None
    device_type: str | None = "smartphone"
    additional_context: str | None = None


class AssessmentResult(BaseModel):
    """Normalized device condition signals; all severities on [0, 1]."""

    detected_brand: str | None = None
    detected_model: str | None = None
    detected_type: str | None = None
    detected_storage: int | None = None
    identification_confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    screen_crack_severity: float = Field(default=0.0, ge=0.0, le=1.0)
    body_dent_severity: float = Field(default=0.0, ge=0.0, le=1.0)
    back_glass_severity: float = Field(default=0.0, ge=0.0, le=1.0)
    camera_damage_severity: float = Field(default=0.0, ge=0.0, le=1.0)
    water_damage_likelihood: float = Field(default=0.0, ge=0.0, le=1.0)
    overall_condition_score: float = Field(default=0.0, ge=0.0, le=1.0)

    functional_issues: list[str] = Field(default_factory=list)
    cosmetic_issues: list[str] = Field(default_factory=list)
    detected_damage: list[DetectedDamage] = Field(default_factory=list)

    provider_name: str = ""
    model_version: str = ""
    analysis_timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    processing_time_ms: int = 0

    # Set when the provider could not assess and returned fallback values.
    requires_manual_review: bool = False
    failure_kind: str | None = None
    failure_reason: str | None = None

    @property
    def identified_model(self) -> str | None:
        """Detected model, or None when the provider could not identify one."""

        model = (self.detected_model or "").strip()
        if not model or model.lower() == UNKNOWN.lower():
            return None
        return model
