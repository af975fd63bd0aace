"""Trade-in request/response schemas."""

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

IMEI_RE = re.compile(r"^\d{15}$")


class Actor(BaseModel):
    """Who is performing an operation; identity itself is resolved upstream."""

    user_id: str = Field(min_length=1)
    is_admin: bool = False

    @classmethod
    def system(cls) -> "Actor":
        return cls(user_id="system", is_admin=True)


class SubmitTradeInRequest(BaseModel):
    owner_id: str = Field(min_length=1)
    device_brand: str = Field(min_length=1, max_length=100)
    device_model: str = Field(min_length=1, max_length=200)
    device_type: str = "smartphone"
    device_storage_gb: int | None = Field(default=None, gt=0)
    imei: str | None = None
    photo_urls: list[str] = Field(min_length=1)
    proposed_value_cents: int | None = Field(default=None, ge=0)
    notes: str | None = None

    @field_validator("imei")
    @classmethod
    def imei_is_15_digits(cls, value: str | None) -> str | None:
        if value is None or value == "":
            return None
        if not IMEI_RE.match(value):
            raise ValueError("IMEI must be 15 digits")
        return value

    @field_validator("photo_urls")
    @classmethod
    def photos_not_blank(cls, value: list[str]) -> list[str]:
        cleaned = [url.strip() for url in value if url and url.strip()]
        if not cleaned:
            raise ValueError("at least one photo is required")
        return cleaned


class ManualEvaluation(BaseModel):
    grade: str = Field(pattern=r"^[A-D]$")
    value_cents: int = Field(ge=0)
    notes: str | None = None


class TradeInView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    public_id: str
    owner_id: str
    device_brand: str
    device_model: str
    status: str
    auto_grade: str | None = None
    auto_offer_cents: int | None = None
    approved_value_cents: int | None = None
    offer_expires_at: datetime | None = None
    credit_note_code: str | None = None


class TradeInStatistics(BaseModel):
    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    total_offered_cents: int = 0
    total_credit_issued_cents: int = 0
