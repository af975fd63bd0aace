"""Typed payloads for the trade-in webhook ingress."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

SOURCE_SYSTEM = "TRADEIN_SYSTEM"


class EvaluationCompletedWebhook(BaseModel):
    trade_in_case_id: int
    offered_amount_cents: int = Field(ge=0)
    condition_grade: str = Field(pattern=r"^[A-D]$")
    evaluation_notes: str = ""
    evaluated_by: str = ""
    timestamp: datetime

    @property
    def event_id(self) -> str:
        return f"evaluation_completed_{self.trade_in_case_id}_{self.timestamp:%Y%m%d%H%M%S}"


class OfferAcceptedWebhook(BaseModel):
    trade_in_case_id: int
    user_id: str = Field(min_length=1)
    accepted_amount_cents: int = Field(ge=0)
    timestamp: datetime

    @property
    def event_id(self) -> str:
        return f"offer_accepted_{self.trade_in_case_id}_{self.timestamp:%Y%m%d%H%M%S}"


class CreditNoteIssuedWebhook(BaseModel):
    credit_note_id: int
    user_id: str = ""
    amount_cents: int = Field(default=0, ge=0)
    credit_note_code: str = ""
    timestamp: datetime

    @property
    def event_id(self) -> str:
        return f"credit_note_{self.credit_note_id}_{self.timestamp:%Y%m%d%H%M%S}"


class WebhookStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_id: str
    event_type: str
    status: str
    received_at: datetime | None = None
    processed_at: datetime | None = None
    retry_count: int
    next_retry_at: datetime | None = None
    error_message: str | None = None
