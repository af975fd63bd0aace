"""Credit note read models."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class CreditNoteView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    owner_id: str
    amount_cents: int
    remaining_cents: int
    currency: str
    status: str
    expires_at: datetime
    consumed_in_order_id: str | None = None


class CreditValidation(BaseModel):
    """Outcome of a successful `validate`: how much of a request the note covers."""

    code: str
    remaining_cents: int
    applicable_cents: int


class CreditUsageEntry(BaseModel):
    kind: str
    amount_cents: int
    at: datetime | None
    order_id: str | None = None
    note: str | None = None
