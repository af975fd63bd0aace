"""Pricing engine outputs."""

from pydantic import BaseModel, Field, computed_field


class PriceQuote(BaseModel):
    """Base price plus itemized adjustments, all in ZAR cents."""

    catalog_entry_id: int
    catalog_model_name: str
    base_price_cents: int
    breakdown: dict[str, int] = Field(default_factory=dict)
    currency: str = "ZAR"

    @computed_field
    @property
    def total_adjustments_cents(self) -> int:
        return sum(self.breakdown.values())

    @computed_field
    @property
    def final_price_cents(self) -> int:
        # May be negative; acceptability is decided by the caller.
        return self.base_price_cents + self.total_adjustments_cents

    def add(self, label: str, amount_cents: int) -> None:
        self.breakdown[label] = amount_cents
