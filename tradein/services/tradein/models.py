"""Trade-in aggregate and its audit timeline.

Trade-ins are never deleted; terminal rows stay for audit.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from tradein.common.db import Base, JSONType


class TradeIn(Base):
    """Current state of one device trade-in."""

    __tablename__ = "trade_ins"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    public_id: Mapped[str] = mapped_column(String(36), unique=True, index=True, default=lambda: str(uuid4()))
    owner_id: Mapped[str] = mapped_column(String, index=True)

    device_brand: Mapped[str] = mapped_column(String(100))
    device_model: Mapped[str] = mapped_column(String(200))
    device_type: Mapped[str] = mapped_column(String(50), default="smartphone")
    device_storage_gb: Mapped[int | None] = mapped_column(Integer, nullable=True)
    imei: Mapped[str | None] = mapped_column(String(20), nullable=True)
    photo_urls: Mapped[list] = mapped_column(JSONType, default=list)
    proposed_value_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    ai_vendor: Mapped[str | None] = mapped_column(String(50), nullable=True)
    ai_version: Mapped[str | None] = mapped_column(String(50), nullable=True)
    ai_confidence: Mapped[float | None] = mapped_column(Numeric(5, 4), nullable=True)
    ai_assessment: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    auto_grade: Mapped[str | None] = mapped_column(String(1), nullable=True)
    auto_offer_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    auto_offer_breakdown: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)

    approved_grade: Mapped[str | None] = mapped_column(String(1), nullable=True)
    approved_value_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    credit_note_code: Mapped[str | None] = mapped_column(String(32), nullable=True)

    status: Mapped[str] = mapped_column(String, index=True, default="SUBMITTED")
    state_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    processing_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ai_assessed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    offer_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    user_accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    admin_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    credit_issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @property
    def offer_cents(self) -> int | None:
        """Admin-approved value when present, otherwise the automatic offer."""

        if self.approved_value_cents is not None:
            return self.approved_value_cents
        return self.auto_offer_cents


class TradeInTimeline(Base):
    """Immutable audit trail of every trade-in status change."""

    __tablename__ = "trade_in_timeline"

    timeline_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    trade_in_id: Mapped[int] = mapped_column(ForeignKey("trade_ins.id"), index=True)
    from_state: Mapped[str | None] = mapped_column(String, nullable=True)
    to_state: Mapped[str] = mapped_column(String)
    reason: Mapped[str] = mapped_column(String)
    actor: Mapped[str] = mapped_column(String, default="system")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
