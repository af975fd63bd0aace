"""Device catalog, base price snapshots, and catalog-level pricing rules."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from tradein.common.db import Base


class DeviceCatalogEntry(Base):
    """One canonical device model the store will price."""

    __tablename__ = "device_catalog"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    brand: Mapped[str] = mapped_column(String(100), index=True)
    model: Mapped[str] = mapped_column(String(200), index=True)
    device_type: Mapped[str] = mapped_column(String(50), default="Smartphone")
    release_year: Mapped[int] = mapped_column(Integer)
    storage_gb: Mapped[int | None] = mapped_column(Integer, nullable=True)


class BasePrice(Base):
    """Pristine-condition price as of a point in time; latest snapshot wins."""

    __tablename__ = "device_base_prices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    catalog_entry_id: Mapped[int] = mapped_column(ForeignKey("device_catalog.id"), index=True)
    price_cents: Mapped[int] = mapped_column(Integer)
    as_of: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class PriceAdjustmentRule(Base):
    """Declarative catalog rule: multiplier and/or flat deduction."""

    __tablename__ = "price_adjustment_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(100), unique=True)
    # 0.85 means -15% of base.
    multiplier: Mapped[float] = mapped_column(Numeric(5, 4), default=1)
    flat_deduction_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # "ANY", a brand, or a device type.
    applies_to: Mapped[str] = mapped_column(String(100), default="ANY")
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
