"""Shared fixtures: file-backed SQLite schema per test and a controllable clock."""

import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("POSTGRES_DSN", "sqlite://")
os.environ.setdefault("API_KEY", "test-key")

import pytest

from tradein.common.db import Base, build_engine, make_session_factory
from tradein.services.credit import models as credit_models  # noqa: F401
from tradein.services.notification import models as notification_models  # noqa: F401
from tradein.services.pricing import models as pricing_models  # noqa: F401
from tradein.services.tradein import models as tradein_models  # noqa: F401
from tradein.services.webhooks import models as webhook_models  # noqa: F401


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'tradein.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def catalog(session_factory):
    """iPhone 13 at R12,000 plus a Samsung entry, mirroring the seed data."""

    from tradein.services.pricing.service import PricingEngine

    engine = PricingEngine(session_factory)
    iphone = engine.upsert_catalog_entry("Apple", "iPhone 13", 2021, storage_gb=128)
    engine.add_base_price(iphone.id, 1_200_000, as_of=datetime(2026, 1, 1, tzinfo=timezone.utc))
    galaxy = engine.upsert_catalog_entry("Samsung", "Galaxy S22", 2022, storage_gb=128)
    engine.add_base_price(galaxy.id, 1_000_000, as_of=datetime(2026, 1, 1, tzinfo=timezone.utc))
    return {"iphone": iphone, "galaxy": galaxy, "engine": engine}
