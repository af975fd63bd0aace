"""Engine and session wiring shared by the API process, worker, and scripts."""

from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from tradein.common.config import settings

# JSONB on Postgres, plain JSON elsewhere.
JSONType = JSON().with_variant(JSONB(), "postgresql")


def build_engine(dsn: str) -> Engine:
    """Engine for `dsn`; SQLite gets a busy timeout and cross-thread access for the lock tests and scripts."""

    if dsn.startswith("sqlite"):
        return create_engine(dsn, connect_args={"check_same_thread": False, "timeout": 30})
    return create_engine(dsn, pool_pre_ping=True)


def make_session_factory(bind: Engine) -> sessionmaker:
    # `expire_on_commit=False` keeps rows readable after the service method's session closes.
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, expire_on_commit=False)


engine = build_engine(settings.postgres_dsn)
SessionLocal = make_session_factory(engine)


class Base(DeclarativeBase):
    pass
