"""Engine and session handling for the payment tables."""
from __future__ import annotations

import logging
from collections.abc import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from splitpay.config import get_settings
from splitpay.models.base import Base

logger = logging.getLogger(__name__)

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def init_engine() -> Engine:
    """Create the process-wide engine from ``DATABASE_URL`` on first use."""

    global _engine, _session_factory
    if _engine is None:
        url = get_settings().database_url
        if url.startswith("sqlite"):
            _engine = create_engine(url, connect_args={"check_same_thread": False})
        else:
            _engine = create_engine(url, pool_pre_ping=True)
        # Objects stay readable after commit; handlers serialise them afterwards.
        _session_factory = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
        logger.info("Database engine ready", extra={"dialect": _engine.dialect.name})
    return _engine


def get_engine() -> Engine:
    return _engine if _engine is not None else init_engine()


@event.listens_for(Engine, "connect")
def _sqlite_foreign_keys(dbapi_connection, connection_record) -> None:  # pragma: no cover - driver specific
    # Split legs and logs reference payments; SQLite ignores that unless asked.
    if type(dbapi_connection).__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_all() -> None:
    """Create missing tables without Alembic; local environments only."""

    Base.metadata.create_all(bind=get_engine())


def close_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def get_db() -> Iterator[Session]:
    """FastAPI dependency yielding one session per request."""

    if _session_factory is None:
        init_engine()
    session = _session_factory()
    try:
        yield session
    finally:
        session.close()


__all__ = ["init_engine", "get_engine", "create_all", "close_engine", "get_db"]
