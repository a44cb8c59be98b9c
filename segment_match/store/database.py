"""Engine and session factory for the SQL-backed store.

The engine uses a connection pool sized for the expected request concurrency.
In-memory SQLite databases get a single shared connection so every thread
sees the same data.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from ..config import (
    DATABASE_URL,
    DB_ECHO,
    DB_MAX_OVERFLOW,
    DB_POOL_SIZE,
    DB_POOL_TIMEOUT,
)
from ..errors import StoreError
from .tables import Base

logger = logging.getLogger(__name__)


def _is_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") == "sqlite:")


def build_engine(
    url: Optional[str] = None,
    *,
    pool_size: int = DB_POOL_SIZE,
    max_overflow: int = DB_MAX_OVERFLOW,
    pool_timeout: int = DB_POOL_TIMEOUT,
    echo: bool = DB_ECHO,
) -> Engine:
    """Create the engine for ``url`` (defaults to ``DATABASE_URL``)."""

    url = url or DATABASE_URL
    kwargs: Dict[str, Any] = {"echo": echo, "future": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    if _is_memory_sqlite(url):
        kwargs["poolclass"] = StaticPool
    else:
        kwargs.update(
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_pre_ping=True,
        )
    engine = create_engine(url, **kwargs)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_conn, connection_record):  # type: ignore[no-untyped-def]
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
            logger.debug("New database connection established")

    return engine


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


def init_db(engine: Engine) -> None:
    """Create every table that does not exist yet."""

    try:
        Base.metadata.create_all(engine)
    except SQLAlchemyError as exc:
        raise StoreError(f"Failed to initialise database schema: {exc}") from exc
    logger.info("Database schema ready (%s)", engine.url.render_as_string(hide_password=True))


__all__ = ["build_engine", "build_session_factory", "init_db"]
