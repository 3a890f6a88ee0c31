"""Database connectivity for the SQL evaluation store.

Environment Variables:
    BIDEVAL_DATABASE_URL: SQLAlchemy connection string. When unset the
        service runs on the in-memory store.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

logger = logging.getLogger(__name__)

BIDEVAL_DATABASE_URL_ENV = "BIDEVAL_DATABASE_URL"


class DatabaseConfigError(Exception):
    """Raised when database configuration is missing or invalid."""


def is_database_configured() -> bool:
    """Return True if BIDEVAL_DATABASE_URL is set."""
    return bool(os.environ.get(BIDEVAL_DATABASE_URL_ENV))


def _normalize_url(url: str) -> str:
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def get_database_url() -> str:
    """Get the database URL from the environment.

    Raises:
        DatabaseConfigError: If BIDEVAL_DATABASE_URL is not set.
    """
    url = os.environ.get(BIDEVAL_DATABASE_URL_ENV)
    if not url:
        raise DatabaseConfigError(
            f"Database URL not configured. Set {BIDEVAL_DATABASE_URL_ENV} environment variable."
        )
    return _normalize_url(url)


def create_db_engine(url: str | None = None) -> Engine:
    """Create an engine for url, or for BIDEVAL_DATABASE_URL when omitted.

    In-memory SQLite shares one connection across threads so every caller
    sees the same database.
    """
    resolved = _normalize_url(url) if url else get_database_url()
    if resolved.startswith("sqlite"):
        kwargs: dict[str, object] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in resolved or resolved in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(resolved, echo=False, **kwargs)
    else:
        engine = create_engine(
            resolved,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            echo=False,
        )
    logger.info("Created evaluation database engine (dialect=%s)", engine.dialect.name)
    return engine


@contextmanager
def begin_conn(engine: Engine) -> Generator[Connection, None, None]:
    """Open a connection in a transaction; commit on success, roll back on error."""
    with engine.connect() as conn, conn.begin():
        yield conn
