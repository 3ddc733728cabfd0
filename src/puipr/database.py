"""Async SQLAlchemy engine and session management."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import structlog
from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = structlog.get_logger()

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None
_write_lock: asyncio.Lock | None = None


def _unicode_lower(value: Any) -> Any:  # noqa: ANN401
    return value.lower() if isinstance(value, str) else value


def _set_sqlite_pragmas(dbapi_connection: Any, _record: Any) -> None:  # noqa: ANN401
    # SQLite's builtin lower() only folds ASCII.
    dbapi_connection.create_function("lower", 1, _unicode_lower, deterministic=True)
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


async def init_db(url: str) -> None:
    """Initialize the database engine and session factory.

    SQLite gets WAL, a busy timeout, enforced foreign keys and a single-writer
    lock; PostgreSQL gets a pooled asyncpg engine.
    """
    global _engine, _session_factory, _write_lock  # noqa: PLW0603
    parsed = make_url(url)

    if parsed.get_backend_name() == "sqlite":
        if parsed.database and parsed.database != ":memory:":
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
        _engine = create_async_engine(url, echo=False)
        event.listen(_engine.sync_engine, "connect", _set_sqlite_pragmas)
        _write_lock = asyncio.Lock()
    else:
        _engine = create_async_engine(
            url,
            pool_size=10,
            max_overflow=10,
            pool_pre_ping=True,
            echo=False,
        )
        _write_lock = None

    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def close_db() -> None:
    """Dispose of the database engine."""
    global _engine, _session_factory, _write_lock  # noqa: PLW0603
    if _engine:
        await _engine.dispose()
        _engine = None
    _session_factory = None
    _write_lock = None


def get_engine() -> AsyncEngine:
    """Get the async engine instance."""
    if _engine is None:
        msg = "Database not initialized. Call init_db() first."
        raise RuntimeError(msg)
    return _engine


async def wait_for_db(engine: AsyncEngine, attempts: int = 10, delay: float = 0.3) -> None:
    """Block until the database answers ``SELECT 1``, retrying a bounded number of times.

    Raises:
        SQLAlchemyError | OSError: The last connection error once ``attempts`` is exhausted.
    """
    for attempt in range(1, attempts + 1):
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            if attempt == attempts:
                logger.error("db_unreachable", attempts=attempts, error=str(e))
                raise
            logger.warning("db_not_ready", attempt=attempt, error=str(e))
            await asyncio.sleep(delay)
        else:
            return


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the session factory for code running outside a request."""
    if _session_factory is None:
        msg = "Database not initialized. Call init_db() first."
        raise RuntimeError(msg)
    return _session_factory


@asynccontextmanager
async def write_serialized() -> AsyncGenerator[None, None]:
    """Hold the single-writer lock when the backing store needs one.

    A no-op for stores with native concurrent writers.
    """
    if _write_lock is None:
        yield
        return
    async with _write_lock:
        yield


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session (FastAPI dependency)."""
    async with get_session_factory()() as session:
        yield session
