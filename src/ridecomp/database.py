"""Async SQLAlchemy engine and session management.

One engine per process. The API opens a session per request through
`get_session`; the finalize worker borrows the factory directly.
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ridecomp.config import get_settings

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def engine_options(url: str) -> dict[str, Any]:
    """Pool and driver options for a database URL.

    SQLite (local runs) keeps SQLAlchemy's default pool. asyncpg gets a sized
    pool and no prepared statement cache, so it works behind pgbouncer.
    """
    settings = get_settings()
    options: dict[str, Any] = {"echo": settings.debug and settings.log_level == "DEBUG"}
    driver = make_url(url).drivername
    if driver.startswith("sqlite"):
        return options
    options.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
    )
    if driver == "postgresql+asyncpg":
        options["connect_args"] = {"statement_cache_size": 0}
    return options


async def init_db(url: str) -> None:
    """Create the engine and the session factory."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = create_async_engine(url, **engine_options(url))
    _session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)


async def close_db() -> None:
    """Dispose of the engine."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the session factory (used by the finalize worker)."""
    if _session_factory is None:
        msg = "Database not initialized. Call init_db() first."
        raise RuntimeError(msg)
    return _session_factory


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session (FastAPI dependency).

    Routers commit explicitly; anything left uncommitted is rolled back when
    the session closes.
    """
    async with get_session_factory()() as session:
        yield session
