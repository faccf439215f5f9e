"""Database configuration and session management.

Provides the async SQLAlchemy engine/session factories used by the SQL
order store. The engine is built lazily so the in-memory backend never
needs a database driver at import time.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from storefront.infrastructure.config import settings

# Base class for models
Base = declarative_base()

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL."""
    return create_async_engine(database_url, echo=echo, pool_pre_ping=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the application-wide session factory, creating it on first use."""
    global _engine, _session_factory
    if _session_factory is None:
        _engine = build_engine(settings.database_url, echo=settings.debug)
        _session_factory = build_session_factory(_engine)
    return _session_factory


async def dispose_engine() -> None:
    """Dispose the application-wide engine, if one was created."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def check_database() -> bool:
    """Run a trivial query to verify connectivity."""
    from sqlalchemy import text

    async with get_session_factory()() as session:
        await session.execute(text("SELECT 1"))
    return True


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session.

    Yields:
        AsyncSession for database operations.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
