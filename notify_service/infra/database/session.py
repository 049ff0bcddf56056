"""Database session management for the async SQLAlchemy engine."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from notify_service.core.settings import get_db_settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get or create the process-wide async engine."""
    global _engine
    if _engine is None:
        db_settings = get_db_settings()
        engine_kwargs: dict[str, Any] = {"echo": db_settings.echo}
        if not db_settings.is_sqlite:
            engine_kwargs.update(
                pool_size=db_settings.pool_size,
                max_overflow=db_settings.max_overflow,
                pool_timeout=db_settings.pool_timeout,
                pool_recycle=db_settings.pool_recycle,
                pool_pre_ping=db_settings.pool_pre_ping,
            )
        _engine = create_async_engine(db_settings.get_sqlalchemy_url(), **engine_kwargs)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory bound to the engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Get async database session.

    Yields:
        Database session that is automatically closed. Uncommitted work is
        rolled back on exit.

    Example:
        async with get_async_session() as session:
            await service.process_notification(session, notification_id)
    """
    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_database(*, create_tables: bool = False) -> None:
    """Verify connectivity and optionally create tables.

    Args:
        create_tables: Create all mapped tables (local SQLite runs without
            migrations).

    Raises:
        Exception: Connection errors propagate after being logged.
    """
    db_settings = get_db_settings()
    engine = get_engine()
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            if create_tables:
                from notify_service.core.database.base import Base
                from notify_service.features.notifications import models  # noqa: F401

                await conn.run_sync(Base.metadata.create_all)
    except Exception as exc:
        logger.error(
            "Failed to connect to database",
            extra={"sqlite": db_settings.is_sqlite, "error": str(exc)},
        )
        raise
    logger.info("Database connection established", extra={"sqlite": db_settings.is_sqlite})


async def close_database() -> None:
    """Dispose the engine during shutdown."""
    global _engine, _session_factory
    if _engine is None:
        return
    logger.info("Closing database connection")
    await _engine.dispose()
    _engine = None
    _session_factory = None
