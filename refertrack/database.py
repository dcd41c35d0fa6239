"""
Async SQLAlchemy engine and sessions.

Requests get a session from get_db (commit on success, rollback on error).
Workers and scripts use session_scope(), which does the same outside FastAPI.
Sessions never expire on commit, so referrals returned from the store stay
readable after the transaction ends.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker] = None


class Base(DeclarativeBase):
    pass


def _engine_options(settings) -> dict:
    options = {"echo": settings.app_env == "development", "pool_pre_ping": True}
    # SQLite (tests, local demo) uses a static pool with no sizing knobs
    if not settings.database_url.startswith("sqlite"):
        options["pool_size"] = settings.database_pool_size
        options["max_overflow"] = settings.database_max_overflow
    return options


def get_sessionmaker() -> async_sessionmaker:
    global _engine, _sessionmaker
    if _sessionmaker is None:
        from refertrack.config import get_settings
        settings = get_settings()
        _engine = create_async_engine(settings.database_url, **_engine_options(settings))
        _sessionmaker = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)
    return _sessionmaker


async def dispose_engine() -> None:
    """Close pooled connections. Safe to call when no engine was created."""
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _sessionmaker = None


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """One unit of work outside a request: commit on success, rollback on error."""
    async with get_sessionmaker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped session."""
    async with get_sessionmaker()() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.debug("Request transaction rolled back: %s", str(e))
            await session.rollback()
            raise
