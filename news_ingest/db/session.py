"""Database session management utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from news_ingest.core.config import get_settings
from news_ingest.core.logging import get_logger
from news_ingest.db.models import Base

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _engine_kwargs(database_url: str) -> Dict[str, Any]:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_recycle": 300,  # Recycle connections after 5 minutes
        "pool_size": 10,
        "max_overflow": 15,
        "pool_timeout": 30,
    }


def _ensure_sqlite_directory(database_url: str) -> None:
    database = make_url(database_url).database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)


def create_engine_for_url(database_url: str) -> AsyncEngine:
    """Build an async engine with backend-appropriate pool settings."""
    logger.info("initialising_database_engine", url=database_url)
    if database_url.startswith("sqlite"):
        _ensure_sqlite_directory(database_url)

    engine = create_async_engine(database_url, echo=False, **_engine_kwargs(database_url))

    if database_url.startswith("sqlite"):
        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

    return engine


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


def get_engine() -> AsyncEngine:
    """Return singleton async engine based on current settings."""
    global _engine, _session_factory

    if _engine is None:
        _engine = create_engine_for_url(get_settings().database_url)
        _session_factory = create_sessionmaker(_engine)

    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Return async sessionmaker tied to the engine."""
    global _session_factory
    if _session_factory is None:
        get_engine()
    assert _session_factory is not None
    return _session_factory


async def check_db_connection() -> bool:
    """Return True when a trivial query succeeds on the current engine."""
    if _engine is None:
        return False

    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("database_connection_check_failed", error=str(e))
        return False


async def dispose_engine() -> None:
    """Dispose of the singleton engine so the next call builds a fresh one."""
    global _engine, _session_factory

    if _engine is not None:
        logger.info("disposing_database_engine")
        try:
            await _engine.dispose()
        except Exception as e:
            logger.warning("engine_dispose_error", error=str(e))
    _engine = None
    _session_factory = None


async def ensure_healthy_connection() -> bool:
    """
    Ensure the database connection is healthy, rebuilding the engine if necessary.

    Returns True if connection is now healthy, False if the rebuild also failed.
    """
    get_engine()
    if await check_db_connection():
        return True

    logger.warning("database_connection_unhealthy_resetting")
    await dispose_engine()
    get_engine()
    return await check_db_connection()


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Create database tables if they do not yet exist."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
