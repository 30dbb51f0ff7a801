"""
Database engine, session factory, and declarative base.

The engine is built once from ``Settings`` (asyncpg in production, aiosqlite
in dev/tests) and shared by the maintenance scripts and the database config
store. The first caller's settings win until ``close_db()``.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Optional

import structlog
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from grcrisk.config import Settings, settings as default_settings

logger = structlog.get_logger(__name__)

# Environments where missing grc_* tables are created from the models.
AUTO_CREATE_ENVIRONMENTS = ("development", "test")


class Base(DeclarativeBase):
    """Declarative base of the grc_* tables."""


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def engine_options(settings: Settings) -> Dict[str, Any]:
    """Keyword arguments for ``create_async_engine``; SQLite takes no pool sizing."""
    options: Dict[str, Any] = {"echo": settings.debug}
    if not settings.async_database_url.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=settings.db_pool_recycle,
        )
    return options


def get_engine(settings: Settings = default_settings) -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = create_async_engine(settings.async_database_url, **engine_options(settings))
        logger.info("database_engine_created", driver=_engine.url.drivername)
    return _engine


def get_session_factory(settings: Settings = default_settings) -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(settings),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


@asynccontextmanager
async def get_db_session(settings: Settings = default_settings) -> AsyncGenerator[AsyncSession, None]:
    """One unit of work: commit on success, roll back on error."""
    async with get_session_factory(settings)() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(settings: Settings = default_settings) -> List[str]:
    """
    Create missing grc_* tables in development and test.

    Other environments get their schema from Alembic and nothing is created.
    Returns the names of the tables created.
    """
    import grcrisk.db.models  # noqa: F401

    if settings.environment.lower() not in AUTO_CREATE_ENVIRONMENTS:
        logger.info("skipping_table_create", environment=settings.environment, reason="schema managed by alembic")
        return []

    async with get_engine(settings).begin() as conn:
        existing = set(await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names()))
        await conn.run_sync(Base.metadata.create_all)
    created = sorted(set(Base.metadata.tables) - existing)
    logger.info("grc_tables_created", tables=created, environment=settings.environment)
    return created


async def close_db() -> None:
    """Dispose of the engine (call at shutdown)."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("database_closed")
