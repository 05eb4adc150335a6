"""
Async database sessions for the sql request store — PostgreSQL, MySQL, SQLite.

Engines are cached per database URL, so two stores pointed at different
databases never share a connection pool.

Driver mapping:
  postgresql://  → postgresql+asyncpg://     (requires asyncpg)
  mysql://       → mysql+aiomysql://         (requires aiomysql)
  sqlite://      → sqlite+aiosqlite://       (requires aiosqlite)

Usage:
    await init_db(url)                    # create store_entries once
    async with get_session(url) as db:    # one transaction
        await db.merge(row)
    await close_db()                      # dispose every engine
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker,
)

from config.settings import get_settings
from database.models import Base

logger = structlog.get_logger()

_ASYNC_DRIVERS = [
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
    ("mysql+pymysql://", "mysql+aiomysql://"),
    ("mysql://", "mysql+aiomysql://"),
    ("sqlite://", "sqlite+aiosqlite://"),
]

# async URL → engine / session factory
_engines: dict[str, AsyncEngine] = {}
_factories: dict[str, async_sessionmaker[AsyncSession]] = {}


def _to_async_url(db_url: str) -> str:
    """Swap a sync driver prefix for its async equivalent. Async URLs pass through."""
    for sync_prefix, async_prefix in _ASYNC_DRIVERS:
        if db_url.startswith(sync_prefix):
            return async_prefix + db_url[len(sync_prefix):]
    return db_url


def _resolve_url(database_url: Optional[str]) -> str:
    return _to_async_url(database_url or get_settings().store.database_url)


def _engine_kwargs(db_url: str) -> dict:
    kwargs: dict = {"echo": get_settings().debug}
    if db_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs.update(pool_size=5, max_overflow=10, pool_recycle=1800, pool_pre_ping=True)
    return kwargs


def get_engine(database_url: Optional[str] = None) -> AsyncEngine:
    url = _resolve_url(database_url)
    engine = _engines.get(url)
    if engine is None:
        engine = create_async_engine(url, **_engine_kwargs(url))
        _engines[url] = engine
        _factories[url] = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        logger.info("database_engine_created",
                    dialect=engine.dialect.name,
                    url=str(engine.url).split("@")[-1])
    return engine


@asynccontextmanager
async def get_session(database_url: Optional[str] = None) -> AsyncGenerator[AsyncSession, None]:
    """Transactional scope: commits on exit, rolls back on error."""
    get_engine(database_url)
    async with _factories[_resolve_url(database_url)]() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(database_url: Optional[str] = None) -> None:
    engine = get_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized",
                dialect=engine.dialect.name,
                tables=list(Base.metadata.tables.keys()))


async def close_db(database_url: Optional[str] = None) -> None:
    """Dispose one engine, or all of them when no URL is given."""
    urls = [_resolve_url(database_url)] if database_url else list(_engines)
    for url in urls:
        engine = _engines.pop(url, None)
        _factories.pop(url, None)
        if engine is not None:
            await engine.dispose()
            logger.info("database_closed", url=str(engine.url).split("@")[-1])
