"""
SqlRequestStore — Portable SQL request store for PostgreSQL, MySQL, SQLite.

One table (store_entries) keyed by (namespace, key). Expiry is compared
Python-side because SQLite drops timezone information on DATETIME columns.
"""
from __future__ import annotations

import structlog
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Optional

from sqlalchemy import select, delete

from database.models import StoreEntryRow
from database.session import close_db, get_session, init_db
from database.store_base import BaseRequestStore

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_expired(row: StoreEntryRow, now: datetime) -> bool:
    if row.expires_at is None:
        return False
    expires_at = row.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at <= now


class SqlRequestStore(BaseRequestStore):
    """
    Persistent request store backed by any SQLAlchemy-supported database.
    Call initialize() once before use to create the table.
    """

    def __init__(self, database_url: Optional[str] = None):
        self._database_url = database_url
        self._initialized = False

    async def initialize(self) -> None:
        if not self._initialized:
            await init_db(self._database_url)
            self._initialized = True

    async def get(self, namespace: str, key: str) -> Optional[dict[str, Any]]:
        await self.initialize()
        async with get_session(self._database_url) as db:
            row = await db.get(StoreEntryRow, (namespace, key))
            if row is None:
                return None
            if _is_expired(row, _utcnow()):
                await db.delete(row)
                return None
            return dict(row.value or {})

    async def set(
        self, namespace: str, key: str, value: dict[str, Any], ttl: Optional[float] = None,
    ) -> None:
        await self.initialize()
        expires_at = _utcnow() + timedelta(seconds=ttl) if ttl is not None else None
        async with get_session(self._database_url) as db:
            await db.merge(StoreEntryRow(
                namespace=namespace, key=key, value=value, expires_at=expires_at,
            ))

    async def delete(self, namespace: str, key: str) -> None:
        await self.initialize()
        async with get_session(self._database_url) as db:
            await db.execute(delete(StoreEntryRow).where(
                StoreEntryRow.namespace == namespace, StoreEntryRow.key == key,
            ))

    async def entries(self, namespace: str) -> AsyncIterator[tuple[str, dict[str, Any]]]:
        await self.initialize()
        now = _utcnow()
        # Materialize before yielding so no session is held across caller awaits
        async with get_session(self._database_url) as db:
            result = await db.execute(
                select(StoreEntryRow)
                .where(StoreEntryRow.namespace == namespace)
                .order_by(StoreEntryRow.key)
            )
            rows = [(r.key, dict(r.value or {})) for r in result.scalars() if not _is_expired(r, now)]
        for key, value in rows:
            yield key, value

    async def clear(self, namespace: str) -> None:
        await self.initialize()
        async with get_session(self._database_url) as db:
            await db.execute(delete(StoreEntryRow).where(StoreEntryRow.namespace == namespace))

    async def purge_expired(self) -> int:
        """Delete expired rows across all namespaces. Returns the count removed."""
        await self.initialize()
        now = _utcnow()
        removed = 0
        async with get_session(self._database_url) as db:
            result = await db.execute(select(StoreEntryRow).where(StoreEntryRow.expires_at.is_not(None)))
            for row in result.scalars():
                if _is_expired(row, now):
                    await db.delete(row)
                    removed += 1
        if removed:
            logger.info("sql_store_purged", removed=removed)
        return removed

    async def close(self) -> None:
        # With no explicit URL the store runs on the settings engine; dispose them all
        if self._initialized:
            await close_db(self._database_url)
            self._initialized = False
