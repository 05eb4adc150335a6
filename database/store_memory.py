"""
InMemoryRequestStore — Dict-backed store for development and testing.

Features:
  - Zero dependencies (no database, no Redis)
  - Full interface compatibility with the other backends
  - Safe under asyncio (single event loop)
  - All data lost on process restart

Best for: local development, unit tests, quick prototyping.
"""
from __future__ import annotations

import copy
import time
import structlog
from collections import defaultdict
from typing import Any, AsyncIterator, Callable, Optional

from database.store_base import BaseRequestStore

logger = structlog.get_logger()


class InMemoryRequestStore(BaseRequestStore):
    """
    Namespaced dict store with lazy TTL eviction.
    Values are deep-copied on the way in and out so callers never share
    state with the store, mirroring a serializing backend.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        # namespace → key → {"value": dict, "expires_at": float | None}
        self._data: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        logger.info("inmemory_store_initialized")

    def _expired(self, entry: dict[str, Any]) -> bool:
        expires_at = entry.get("expires_at")
        return expires_at is not None and expires_at <= self._clock()

    def _evict(self, namespace: str, key: str) -> None:
        self._data[namespace].pop(key, None)

    async def get(self, namespace: str, key: str) -> Optional[dict[str, Any]]:
        entry = self._data[namespace].get(key)
        if entry is None:
            return None
        if self._expired(entry):
            self._evict(namespace, key)
            return None
        return copy.deepcopy(entry["value"])

    async def set(
        self, namespace: str, key: str, value: dict[str, Any], ttl: Optional[float] = None,
    ) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        self._data[namespace][key] = {"value": copy.deepcopy(value), "expires_at": expires_at}

    async def delete(self, namespace: str, key: str) -> None:
        self._evict(namespace, key)

    async def entries(self, namespace: str) -> AsyncIterator[tuple[str, dict[str, Any]]]:
        # Snapshot keys so writes during iteration are safe
        for key in list(self._data[namespace].keys()):
            entry = self._data[namespace].get(key)
            if entry is None:
                continue
            if self._expired(entry):
                self._evict(namespace, key)
                continue
            yield key, copy.deepcopy(entry["value"])

    async def clear(self, namespace: str) -> None:
        self._data.pop(namespace, None)

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        removed = 0
        for namespace, entries in self._data.items():
            for key in [k for k, e in entries.items() if self._expired(e)]:
                del entries[key]
                removed += 1
        return removed

    # ── Stats (for debugging) ─────────────────────────────

    def stats(self) -> dict[str, int]:
        return {ns: len(entries) for ns, entries in self._data.items()}
