"""
Abstract Request Store — Interface for all storage backends.

Implementations:
  - InMemoryRequestStore (dict-based, single-process, no persistence)
  - FileRequestStore     (JSON files on disk, single-process, durable)
  - RedisRequestStore    (Redis keys with PX expiry)
  - SqlRequestStore      (PostgreSQL / MySQL / SQLite via SQLAlchemy)

The store is a namespaced key → JSON-dict map with optional per-entry TTL.
Expired entries are invisible to every read. There are no range queries or
secondary indexes; callers scan a namespace and group in memory.
"""
from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

EntryCallback = Callable[[dict[str, Any], str], Union[None, Awaitable[None]]]


class BaseRequestStore(ABC):
    """Interface that all request store backends must implement."""

    @abstractmethod
    async def get(self, namespace: str, key: str) -> Optional[dict[str, Any]]:
        ...

    @abstractmethod
    async def set(
        self, namespace: str, key: str, value: dict[str, Any], ttl: Optional[float] = None,
    ) -> None:
        """Upsert ``value`` under ``key``. ``ttl`` is in seconds; None keeps it forever."""
        ...

    @abstractmethod
    async def delete(self, namespace: str, key: str) -> None:
        ...

    @abstractmethod
    def entries(self, namespace: str) -> AsyncIterator[tuple[str, dict[str, Any]]]:
        """Async full scan of a namespace, yielding ``(key, value)`` pairs."""
        ...

    @abstractmethod
    async def clear(self, namespace: str) -> None:
        ...

    async def for_each(self, namespace: str, fn: EntryCallback) -> None:
        """Call ``fn(value, key)`` for every live entry; ``fn`` may be async."""
        async for key, value in self.entries(namespace):
            result = fn(value, key)
            if inspect.isawaitable(result):
                await result

    async def close(self) -> None:
        pass
