"""
RedisRequestStore — Request store backed by plain Redis string keys.

Layout:
  {namespace}:{key}  →  JSON value, expiry via SET PX

Scans use SCAN MATCH {namespace}:* so a namespace can be enumerated without
a secondary index. Expiry is enforced by Redis itself.
"""
from __future__ import annotations

import json
import structlog
from typing import Any, AsyncIterator, Optional

from database.store_base import BaseRequestStore

logger = structlog.get_logger()

_GLOB_SPECIALS = "\\*?[]"


def _escape_glob(value: str) -> str:
    return "".join(f"\\{c}" if c in _GLOB_SPECIALS else c for c in value)


class RedisRequestStore(BaseRequestStore):
    """
    Production store for multi-restart deployments.
    Pass an existing client (e.g. in tests) or a URL to connect lazily.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379", client=None):
        self._redis_url = redis_url
        self._redis = client

    async def connect(self):
        if self._redis is not None:
            return
        import redis.asyncio as aioredis
        self._redis = aioredis.from_url(
            self._redis_url,
            decode_responses=True,
            max_connections=20,
        )
        await self._redis.ping()
        logger.info("redis_store_connected", url=self._redis_url)

    async def close(self):
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    @staticmethod
    def _full_key(namespace: str, key: str) -> str:
        return f"{namespace}:{key}"

    async def get(self, namespace: str, key: str) -> Optional[dict[str, Any]]:
        await self.connect()
        raw = await self._redis.get(self._full_key(namespace, key))
        return json.loads(raw) if raw is not None else None

    async def set(
        self, namespace: str, key: str, value: dict[str, Any], ttl: Optional[float] = None,
    ) -> None:
        await self.connect()
        px = max(int(ttl * 1000), 1) if ttl is not None else None
        await self._redis.set(self._full_key(namespace, key), json.dumps(value), px=px)

    async def delete(self, namespace: str, key: str) -> None:
        await self.connect()
        await self._redis.delete(self._full_key(namespace, key))

    async def entries(self, namespace: str) -> AsyncIterator[tuple[str, dict[str, Any]]]:
        await self.connect()
        prefix = f"{namespace}:"
        async for full_key in self._redis.scan_iter(match=f"{_escape_glob(namespace)}:*"):
            raw = await self._redis.get(full_key)
            if raw is None:
                continue  # expired between SCAN and GET
            yield full_key[len(prefix):], json.loads(raw)

    async def clear(self, namespace: str) -> None:
        await self.connect()
        keys = [k async for k in self._redis.scan_iter(match=f"{_escape_glob(namespace)}:*")]
        if keys:
            await self._redis.delete(*keys)
