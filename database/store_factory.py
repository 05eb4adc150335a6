"""
Store Factory — Create the right request store backend from configuration.

Configuration in settings.yaml:
    store:
      # Request store backend
      #   "memory"   — In-memory dicts (development, testing)
      #   "file"     — JSON files on disk (small deployments, demos)
      #   "redis"    — Redis keys with native expiry
      #   "sql"      — SQLAlchemy table (PostgreSQL / MySQL / SQLite)
      backend: "memory"
      file_dir: "./data"
      file_flush_interval_s: 0
      redis_url: "redis://localhost:6379"
      database_url: "sqlite:///./verifier.db"

Usage:
    from database.store_factory import create_store, get_store
    store = create_store(config)     # Create from config dict
    store = get_store()              # Get singleton instance
"""
from __future__ import annotations

import structlog
from typing import Optional

from database.store_base import BaseRequestStore

logger = structlog.get_logger()

_instance: Optional[BaseRequestStore] = None


def create_store(config: dict = None) -> BaseRequestStore:
    """
    Factory: create the appropriate request store backend.

    Args:
        config: dict with keys:
            backend: "memory" | "file" | "redis" | "sql"  (default: "memory")
            file_dir: str (for file backend, default: "./data")
            file_flush_interval_s: float (for file backend; 0 writes on every mutation)
            redis_url: str (for redis backend)
            database_url: str (for sql backend)
    """
    global _instance
    if _instance is not None:
        return _instance

    config = config or {}
    backend = config.get("backend", "memory")

    if backend == "sql":
        from database.store import SqlRequestStore
        _instance = SqlRequestStore(database_url=config.get("database_url") or None)
        logger.info("store_created", backend="sql")

    elif backend == "file":
        from database.store_file import FileRequestStore
        data_dir = config.get("file_dir", "./data")
        flush_interval_s = float(config.get("file_flush_interval_s") or 0)
        _instance = FileRequestStore(data_dir=data_dir, flush_interval_s=flush_interval_s)
        logger.info("store_created", backend="file", data_dir=data_dir,
                    flush_interval_s=flush_interval_s)

    elif backend == "redis":
        from database.store_redis import RedisRequestStore
        url = config.get("redis_url", "redis://localhost:6379")
        _instance = RedisRequestStore(redis_url=url)
        logger.info("store_created", backend="redis")

    else:  # "memory" or default
        from database.store_memory import InMemoryRequestStore
        _instance = InMemoryRequestStore()
        logger.info("store_created", backend="memory")

    return _instance


def get_store() -> BaseRequestStore:
    """Return the singleton store instance, creating a memory store if none exists."""
    global _instance
    if _instance is None:
        _instance = create_store()
    return _instance


def reset_store() -> None:
    """Reset the singleton (for testing)."""
    global _instance
    _instance = None
