"""
Database layer — Multi-backend request storage.

Backends:
  - In-memory (dict-based, for development/testing)
  - File (JSON files on disk, for small deployments)
  - Redis (native key expiry)
  - SQL (PostgreSQL / MySQL / SQLite via SQLAlchemy async)

Quick start:
  from database import create_store
  store = create_store({"backend": "memory"})
  await store.set("verifier:requests", "contact:42", {...}, ttl=3600)
"""
from database.store_base import BaseRequestStore
from database.store_memory import InMemoryRequestStore
from database.store_file import FileRequestStore
from database.store_redis import RedisRequestStore
from database.store_factory import create_store, get_store, reset_store

__all__ = [
    # Store interface
    "BaseRequestStore",
    # Store backends (SqlRequestStore lives in database.store, imported lazily)
    "InMemoryRequestStore", "FileRequestStore", "RedisRequestStore",
    # Factory
    "create_store", "get_store", "reset_store",
]
