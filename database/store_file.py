"""
FileRequestStore — JSON file-backed store with persistence across restarts.

Data layout:
  {data_dir}/
    verifier_requests.json      # one file per namespace (":" → "_")

Each file maps key → {"value": {...}, "expires_at": epoch seconds | null}.

Features:
  - Survives process restarts (unlike InMemoryRequestStore)
  - No external dependencies (no database server, no Redis)
  - Flush on every mutation, or batched with file_flush_interval_s > 0
  - Single-process only (no concurrent write safety)

Best for: small deployments, demos, edge devices, air-gapped environments.
"""
from __future__ import annotations

import asyncio
import json
import time
import structlog
from pathlib import Path
from typing import Any, Callable, Optional

from database.store_memory import InMemoryRequestStore

logger = structlog.get_logger()


def _file_name(namespace: str) -> str:
    return namespace.replace(":", "_").replace("/", "_") + ".json"


def _valid_entry(entry: Any) -> bool:
    if not isinstance(entry, dict) or not isinstance(entry.get("value"), dict):
        return False
    expires_at = entry.get("expires_at")
    return expires_at is None or (
        isinstance(expires_at, (int, float)) and not isinstance(expires_at, bool)
    )


class FileRequestStore(InMemoryRequestStore):
    """
    Extends InMemoryRequestStore with JSON file persistence.

    On init: loads every namespace file in data_dir into memory.
    On every write: flushes the changed namespace to disk.
    """

    def __init__(
        self,
        data_dir: str = "./data",
        flush_interval_s: float = 0,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(clock=clock)
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._flush_interval = flush_interval_s
        self._dirty: set[str] = set()
        self._flush_task: Optional[asyncio.Task] = None
        self._load_all()
        logger.info("file_store_initialized",
                    data_dir=str(self._data_dir),
                    flush_interval_s=flush_interval_s)

    # ── Load / Save ───────────────────────────────────────

    def _file_path(self, namespace: str) -> Path:
        return self._data_dir / _file_name(namespace)

    def _load_all(self):
        """Load every namespace file from disk, skipping malformed entries."""
        for path in sorted(self._data_dir.glob("*.json")):
            try:
                with open(path, "r") as f:
                    data = json.load(f)
                namespace = data.get("namespace") if isinstance(data, dict) else None
                entries = data.get("entries") if isinstance(data, dict) else None
                if not namespace or not isinstance(entries, dict):
                    raise ValueError("unexpected file layout")
            except (json.JSONDecodeError, ValueError, OSError) as e:
                logger.warning("file_store_load_error", file=path.name, error=str(e))
                continue

            valid = {}
            for key, entry in entries.items():
                if _valid_entry(entry):
                    valid[key] = entry
                else:
                    logger.warning("file_store_entry_invalid",
                                   file=path.name, namespace=namespace, key=key)
            self._data[namespace] = valid
            logger.debug("file_store_loaded", namespace=namespace,
                         records=len(valid), skipped=len(entries) - len(valid))

    def _flush_namespace(self, namespace: str):
        """Write a single namespace to disk."""
        path = self._file_path(namespace)
        data = {"namespace": namespace, "entries": self._data.get(namespace, {})}
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2, default=str)
        tmp_path.replace(path)  # atomic on POSIX

    def _mark_dirty(self, namespace: str):
        if self._flush_interval <= 0:
            self._flush_namespace(namespace)
        else:
            self._dirty.add(namespace)
            if self._flush_task is None or self._flush_task.done():
                self._flush_task = asyncio.get_running_loop().create_task(
                    self._deferred_flush()
                )

    async def _deferred_flush(self):
        """Batch flush after interval."""
        await asyncio.sleep(self._flush_interval)
        dirty = self._dirty.copy()
        self._dirty.clear()
        for namespace in dirty:
            self._flush_namespace(namespace)

    # ── Override write methods to trigger persistence ──────

    async def set(
        self, namespace: str, key: str, value: dict[str, Any], ttl: Optional[float] = None,
    ) -> None:
        await super().set(namespace, key, value, ttl)
        self._mark_dirty(namespace)

    async def delete(self, namespace: str, key: str) -> None:
        await super().delete(namespace, key)
        self._mark_dirty(namespace)

    async def clear(self, namespace: str) -> None:
        await super().clear(namespace)
        self._dirty.discard(namespace)
        path = self._file_path(namespace)
        if path.exists():
            path.unlink()

    async def close(self) -> None:
        """Cancel any pending deferred flush and write dirty namespaces now."""
        if self._flush_task and not self._flush_task.done():
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
        for namespace in self._dirty:
            self._flush_namespace(namespace)
        self._dirty.clear()
