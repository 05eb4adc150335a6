"""
Batch Processor — drains a bounded, fair slice of deferred requests per run.

One pass:
  1. Scan the namespace; rehydrate every pending record whose account is live
  2. Group candidates by originating account
  3. Per account: oldest first, at most batch_size
  4. For each selected record, sequentially:
        pending → processing  (persist)
        evaluate rule, send decision through the rehydrated handle
        processing → processed (persist)     on success
        processing → pending   (persist)     on any failure, retried next run
  5. Return how many records entered processing

Passes are mutually exclusive: run() holds a lock for its whole duration, so
two passes never write the same key concurrently. A record left in
processing by a crash is not reset by later scans; it stays until TTL
eviction.
"""
from __future__ import annotations

import asyncio
import structlog
from collections import OrderedDict
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Optional

from pydantic import ValidationError

from accounts.base import AccountDirectory, LiveRequest
from database.store_base import BaseRequestStore
from models.errors import RuleNotConfiguredError
from models.schemas import (
    CachedRequest, REQUESTS_NAMESPACE, RequestStatus, now_ms,
)
from rules.evaluator import PolicyEvaluator, RuleSet

logger = structlog.get_logger()


@dataclass
class Candidate:
    key: str
    record: CachedRequest
    handle: LiveRequest


@dataclass
class BatchOutcome:
    scanned: int = 0
    pending: int = 0
    offline: int = 0
    invalid: int = 0
    selected: int = 0
    started: int = 0
    processed: int = 0
    failed: int = 0
    accounts: dict[str, int] = field(default_factory=dict)   # account → selected

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class BatchProcessor:

    def __init__(
        self,
        store: BaseRequestStore,
        directory: AccountDirectory,
        rules: RuleSet,
        evaluator: Optional[PolicyEvaluator] = None,
        batch_size: int = 3,
        max_age: Optional[float] = None,
        namespace: str = REQUESTS_NAMESPACE,
        clock: Callable[[], int] = now_ms,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.store = store
        self.directory = directory
        self.rules = rules
        self.evaluator = evaluator or PolicyEvaluator()
        self.batch_size = batch_size
        self.max_age = max_age
        self.namespace = namespace
        self._clock = clock
        self._lock = asyncio.Lock()
        self.last_outcome: Optional[BatchOutcome] = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run(self) -> int:
        """One pass. Returns the number of records that entered processing."""
        async with self._lock:
            outcome = BatchOutcome()
            self.last_outcome = outcome

            groups = await self._scan(outcome)
            selected = self._select(groups)
            outcome.selected = sum(len(c) for c in selected.values())
            outcome.accounts = {aid: len(c) for aid, c in selected.items()}

            logger.info("batch_run_selected",
                        pending=outcome.pending,
                        offline=outcome.offline,
                        selected=outcome.selected,
                        accounts=len(selected))

            for candidates in selected.values():
                for candidate in candidates:
                    await self._process(candidate, outcome)

            return outcome.started

    # ── Scan & group ──────────────────────────────────────────

    async def _scan(self, outcome: BatchOutcome) -> OrderedDict[str, list[Candidate]]:
        groups: OrderedDict[str, list[Candidate]] = OrderedDict()
        async for key, value in self.store.entries(self.namespace):
            outcome.scanned += 1
            try:
                record = CachedRequest.from_store(value)
            except ValidationError as e:
                outcome.invalid += 1
                logger.warning("request_record_invalid", key=key, error=str(e))
                continue
            if record.status != RequestStatus.PENDING:
                continue
            outcome.pending += 1

            handle = self.directory.rehydrate(record.account_id, record.snapshot, record.type)
            if handle is None:
                outcome.offline += 1
                continue
            groups.setdefault(record.account_id, []).append(Candidate(key, record, handle))
        return groups

    def _select(self, groups: OrderedDict[str, list[Candidate]]) -> OrderedDict[str, list[Candidate]]:
        """Oldest first within an account; batch_size applies per account."""
        selected: OrderedDict[str, list[Candidate]] = OrderedDict()
        for account_id, candidates in groups.items():
            candidates.sort(key=lambda c: (c.record.timestamp, c.key))
            selected[account_id] = candidates[: self.batch_size]
        return selected

    # ── Per-record state machine ──────────────────────────────

    def _remaining_ttl(self, record: CachedRequest) -> Optional[float]:
        """Seconds left of the record's original max age, so updates keep its expiry."""
        if self.max_age is None:
            return None
        age = (self._clock() - record.timestamp) / 1000
        return max(self.max_age - age, 1.0)

    async def _persist(self, key: str, record: CachedRequest) -> None:
        await self.store.set(self.namespace, key, record.to_store(), ttl=self._remaining_ttl(record))

    async def _process(self, candidate: Candidate, outcome: BatchOutcome) -> None:
        key, handle = candidate.key, candidate.handle

        # Read-modify-write: the record may have expired or changed since the scan
        current = await self.store.get(self.namespace, key)
        if current is None:
            logger.info("request_vanished", key=key)
            return
        record = CachedRequest.from_store(current)
        if record.status != RequestStatus.PENDING:
            logger.info("request_no_longer_pending", key=key, status=record.status.value)
            return

        # A redelivery rewrote the snapshot after the scan; act on the stored one
        if record.snapshot != candidate.record.snapshot:
            handle = self.directory.rehydrate(record.account_id, record.snapshot, record.type)
            if handle is None:
                logger.info("request_account_offline", key=key, account_id=record.account_id)
                return
            logger.debug("request_rebound", key=key)

        record.status = RequestStatus.PROCESSING
        record.attempts += 1
        await self._persist(key, record)
        outcome.started += 1

        try:
            await self._resolve(record, handle)
        except Exception as e:
            record.status = RequestStatus.PENDING
            record.last_error = str(e) or type(e).__name__
            await self._persist(key, record)
            outcome.failed += 1
            logger.error("request_processing_failed",
                         key=key,
                         account_id=record.account_id,
                         attempts=record.attempts,
                         error=record.last_error)
            return

        record.status = RequestStatus.PROCESSED
        record.last_error = ""
        await self._persist(key, record)
        outcome.processed += 1
        logger.info("request_processed", key=key, account_id=record.account_id)

    async def _resolve(self, record: CachedRequest, handle: LiveRequest) -> None:
        if not self.rules.is_configured(record.type):
            raise RuleNotConfiguredError(record.type.value)
        rule = self.rules.get(record.type)
        decision = await self.evaluator.evaluate(rule, handle, record.type)
        if decision is not None:
            await self.directory.send(handle, decision)
