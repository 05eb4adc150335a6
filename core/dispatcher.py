"""
Request Dispatcher — routes an arriving request to the immediate or the
deferred path.

    arrival event
        │
        ├── rule is no-op ─────────────────────▶ ignored
        ├── type listed in deferred_types ────▶ defer()  → store (pending)
        └── otherwise ────────────────────────▶ dispatch_now() → respond
"""
from __future__ import annotations

import structlog
from typing import Iterable, Optional

from accounts.base import AccountDirectory, LiveRequest
from database.store_base import BaseRequestStore
from models.errors import MissingMessageIdError
from models.schemas import (
    ApprovalDecision, CachedRequest, EventOutcome, REQUESTS_NAMESPACE,
    RequestEvent, RequestStatus, RequestType, now_ms,
)
from rules.evaluator import PolicyEvaluator, RuleSet

logger = structlog.get_logger()


class RequestDispatcher:

    def __init__(
        self,
        store: BaseRequestStore,
        directory: AccountDirectory,
        rules: RuleSet,
        evaluator: Optional[PolicyEvaluator] = None,
        deferred_types: Iterable[RequestType | str] = (),
        max_age: Optional[float] = None,
        namespace: str = REQUESTS_NAMESPACE,
    ):
        self.store = store
        self.directory = directory
        self.rules = rules
        self.evaluator = evaluator or PolicyEvaluator()
        self.deferred_types = {RequestType(t) for t in deferred_types}
        self.max_age = max_age
        self.namespace = namespace

    def is_deferred(self, request_type: RequestType) -> bool:
        return RequestType(request_type) in self.deferred_types

    async def handle_event(self, event: RequestEvent) -> EventOutcome:
        """Entry point for an arrival event from a platform gateway."""
        rule = self.rules.get(event.type)
        if not self.rules.is_configured(event.type):
            logger.debug("request_ignored", request_type=event.type.value, reason="no_rule")
            return EventOutcome.IGNORED

        handle = self.directory.bind(event.type, event.to_snapshot())

        if self.is_deferred(event.type):
            await self.defer(handle)
            return EventOutcome.DEFERRED

        decision = await self.dispatch_now(handle, rule=rule)
        return EventOutcome.RESPONDED if decision else EventOutcome.NO_ACTION

    # ── Immediate path ────────────────────────────────────────

    async def dispatch_now(self, handle: LiveRequest, rule=None) -> Optional[ApprovalDecision]:
        """Evaluate once and reply through the live handle. Send errors propagate."""
        if not handle.message_id:
            raise MissingMessageIdError(handle.request_type.value)
        rule = rule if rule is not None else self.rules.get(handle.request_type)
        decision = await self.evaluator.evaluate(rule, handle, handle.request_type)
        if decision is None:
            logger.info("request_no_action",
                        request_type=handle.request_type.value,
                        message_id=handle.message_id)
            return None
        await self.directory.send(handle, decision)
        return decision

    # ── Deferred path ─────────────────────────────────────────

    async def defer(self, handle: LiveRequest) -> CachedRequest:
        """Snapshot the request and store it as pending. Exactly one store write."""
        if not handle.message_id:
            raise MissingMessageIdError(handle.request_type.value)
        record = CachedRequest(
            type=handle.request_type,
            timestamp=now_ms(),
            status=RequestStatus.PENDING,
            snapshot=handle.to_snapshot(),
        )
        await self.store.set(self.namespace, record.key, record.to_store(), ttl=self.max_age)
        logger.info("request_deferred",
                    key=record.key,
                    account_id=record.account_id,
                    max_age=self.max_age)
        return record
