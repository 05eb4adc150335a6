"""Shared test fixtures for the request verifier."""
from __future__ import annotations

import asyncio
import pytest
from typing import Any, Optional

from accounts.base import AccountAdapter, AccountDirectory
from database.store_memory import InMemoryRequestStore
from models.schemas import (
    CachedRequest, REQUESTS_NAMESPACE, RequestEvent, RequestSnapshot,
    RequestStatus, RequestType,
)
from rules.privileges import PrivilegeStore


class FakeClock:
    """Manually advanced clock, in epoch seconds."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def ms(self) -> int:
        return int(self.now * 1000)


class RecordingAccount(AccountAdapter):
    """Account adapter that records responses instead of sending them."""

    def __init__(self, platform: str = "onebot", self_id: str = "10000", online: bool = True):
        super().__init__(platform, self_id)
        self.online = online
        self.fail_with: Optional[Exception] = None
        self.responses: list[dict[str, Any]] = []
        # Set when a response starts; a test may hold responses open with gate
        self.entered = asyncio.Event()
        self.gate: Optional[asyncio.Event] = None

    async def initialize(self, config: dict[str, Any]) -> None:
        self.online = config.get("online", self.online)

    async def _do_respond(self, request_type, message_id, approve, comment) -> None:
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        self.responses.append({
            "type": request_type.value,
            "message_id": message_id,
            "approve": approve,
            "comment": comment,
        })


# ──────────────────────────────────────────────────────────────
#  Fixtures
# ──────────────────────────────────────────────────────────────

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> InMemoryRequestStore:
    return InMemoryRequestStore(clock=clock)


@pytest.fixture
def privileges() -> PrivilegeStore:
    return PrivilegeStore(
        users={"onebot:boss": 5, "onebot:staff": 3},
        default_authority=1,
    )


@pytest.fixture
def account_a() -> RecordingAccount:
    return RecordingAccount("onebot", "10000")


@pytest.fixture
def account_b() -> RecordingAccount:
    return RecordingAccount("onebot", "20000")


@pytest.fixture
def directory(privileges, account_a, account_b) -> AccountDirectory:
    d = AccountDirectory(privileges)
    d.register(account_a)
    d.register(account_b)
    return d


@pytest.fixture
def make_event():
    def _make(
        request_type: RequestType = RequestType.CONTACT,
        message_id: str = "m1",
        self_id: str = "10000",
        user_id: str = "u1",
        channel_id: str = "",
        **kwargs,
    ) -> RequestEvent:
        return RequestEvent(
            type=request_type,
            platform="onebot",
            self_id=self_id,
            message_id=message_id,
            user_id=user_id,
            channel_id=channel_id,
            **kwargs,
        )
    return _make


@pytest.fixture
def seed(store):
    """Write a request record straight into the store, bypassing the dispatcher."""
    async def _seed(
        request_type: RequestType = RequestType.CONTACT,
        message_id: str = "m1",
        self_id: str = "10000",
        timestamp: int = 1,
        status: RequestStatus = RequestStatus.PENDING,
        user_id: str = "u1",
        channel_id: str = "",
        ttl: Optional[float] = None,
    ) -> CachedRequest:
        record = CachedRequest(
            type=request_type,
            timestamp=timestamp,
            status=status,
            snapshot=RequestSnapshot(
                platform="onebot",
                self_id=self_id,
                message_id=message_id,
                user_id=user_id,
                channel_id=channel_id,
            ),
        )
        await store.set(REQUESTS_NAMESPACE, record.key, record.to_store(), ttl=ttl)
        return record
    return _seed


@pytest.fixture
def load(store):
    """Read a request record back from the store."""
    async def _load(key: str) -> Optional[CachedRequest]:
        raw = await store.get(REQUESTS_NAMESPACE, key)
        return CachedRequest.from_store(raw) if raw is not None else None
    return _load


@pytest.fixture
def make_account():
    return RecordingAccount
