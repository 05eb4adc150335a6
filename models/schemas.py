"""
Core data models for the request verifier.
These are the universal types shared across all modules.
"""
from __future__ import annotations

import time
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


REQUESTS_NAMESPACE = "verifier:requests"


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class RequestType(str, Enum):
    CONTACT = "contact"              # "add me as a contact"
    GROUP_INVITE = "group-invite"    # "let my group join / invite you into my group"
    GROUP_JOIN = "group-join"        # "let me into this group"


class RequestStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"


def now_ms() -> int:
    return int(time.time() * 1000)


def request_key(request_type: RequestType | str, message_id: str) -> str:
    """Store key for a request identity: ``<type>:<message id>``."""
    value = request_type.value if isinstance(request_type, RequestType) else request_type
    return f"{value}:{message_id}"


def make_account_id(platform: str, self_id: str) -> str:
    return f"{platform}:{self_id}"


# ──────────────────────────────────────────────────────────────
#  Snapshot — durable capture of an arrival event
# ──────────────────────────────────────────────────────────────

class RequestSnapshot(BaseModel):
    """
    Everything needed to rebuild a live handle for a request long after the
    originating connection has closed. Never holds live objects.
    """
    platform: str
    self_id: str                              # receiving account on the platform
    message_id: str = ""                      # platform request/flag id to answer
    user_id: str = ""                         # requester
    channel_id: str = ""                      # origin channel/group, if any
    guild_id: str = ""
    comment: str = ""                         # requester's note
    payload: dict[str, Any] = {}              # raw event data for the adapter

    @property
    def account_id(self) -> str:
        return make_account_id(self.platform, self.self_id)


# ──────────────────────────────────────────────────────────────
#  Request record — what lives in the store
# ──────────────────────────────────────────────────────────────

class CachedRequest(BaseModel):
    type: RequestType
    timestamp: int = Field(default_factory=now_ms)   # epoch ms at arrival
    status: RequestStatus = RequestStatus.PENDING
    snapshot: RequestSnapshot
    attempts: int = 0
    last_error: str = ""

    @property
    def key(self) -> str:
        return request_key(self.type, self.snapshot.message_id)

    @property
    def account_id(self) -> str:
        return self.snapshot.account_id

    def to_store(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_store(cls, data: dict[str, Any]) -> CachedRequest:
        return cls.model_validate(data)


# ──────────────────────────────────────────────────────────────
#  Decisions & events
# ──────────────────────────────────────────────────────────────

class ApprovalDecision(BaseModel):
    approve: bool
    comment: Optional[str] = None


class RequestEvent(BaseModel):
    """An arrival event as delivered by a platform gateway."""
    type: RequestType
    platform: str
    self_id: str
    message_id: str = ""
    user_id: str = ""
    channel_id: str = ""
    guild_id: str = ""
    comment: str = ""
    payload: dict[str, Any] = {}

    def to_snapshot(self) -> RequestSnapshot:
        return RequestSnapshot(
            platform=self.platform,
            self_id=self.self_id,
            message_id=self.message_id,
            user_id=self.user_id,
            channel_id=self.channel_id,
            guild_id=self.guild_id,
            comment=self.comment,
            payload=dict(self.payload),
        )


class EventOutcome(str, Enum):
    IGNORED = "ignored"          # no rule configured for the type
    DEFERRED = "deferred"        # written to the store
    RESPONDED = "responded"      # decision sent immediately
    NO_ACTION = "no_action"      # rule evaluated to nothing
