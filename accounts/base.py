"""
Account Adapters — live accounts that receive requests and send responses.

Provides:
- AccountAdapter: abstract base wrapping every response with liveness checks
  and error normalization
- LiveRequest: a live, addressable handle for one request, rebuilt from a
  durable RequestSnapshot; never persisted
- AccountDirectory: adapter lookup, liveness tracking, rehydration and the
  response sink used by both the immediate and the deferred paths
"""
from __future__ import annotations

import abc
import structlog
from typing import Any, Optional

from models.errors import (
    AccountNotFoundError, AccountOfflineError, ResponseDeliveryError,
)
from models.schemas import (
    ApprovalDecision, RequestSnapshot, RequestType, make_account_id,
)
from rules.privileges import PrivilegeStore

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
#  ACCOUNT ADAPTER — Abstract Base
# ══════════════════════════════════════════════════════════════

class AccountAdapter(abc.ABC):
    """
    Base class for all account adapters.

    Subclasses implement _do_respond. The base class rejects responses while
    the account is offline and wraps transport errors in ResponseDeliveryError.
    """

    def __init__(self, platform: str, self_id: str):
        self.platform = platform
        self.self_id = self_id
        self.online = False
        self._config: dict[str, Any] = {}
        self.responses_sent = 0
        self.responses_failed = 0

    @property
    def account_id(self) -> str:
        return make_account_id(self.platform, self.self_id)

    # ── Abstract hooks ────────────────────────────────────────

    @abc.abstractmethod
    async def initialize(self, config: dict[str, Any]) -> None:
        ...

    @abc.abstractmethod
    async def _do_respond(
        self, request_type: RequestType, message_id: str, approve: bool, comment: Optional[str],
    ) -> None:
        ...

    # ── Public respond ────────────────────────────────────────

    async def respond(
        self, request_type: RequestType, message_id: str, approve: bool, comment: Optional[str] = None,
    ) -> None:
        if not self.online:
            raise AccountOfflineError(self.account_id)
        try:
            await self._do_respond(request_type, message_id, approve, comment)
        except ResponseDeliveryError:
            self.responses_failed += 1
            raise
        except Exception as e:
            self.responses_failed += 1
            raise ResponseDeliveryError(self.account_id, str(e)) from e
        self.responses_sent += 1
        logger.info("response_sent",
                    account_id=self.account_id,
                    request_type=request_type.value,
                    message_id=message_id,
                    approve=approve)

    async def health_check(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "online": self.online,
            "responses_sent": self.responses_sent,
            "responses_failed": self.responses_failed,
        }

    async def shutdown(self) -> None:
        self.online = False


# ══════════════════════════════════════════════════════════════
#  LIVE REQUEST HANDLE
# ══════════════════════════════════════════════════════════════

class LiveRequest:
    """A request bound to a currently live account."""

    def __init__(
        self,
        request_type: RequestType,
        snapshot: RequestSnapshot,
        account: AccountAdapter,
        privileges: PrivilegeStore,
    ):
        self.request_type = request_type
        self.snapshot = snapshot
        self.account = account
        self.privileges = privileges

    @property
    def account_id(self) -> str:
        return self.account.account_id

    @property
    def message_id(self) -> str:
        return self.snapshot.message_id

    async def get_requester_authority(self) -> int:
        return await self.privileges.get_authority(self.snapshot.platform, self.snapshot.user_id)

    async def get_group_assignee(self) -> str:
        return await self.privileges.get_assignee(self.snapshot.platform, self.snapshot.channel_id)

    async def claim_group(self) -> None:
        """Assign the origin group to the receiving account."""
        await self.privileges.set_assignee(
            self.snapshot.platform, self.snapshot.channel_id, self.account.self_id,
        )

    async def respond(self, decision: ApprovalDecision) -> None:
        await self.account.respond(
            self.request_type, self.snapshot.message_id, decision.approve, decision.comment,
        )

    def to_snapshot(self) -> RequestSnapshot:
        return self.snapshot.model_copy(deep=True)


# ══════════════════════════════════════════════════════════════
#  ACCOUNT DIRECTORY
# ══════════════════════════════════════════════════════════════

class AccountDirectory:
    def __init__(self, privileges: Optional[PrivilegeStore] = None):
        self._adapters: dict[str, AccountAdapter] = {}
        self.privileges = privileges or PrivilegeStore()

    def register(self, adapter: AccountAdapter):
        self._adapters[adapter.account_id] = adapter
        logger.info("account_registered", account_id=adapter.account_id)

    def get(self, account_id: str) -> Optional[AccountAdapter]:
        return self._adapters.get(account_id)

    def list_accounts(self) -> list[str]:
        return list(self._adapters.keys())

    def list_live_accounts(self) -> list[str]:
        return [aid for aid, a in self._adapters.items() if a.online]

    def is_live(self, account_id: str) -> bool:
        adapter = self._adapters.get(account_id)
        return adapter is not None and adapter.online

    def mark_online(self, account_id: str) -> None:
        adapter = self._require(account_id)
        adapter.online = True
        logger.info("account_online", account_id=account_id)

    def mark_offline(self, account_id: str) -> None:
        adapter = self._require(account_id)
        adapter.online = False
        logger.info("account_offline", account_id=account_id)

    def _require(self, account_id: str) -> AccountAdapter:
        adapter = self._adapters.get(account_id)
        if adapter is None:
            raise AccountNotFoundError(account_id)
        return adapter

    def bind(self, request_type: RequestType, snapshot: RequestSnapshot) -> LiveRequest:
        """Build a handle for a freshly-arrived request. Raises if the account is unknown."""
        adapter = self._require(snapshot.account_id)
        return LiveRequest(request_type, snapshot, adapter, self.privileges)

    def rehydrate(
        self, account_id: str, snapshot: RequestSnapshot, request_type: RequestType,
    ) -> Optional[LiveRequest]:
        """Rebuild a live handle for a stored snapshot, or None if the account is not live."""
        if not self.is_live(account_id):
            return None
        return LiveRequest(request_type, snapshot, self._adapters[account_id], self.privileges)

    async def send(self, handle: LiveRequest, decision: ApprovalDecision) -> None:
        await handle.respond(decision)

    async def health(self) -> dict[str, Any]:
        return {aid: await a.health_check() for aid, a in self._adapters.items()}

    async def initialize_all(self, configs: dict[str, dict[str, Any]]):
        for aid, adapter in self._adapters.items():
            try:
                await adapter.initialize(configs.get(aid, {}))
            except Exception as e:
                adapter.online = False
                logger.error("account_init_failed", account_id=aid, error=str(e))

    async def shutdown_all(self):
        for adapter in self._adapters.values():
            try:
                await adapter.shutdown()
            except Exception as e:
                logger.warning("account_shutdown_failed", account_id=adapter.account_id, error=str(e))
