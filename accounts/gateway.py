"""
Gateway Account Adapter — answers requests through an HTTP bot gateway.

Each request type maps to a gateway action:

    contact       → POST {gateway_url}/handle_contact_request
    group-invite  → POST {gateway_url}/handle_group_invite
    group-join    → POST {gateway_url}/handle_group_join

Body: {"self_id", "message_id", "approve", "comment"}.
Transport errors are retried with exponential backoff before surfacing.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential

from accounts.base import AccountAdapter
from models.schemas import RequestType

logger = structlog.get_logger()

ACTIONS: dict[RequestType, str] = {
    RequestType.CONTACT: "handle_contact_request",
    RequestType.GROUP_INVITE: "handle_group_invite",
    RequestType.GROUP_JOIN: "handle_group_join",
}


class GatewayAccountAdapter(AccountAdapter):

    def __init__(self, platform: str, self_id: str, gateway_url: str = "", token: str = ""):
        super().__init__(platform, self_id)
        self.gateway_url = gateway_url
        self.token = token
        self.client: Optional[httpx.AsyncClient] = None

    async def initialize(self, config: dict[str, Any]) -> None:
        self._config = config or {}
        self.gateway_url = self._config.get("gateway_url", self.gateway_url)
        self.token = self._config.get("token", self.token)
        if not self.gateway_url:
            logger.warning("gateway_not_configured", account_id=self.account_id)
            self.online = False
            return
        await self._get_client()
        self.online = self._config.get("online", True)
        logger.info("gateway_account_initialized",
                    account_id=self.account_id, online=self.online)

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            headers = {}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self.client = httpx.AsyncClient(
                base_url=self.gateway_url,
                headers=headers,
                timeout=15.0,
            )
        return self.client

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, max=10), reraise=True)
    async def _post(self, action: str, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        response = await client.post(f"/{action}", json=payload)
        response.raise_for_status()
        return response.json() if response.content else {}

    async def _do_respond(
        self, request_type: RequestType, message_id: str, approve: bool, comment: Optional[str],
    ) -> None:
        payload = {
            "self_id": self.self_id,
            "message_id": message_id,
            "approve": approve,
        }
        if comment is not None:
            payload["comment"] = comment
        result = await self._post(ACTIONS[request_type], payload)
        if isinstance(result, dict) and result.get("status") == "failed":
            raise RuntimeError(result.get("message") or "gateway rejected the response")

    async def shutdown(self) -> None:
        await super().shutdown()
        if self.client is not None and not self.client.is_closed:
            await self.client.aclose()
