"""
Privilege Store — user authority levels and group assignees.

Threshold rules compare a requester's authority against a configured level
and, for group invites, record which account owns (is assigned to) a group.
Seeded from the `privileges` section of settings.yaml:

    privileges:
      default_authority: 1
      users:
        "onebot:10001": 3
      assignees:
        "onebot:group-42": "20002"
"""
from __future__ import annotations

import structlog
from typing import Optional

logger = structlog.get_logger()


def _scoped(platform: str, ident: str) -> str:
    return f"{platform}:{ident}"


class PrivilegeStore:
    """In-memory authority and assignee lookup, keyed by platform-scoped ids."""

    def __init__(
        self,
        users: Optional[dict[str, int]] = None,
        assignees: Optional[dict[str, str]] = None,
        default_authority: int = 1,
    ):
        self._users: dict[str, int] = dict(users or {})
        self._assignees: dict[str, str] = dict(assignees or {})
        self.default_authority = default_authority

    async def get_authority(self, platform: str, user_id: str) -> int:
        return self._users.get(_scoped(platform, user_id), self.default_authority)

    async def set_authority(self, platform: str, user_id: str, level: int) -> None:
        self._users[_scoped(platform, user_id)] = level

    async def get_assignee(self, platform: str, channel_id: str) -> str:
        return self._assignees.get(_scoped(platform, channel_id), "")

    async def set_assignee(self, platform: str, channel_id: str, assignee: str) -> None:
        self._assignees[_scoped(platform, channel_id)] = assignee
        logger.info("group_assigned", platform=platform, channel_id=channel_id, assignee=assignee)
