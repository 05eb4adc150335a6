"""
Policy Evaluator — Turns a configured rule into an approval decision.

A rule is one of a closed set of variants, parsed once from configuration:

    NoopRule        — do nothing (also what "not configured" becomes)
    FixedRule       — always approve / always reject
    ThresholdRule   — approve when the requester's authority >= level;
                      for group invites, an already-assigned group is
                      approved and a successful check claims the group
    MessageRule     — reply with the type's preferred decision plus a comment
    CallbackRule    — call a user function; str → (prefer, str), bool → (bool)

The evaluator is stateless: everything it needs comes from the live handle.
"""
from __future__ import annotations

import inspect
import structlog
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated, Any, Callable, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field

from models.errors import UnknownRequestTypeError
from models.schemas import ApprovalDecision, RequestType

if TYPE_CHECKING:
    from accounts.base import LiveRequest

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Rule variants
# ──────────────────────────────────────────────────────────────

class NoopRule(BaseModel):
    kind: Literal["noop"] = "noop"


class FixedRule(BaseModel):
    kind: Literal["fixed"] = "fixed"
    approve: bool


class ThresholdRule(BaseModel):
    kind: Literal["threshold"] = "threshold"
    level: int = Field(ge=0)


class MessageRule(BaseModel):
    kind: Literal["message"] = "message"
    message: str


class CallbackRule(BaseModel):
    kind: Literal["callback"] = "callback"
    callback: Callable[[Any], Any]


Rule = Annotated[
    Union[NoopRule, FixedRule, ThresholdRule, MessageRule, CallbackRule],
    Field(discriminator="kind"),
]


class _RuleEnvelope(BaseModel):
    rule: Rule


def parse_rule(raw: Any) -> Rule:
    """
    Convert a configuration value into a rule variant.

    None → noop, bool → fixed, int → threshold, str → message,
    callable → callback, mapping with "kind" → explicit variant.
    """
    if isinstance(raw, (NoopRule, FixedRule, ThresholdRule, MessageRule, CallbackRule)):
        return raw
    if raw is None:
        return NoopRule()
    # bool is an int subclass, so check it first
    if isinstance(raw, bool):
        return FixedRule(approve=raw)
    if isinstance(raw, int):
        return ThresholdRule(level=raw)
    if isinstance(raw, str):
        return MessageRule(message=raw)
    if isinstance(raw, Mapping):
        return _RuleEnvelope(rule=dict(raw)).rule
    if callable(raw):
        return CallbackRule(callback=raw)
    raise ValueError(f"Unsupported rule value: {raw!r}")


# ──────────────────────────────────────────────────────────────
#  Per-type profiles
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RequestProfile:
    prefer: bool        # decision attached to a message rule / callback string
    is_channel: bool    # threshold rule consults and claims the origin group


PROFILES: dict[RequestType, RequestProfile] = {
    RequestType.CONTACT: RequestProfile(prefer=True, is_channel=False),
    RequestType.GROUP_INVITE: RequestProfile(prefer=False, is_channel=True),
    RequestType.GROUP_JOIN: RequestProfile(prefer=False, is_channel=False),
}


def get_profile(request_type: RequestType | str) -> RequestProfile:
    try:
        return PROFILES[RequestType(request_type)]
    except (KeyError, ValueError):
        raise UnknownRequestTypeError(str(request_type))


class RuleSet:
    """Rules keyed by request type. Unconfigured types resolve to NoopRule."""

    def __init__(self, rules: Optional[Mapping[RequestType | str, Any]] = None):
        self._rules: dict[RequestType, Rule] = {}
        for request_type, raw in (rules or {}).items():
            self._rules[RequestType(request_type)] = parse_rule(raw)

    def get(self, request_type: RequestType) -> Rule:
        return self._rules.get(RequestType(request_type), NoopRule())

    def set(self, request_type: RequestType, raw: Any) -> None:
        self._rules[RequestType(request_type)] = parse_rule(raw)

    def is_configured(self, request_type: RequestType) -> bool:
        return not isinstance(self.get(request_type), NoopRule)

    def describe(self) -> dict[str, str]:
        return {t.value: self.get(t).kind for t in RequestType}


# ──────────────────────────────────────────────────────────────
#  Evaluator
# ──────────────────────────────────────────────────────────────

class PolicyEvaluator:
    """Evaluates a rule against a live request handle."""

    async def evaluate(
        self,
        rule: Rule,
        handle: LiveRequest,
        request_type: RequestType,
    ) -> Optional[ApprovalDecision]:
        profile = get_profile(request_type)

        if isinstance(rule, NoopRule):
            return None
        if isinstance(rule, FixedRule):
            return ApprovalDecision(approve=rule.approve)
        if isinstance(rule, MessageRule):
            return ApprovalDecision(approve=profile.prefer, comment=rule.message)
        if isinstance(rule, ThresholdRule):
            return await self._check_authority(handle, rule.level, profile.is_channel)
        if isinstance(rule, CallbackRule):
            result = rule.callback(handle)
            if inspect.isawaitable(result):
                result = await result
            return self._from_result(result, profile.prefer)
        raise TypeError(f"Unknown rule variant: {type(rule).__name__}")

    @staticmethod
    def _from_result(result: Any, prefer: bool) -> Optional[ApprovalDecision]:
        if isinstance(result, str):
            return ApprovalDecision(approve=prefer, comment=result)
        if isinstance(result, bool):
            return ApprovalDecision(approve=result)
        return None

    @staticmethod
    async def _check_authority(handle, level: int, is_channel: bool) -> Optional[ApprovalDecision]:
        if is_channel and await handle.get_group_assignee():
            return ApprovalDecision(approve=True)

        authority = await handle.get_requester_authority()
        if authority < level:
            logger.debug("authority_below_threshold",
                         user_id=handle.snapshot.user_id,
                         authority=authority, level=level)
            return None

        if is_channel:
            await handle.claim_group()
        return ApprovalDecision(approve=True)
