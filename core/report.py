"""
Status report over the deferred-request store. Read-only.

Groups every live entry by request type with per-status counts and, for each
entry, how long it has been waiting, which account it belongs to, and how
many attempts it has taken.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ValidationError

from database.store_base import BaseRequestStore
from models.schemas import (
    CachedRequest, REQUESTS_NAMESPACE, RequestStatus, RequestType, now_ms,
)


class ReportEntry(BaseModel):
    key: str
    account_id: str
    user_id: str
    status: RequestStatus
    waited_seconds: float
    attempts: int = 0
    last_error: str = ""


class TypeSection(BaseModel):
    type: RequestType
    counts: dict[str, int]
    entries: list[ReportEntry] = []

    @property
    def total(self) -> int:
        return len(self.entries)


class RequestReport(BaseModel):
    generated_at: int
    sections: list[TypeSection]
    invalid_keys: list[str] = []

    @property
    def total(self) -> int:
        return sum(s.total for s in self.sections)


async def build_report(
    store: BaseRequestStore,
    namespace: str = REQUESTS_NAMESPACE,
    now: Optional[int] = None,
) -> RequestReport:
    now = now if now is not None else now_ms()
    sections = {
        t: TypeSection(type=t, counts={s.value: 0 for s in RequestStatus})
        for t in RequestType
    }
    invalid: list[str] = []

    async for key, value in store.entries(namespace):
        try:
            record = CachedRequest.from_store(value)
        except ValidationError:
            invalid.append(key)
            continue
        section = sections[record.type]
        section.counts[record.status.value] += 1
        section.entries.append(ReportEntry(
            key=key,
            account_id=record.account_id,
            user_id=record.snapshot.user_id,
            status=record.status,
            waited_seconds=max(now - record.timestamp, 0) / 1000,
            attempts=record.attempts,
            last_error=record.last_error,
        ))

    for section in sections.values():
        section.entries.sort(key=lambda e: -e.waited_seconds)

    return RequestReport(generated_at=now, sections=list(sections.values()), invalid_keys=invalid)


def _format_wait(seconds: float) -> str:
    seconds = int(seconds)
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, _ = divmod(rem, 60)
    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_report(report: RequestReport) -> str:
    lines = [f"Deferred requests: {report.total}"]
    for section in report.sections:
        counts = ", ".join(f"{k} {v}" for k, v in section.counts.items())
        lines.append("")
        lines.append(f"[{section.type.value}] {section.total} ({counts})")
        for entry in section.entries:
            line = (f"  {entry.key:<32} {entry.status.value:<10} "
                    f"waited {_format_wait(entry.waited_seconds):<8} "
                    f"account {entry.account_id}  user {entry.user_id}")
            if entry.attempts:
                line += f"  attempts {entry.attempts}"
            if entry.last_error:
                line += f"  last error: {entry.last_error}"
            lines.append(line)
    if report.invalid_keys:
        lines.append("")
        lines.append(f"Unreadable entries: {', '.join(report.invalid_keys)}")
    return "\n".join(lines)
