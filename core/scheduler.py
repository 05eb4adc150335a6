"""
Batch Scheduler — fires the Batch Processor on a cron expression.

Uses APScheduler's AsyncIOScheduler with a single CronTrigger job. Firings
never overlap: APScheduler caps the job at one instance, and fire() itself
skips when a pass is still running (e.g. one started from the API).
A failing pass is logged and never stops the timer.
"""
from __future__ import annotations

import structlog
from datetime import datetime
from typing import Any, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from core.processor import BatchProcessor

logger = structlog.get_logger()

JOB_ID = "verifier:batch"


class BatchScheduler:
    """
    Example usage:
        scheduler = BatchScheduler(processor, "0 */3 * * *")
        scheduler.start()          # inside a running event loop
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        processor: BatchProcessor,
        cron_expression: str = "0 */3 * * *",
        timezone: str = "UTC",
    ):
        self.processor = processor
        self.cron_expression = cron_expression
        self.timezone = timezone
        # Validates the expression up front
        self.trigger = CronTrigger.from_crontab(cron_expression, timezone=timezone)
        self._scheduler: Optional[AsyncIOScheduler] = None
        self.runs = 0
        self.skipped = 0
        self.failures = 0
        self.last_run_at: Optional[datetime] = None
        self.last_error: str = ""

    @property
    def started(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if self.started:
            return
        self._scheduler = AsyncIOScheduler(timezone=self.timezone)
        self._scheduler.add_job(
            self.fire,
            trigger=self.trigger,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("batch_scheduler_started",
                    cron=self.cron_expression,
                    next_fire_time=str(self.next_fire_time))

    async def stop(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("batch_scheduler_stopped")

    @property
    def next_fire_time(self) -> Optional[datetime]:
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None

    async def fire(self) -> Optional[int]:
        """One firing: run the processor once unless a pass is in progress."""
        if self.processor.running:
            self.skipped += 1
            logger.warning("batch_run_skipped", reason="previous_run_in_progress")
            return None

        logger.info("batch_run_started")
        self.last_run_at = datetime.utcnow()
        try:
            started = await self.processor.run()
        except Exception as e:
            self.failures += 1
            self.last_error = str(e)
            logger.error("batch_run_failed", error=str(e), exc_info=True)
            return None

        self.runs += 1
        outcome = self.processor.last_outcome
        logger.info("batch_run_complete", **(outcome.to_dict() if outcome else {"started": started}))
        return started

    def status(self) -> dict[str, Any]:
        return {
            "cron": self.cron_expression,
            "started": self.started,
            "running": self.processor.running,
            "next_fire_time": self.next_fire_time.isoformat() if self.next_fire_time else None,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "runs": self.runs,
            "skipped": self.skipped,
            "failures": self.failures,
            "last_error": self.last_error,
        }
