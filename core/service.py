"""
Service wiring — builds the store, account directory, dispatcher, batch
processor and scheduler from Settings, and manages their lifecycle.
"""
from __future__ import annotations

import structlog
from dataclasses import dataclass
from typing import Optional

from accounts.base import AccountDirectory
from accounts.gateway import GatewayAccountAdapter
from config.settings import Settings, get_settings
from core.dispatcher import RequestDispatcher
from core.processor import BatchProcessor
from core.scheduler import BatchScheduler
from database.store_base import BaseRequestStore
from database.store_factory import create_store
from rules.evaluator import PolicyEvaluator
from rules.privileges import PrivilegeStore

logger = structlog.get_logger()


@dataclass
class VerifierService:
    settings: Settings
    store: BaseRequestStore
    directory: AccountDirectory
    dispatcher: RequestDispatcher
    processor: BatchProcessor
    scheduler: BatchScheduler

    @property
    def scheduling_enabled(self) -> bool:
        # Only run the batch job when something is actually deferred
        return bool(self.settings.verifier.deferred_types)

    async def start(self) -> None:
        await self.directory.initialize_all({
            acc.account_id: {"gateway_url": acc.gateway_url, "token": acc.token, "online": acc.online}
            for acc in self.settings.accounts
        })
        if self.scheduling_enabled:
            self.scheduler.start()
        logger.info("verifier_started",
                    accounts=self.directory.list_accounts(),
                    deferred_types=self.settings.verifier.deferred_types,
                    scheduling=self.scheduling_enabled)

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.directory.shutdown_all()
        await self.store.close()
        logger.info("verifier_stopped")


def create_service(
    settings: Optional[Settings] = None,
    store: Optional[BaseRequestStore] = None,
    directory: Optional[AccountDirectory] = None,
) -> VerifierService:
    settings = settings or get_settings()
    cfg = settings.verifier

    if store is None:
        store = create_store(settings.store.as_factory_config())

    if directory is None:
        directory = AccountDirectory(PrivilegeStore(
            users=settings.privileges.users,
            assignees=settings.privileges.assignees,
            default_authority=settings.privileges.default_authority,
        ))
        for acc in settings.accounts:
            directory.register(GatewayAccountAdapter(
                acc.platform, acc.self_id, gateway_url=acc.gateway_url, token=acc.token,
            ))

    rules = cfg.rules()
    evaluator = PolicyEvaluator()
    dispatcher = RequestDispatcher(
        store, directory, rules, evaluator,
        deferred_types=cfg.deferred(),
        max_age=cfg.max_age_seconds,
        namespace=cfg.namespace,
    )
    processor = BatchProcessor(
        store, directory, rules, evaluator,
        batch_size=cfg.batch_size,
        max_age=cfg.max_age_seconds,
        namespace=cfg.namespace,
    )
    scheduler = BatchScheduler(processor, cfg.cron_expression, timezone=cfg.timezone)

    return VerifierService(
        settings=settings,
        store=store,
        directory=directory,
        dispatcher=dispatcher,
        processor=processor,
        scheduler=scheduler,
    )
