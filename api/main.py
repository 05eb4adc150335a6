"""
FastAPI Application — request ingestion, status and operator controls.

Provides:
- Webhook endpoint for request events from platform gateways
- Read-only status report over deferred requests
- Manual batch trigger (serialized with scheduled runs)
- Account liveness updates and health
"""
from __future__ import annotations

import structlog
from datetime import datetime
from typing import Optional
from contextlib import asynccontextmanager

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, HTTPException, Request

from core.report import build_report, format_report
from core.service import VerifierService, create_service
from models.errors import (
    AccountError, AccountNotFoundError, MissingMessageIdError,
)
from models.schemas import RequestEvent

logger = structlog.get_logger()


def create_app(service: Optional[VerifierService] = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc = service or create_service()
        app.state.service = svc
        await svc.start()
        yield
        await svc.stop()

    app = FastAPI(
        title="Request Verifier API",
        description="Immediate and deferred approval of membership requests",
        version="1.0.0",
        lifespan=lifespan,
    )

    def _service(request: Request) -> VerifierService:
        return request.app.state.service

    # ══════════════════════════════════════════════════════════════
    #  HEALTH
    # ══════════════════════════════════════════════════════════════

    @app.get("/health")
    async def health(request: Request):
        svc = _service(request)
        return {
            "status": "healthy",
            "timestamp": datetime.utcnow().isoformat(),
            "accounts": svc.directory.list_accounts(),
            "live_accounts": svc.directory.list_live_accounts(),
            "rules": svc.dispatcher.rules.describe(),
            "deferred_types": sorted(t.value for t in svc.dispatcher.deferred_types),
        }

    # ══════════════════════════════════════════════════════════════
    #  REQUEST EVENTS
    # ══════════════════════════════════════════════════════════════

    @app.post("/api/v1/requests/events")
    async def receive_request_event(event: RequestEvent, request: Request):
        svc = _service(request)
        try:
            outcome = await svc.dispatcher.handle_event(event)
        except MissingMessageIdError as e:
            raise HTTPException(422, str(e))
        except AccountNotFoundError as e:
            raise HTTPException(404, str(e))
        except AccountError as e:
            logger.error("immediate_response_failed",
                         request_type=event.type.value,
                         message_id=event.message_id,
                         error=str(e))
            raise HTTPException(502, str(e))
        return {"outcome": outcome.value, "type": event.type.value, "message_id": event.message_id}

    # ══════════════════════════════════════════════════════════════
    #  STATUS & BATCH CONTROL
    # ══════════════════════════════════════════════════════════════

    @app.get("/api/v1/requests")
    async def list_requests(request: Request, text: bool = False):
        svc = _service(request)
        report = await build_report(svc.store, svc.processor.namespace)
        if text:
            return {"report": format_report(report)}
        return report.model_dump(mode="json")

    @app.post("/api/v1/requests/run")
    async def run_batch(request: Request):
        svc = _service(request)
        started = await svc.processor.run()
        outcome = svc.processor.last_outcome
        return {"started": started, "outcome": outcome.to_dict() if outcome else None}

    @app.get("/api/v1/scheduler")
    async def scheduler_status(request: Request):
        return _service(request).scheduler.status()

    # ══════════════════════════════════════════════════════════════
    #  ACCOUNTS
    # ══════════════════════════════════════════════════════════════

    @app.get("/api/v1/accounts")
    async def account_health(request: Request):
        return await _service(request).directory.health()

    @app.post("/api/v1/accounts/{account_id}/online")
    async def account_online(account_id: str, request: Request):
        try:
            _service(request).directory.mark_online(account_id)
        except AccountNotFoundError as e:
            raise HTTPException(404, str(e))
        return {"account_id": account_id, "online": True}

    @app.post("/api/v1/accounts/{account_id}/offline")
    async def account_offline(account_id: str, request: Request):
        try:
            _service(request).directory.mark_offline(account_id)
        except AccountNotFoundError as e:
            raise HTTPException(404, str(e))
        return {"account_id": account_id, "online": False}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
