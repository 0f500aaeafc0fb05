# src/api/http.py - v1
"""FastAPI application: webhook intake, approval decisions, execution status.

Usage:
    app = create_app(controller, webhook_secret=settings.webhook_secret)
    uvicorn.run(app)
"""

from __future__ import annotations

import json
import logging

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse

from stagegate.api.models import (
    CancelRequest,
    DecisionRequest,
    ExecutionStatusResponse,
    HealthResponse,
    TriggerResponse,
)
from stagegate.core.errors import (
    AlreadyDecided,
    ConfigurationError,
    NotFound,
    PermissionDenied,
    PipelineError,
)
from stagegate.core.models import AuditRecord
from stagegate.pipeline.controller import PipelineController
from stagegate.tracking.models import ExecutionReport
from stagegate.triggers.webhook import (
    SIGNATURE_HEADER,
    SourceTrigger,
    parse_push_payload,
    verify_signature,
)
from stagegate.version import __version__

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[PipelineError], int]] = [
    (NotFound, 404),
    (AlreadyDecided, 409),
    (PermissionDenied, 403),
    (ConfigurationError, 422),
]


def create_app(
    controller: PipelineController,
    trigger: SourceTrigger | None = None,
    webhook_secret: str = "",
) -> FastAPI:
    """Build the HTTP surface around a controller.

    Args:
        controller: Controller serving every request.
        trigger: Source trigger (default: one bound to ``controller``).
        webhook_secret: HMAC secret for ``X-Hub-Signature-256``; empty
            disables signature checks.
    """
    trigger = trigger or SourceTrigger(controller)
    app = FastAPI(title="stagegate", version=__version__)

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
        status_code = 400
        for error_cls, code in _STATUS_BY_ERROR:
            if isinstance(exc, error_cls):
                status_code = code
                break
        return JSONResponse(
            status_code=status_code,
            content={"error_type": exc.error_type, "detail": str(exc)},
        )

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="healthy", version=__version__)

    @app.post("/webhooks/source", response_model=TriggerResponse, status_code=202)
    async def source_webhook(request: Request, background: BackgroundTasks):
        body = await request.body()
        if webhook_secret and not verify_signature(
            webhook_secret, body, request.headers.get(SIGNATURE_HEADER)
        ):
            logger.warning("Rejected webhook with bad signature")
            return JSONResponse(status_code=401, content={"detail": "invalid signature"})

        try:
            event = parse_push_payload(json.loads(body))
        except (ValueError, KeyError, TypeError) as exc:
            return JSONResponse(status_code=400, content={"detail": f"invalid payload: {exc}"})
        if event is None:
            return TriggerResponse(ignored=True)

        started = await trigger.handle(event)
        for execution_id in started:
            background.add_task(controller.run, execution_id)
        return TriggerResponse(started=started, ignored=not started)

    @app.get("/executions/{execution_id}", response_model=ExecutionReport)
    async def get_execution(execution_id: str) -> ExecutionReport:
        return await controller.report(execution_id)

    @app.get("/executions/{execution_id}/history", response_model=list[AuditRecord])
    async def get_history(execution_id: str) -> list[AuditRecord]:
        return await controller.history(execution_id)

    @app.post("/executions/{execution_id}/approval", response_model=ExecutionStatusResponse)
    async def decide(execution_id: str, body: DecisionRequest) -> ExecutionStatusResponse:
        if body.decision == "approve":
            status = await controller.approve(
                execution_id, body.actor, body.comment, request_id=body.request_id
            )
        else:
            status = await controller.reject(
                execution_id, body.actor, body.comment, request_id=body.request_id
            )
        return ExecutionStatusResponse(execution_id=execution_id, status=status)

    @app.post("/executions/{execution_id}/cancel", response_model=ExecutionStatusResponse)
    async def cancel(execution_id: str, body: CancelRequest | None = None) -> ExecutionStatusResponse:
        reason = body.reason if body else "cancelled by operator"
        status = await controller.cancel(execution_id, reason)
        return ExecutionStatusResponse(execution_id=execution_id, status=status)

    return app
