"""Map orchestrator failures onto HTTP responses."""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from core.errors import (
    AuthenticationFailed,
    NotFoundError,
    OrchestratorError,
    ParseFailed,
    WebhookNotConfigured,
)


def status_for(error: OrchestratorError) -> int:
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, AuthenticationFailed):
        return 403
    if isinstance(error, ParseFailed):
        return 400
    if isinstance(error, WebhookNotConfigured):
        return 503
    return 502


async def orchestrator_error_handler(request: Request, exc: OrchestratorError):
    status = status_for(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: [{exc.kind}] {exc}")
    return JSONResponse(
        status_code=status,
        content={"detail": exc.message, "kind": exc.kind, "context": exc.details},
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OrchestratorError, orchestrator_error_handler)
