"""Webhook route for GitHub push events with mandatory HMAC verification."""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from api.deps import get_dispatcher, get_secrets
from api.schemas import WebhookAccepted
from core.config import get_settings
from core.secrets_manager import SecretsManager
from core.webhook import WebhookDispatcher

router = APIRouter()

_settings = get_settings()
WEBHOOK_RATE_LIMIT = _settings.webhook_rate_limit

limiter = Limiter(
    key_func=get_remote_address,
    enabled=_settings.enable_rate_limit,
)


@router.post("/webhook")
@router.post("/api/webhook/github")
@limiter.limit(WEBHOOK_RATE_LIMIT)
async def webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_hub_signature_256: Optional[str] = Header(None),
    x_github_event: Optional[str] = Header(None),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
    secrets: SecretsManager = Depends(get_secrets),
):
    """Receive a push webhook, verify its signature and queue the redeploys.

    Authentication and deployment lookup happen before responding; the
    redeploys themselves run as a background task, and their failures are
    logged rather than reported to the sender.
    """
    body = await request.body()
    plan = dispatcher.prepare(
        body,
        x_hub_signature_256,
        secrets.get_secret("GITHUB_WEBHOOK_SECRET"),
        x_github_event,
    )
    if plan.deployment_ids:
        background_tasks.add_task(dispatcher.run, plan)

    result = WebhookAccepted(reason=plan.reason, deployments=plan.deployment_ids)
    return JSONResponse(status_code=200, content=result.model_dump())
