# core/webhook.py
"""GitHub push webhook handling.

``prepare`` is the fast path: authenticate, parse, filter to default-branch
pushes and resolve the affected auto-deploy deployments. ``run`` performs the
redeploys. ``handle`` does both and reports per-deployment outcomes.
"""
import asyncio
import json
from dataclasses import dataclass, field
from typing import List, Optional

from loguru import logger
from pydantic import ValidationError

from core.errors import (
    AuthenticationFailed,
    OrchestratorError,
    ParseFailed,
    WebhookNotConfigured,
)
from core.metrics import WEBHOOK_COUNTER
from core.models import InboundWebhookEvent, RedeployOutcome, WebhookResult
from core.security import verify_signature

FALLBACK_DEFAULT_BRANCHES = ("main", "master")


def parse_push_event(payload: bytes) -> InboundWebhookEvent:
    try:
        data = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as e:
        raise ParseFailed(f"Webhook payload is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise ParseFailed("Webhook payload must be a JSON object")
    try:
        return InboundWebhookEvent.model_validate(data)
    except ValidationError as e:
        raise ParseFailed(
            f"Webhook payload is not a push event: {e.error_count()} invalid field(s)"
        )


def is_default_branch_push(event: InboundWebhookEvent) -> bool:
    declared = event.repository.default_branch
    if declared:
        return event.ref == f"refs/heads/{declared}"
    return event.ref in {f"refs/heads/{b}" for b in FALLBACK_DEFAULT_BRANCHES}


@dataclass
class WebhookPlan:
    reason: str
    event: Optional[InboundWebhookEvent] = None
    deployment_ids: List[str] = field(default_factory=list)


class WebhookDispatcher:
    def __init__(self, orchestrator):
        self.orchestrator = orchestrator

    def authenticate(
        self, raw_payload: bytes, signature_header: Optional[str], secret: Optional[str]
    ) -> None:
        if not secret:
            WEBHOOK_COUNTER.labels(outcome="misconfigured").inc()
            logger.error("Webhook secret is not configured; rejecting payload")
            raise WebhookNotConfigured("Webhook secret is not configured")
        if not verify_signature(raw_payload, signature_header, secret):
            WEBHOOK_COUNTER.labels(outcome="unauthenticated").inc()
            logger.warning("Invalid webhook signature")
            raise AuthenticationFailed("Invalid webhook signature")

    def prepare(
        self,
        raw_payload: bytes,
        signature_header: Optional[str],
        secret: Optional[str],
        event_type: Optional[str] = None,
    ) -> WebhookPlan:
        """Authenticate and resolve which deployments a delivery affects."""
        self.authenticate(raw_payload, signature_header, secret)

        if event_type == "ping":
            WEBHOOK_COUNTER.labels(outcome="ignored").inc()
            logger.info("Received webhook ping")
            return WebhookPlan(reason="pong")

        try:
            event = parse_push_event(raw_payload)
        except ParseFailed as e:
            WEBHOOK_COUNTER.labels(outcome="invalid").inc()
            logger.warning(f"Failed to parse webhook payload: {e}")
            raise

        repository = event.repository.clone_url
        if not is_default_branch_push(event):
            WEBHOOK_COUNTER.labels(outcome="ignored").inc()
            logger.info(f"Ignoring push to {event.ref} of {repository}: not the default branch")
            return WebhookPlan(reason="not a default branch push", event=event)

        matches = self.orchestrator.registry.find_by_repository(repository)
        if not matches:
            WEBHOOK_COUNTER.labels(outcome="ignored").inc()
            logger.info(f"No auto-deploy deployments found for repository {repository}")
            return WebhookPlan(reason="no matching deployments", event=event)

        WEBHOOK_COUNTER.labels(outcome="accepted").inc()
        logger.info(
            f"Push to {event.ref} of {repository} ({len(event.commits)} commit(s)) "
            f"affects {len(matches)} deployment(s)"
        )
        return WebhookPlan(
            reason="redeploying",
            event=event,
            deployment_ids=[d.id for d in matches],
        )

    async def _redeploy_one(self, deployment_id: str, repository: str) -> RedeployOutcome:
        logger.info(f"Auto-redeploying {deployment_id} due to push to {repository}")
        try:
            deployment = await self.orchestrator.redeploy(deployment_id)
        except OrchestratorError as e:
            logger.error(
                f"Auto-redeploy of {deployment_id} ({repository}) failed: [{e.kind}] {e}"
            )
            return RedeployOutcome(
                deployment_id=deployment_id,
                success=False,
                error_kind=e.kind,
                error=str(e),
            )
        except Exception as e:
            logger.exception(f"Unexpected error redeploying {deployment_id} ({repository})")
            return RedeployOutcome(
                deployment_id=deployment_id,
                success=False,
                error_kind=type(e).__name__,
                error=str(e),
            )
        return RedeployOutcome(
            deployment_id=deployment_id,
            success=True,
            workload_id=deployment.workload_id,
        )

    async def run(self, plan: WebhookPlan) -> List[RedeployOutcome]:
        if not plan.deployment_ids:
            return []
        repository = plan.event.repository.clone_url if plan.event else ""
        outcomes = await asyncio.gather(
            *(self._redeploy_one(d, repository) for d in plan.deployment_ids)
        )
        failed = sum(1 for o in outcomes if not o.success)
        if failed:
            logger.warning(f"{failed}/{len(outcomes)} redeploy(s) for {repository} failed")
        return list(outcomes)

    async def handle(
        self,
        raw_payload: bytes,
        signature_header: Optional[str],
        secret: Optional[str],
        event_type: Optional[str] = None,
    ) -> WebhookResult:
        try:
            plan = self.prepare(raw_payload, signature_header, secret, event_type)
        except (AuthenticationFailed, ParseFailed, WebhookNotConfigured) as e:
            return WebhookResult(accepted=False, reason=e.message, error_kind=e.kind)
        outcomes = await self.run(plan)
        return WebhookResult(accepted=True, reason=plan.reason, deployments=outcomes)
