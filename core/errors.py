"""Typed failures raised by the orchestration core.

Services raise these; the HTTP layer maps them to status codes and the
webhook dispatcher reports them per deployment.
"""
from typing import Any, Dict, Optional


class OrchestratorError(Exception):
    """Base class for all orchestration failures."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = {k: v for k, v in (details or {}).items() if v is not None}
        super().__init__(message)

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        if not self.details:
            return self.message
        context = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({context})"


class AuthenticationFailed(OrchestratorError):
    pass


class ParseFailed(OrchestratorError):
    pass


class WebhookNotConfigured(OrchestratorError):
    """No shared secret is configured; the webhook endpoint fails closed."""


class NotFoundError(OrchestratorError):
    pass


class DeploymentNotFound(NotFoundError):
    def __init__(self, deployment_id: str):
        super().__init__(
            f"Deployment not found: {deployment_id}",
            {"deployment_id": deployment_id},
        )


class WorkloadNotFound(NotFoundError):
    def __init__(self, workload_id: str):
        super().__init__(
            f"Workload not found: {workload_id}", {"workload_id": workload_id}
        )


class BuildDescriptorNotFound(OrchestratorError):
    pass


class SourceFetchFailed(OrchestratorError):
    pass


class ImageBuildFailed(OrchestratorError):
    pass


class PortAllocationFailed(OrchestratorError):
    pass


class WorkloadCreateFailed(OrchestratorError):
    pass


class PortConflict(WorkloadCreateFailed):
    """The requested host port was bound by someone else in the meantime."""


class WorkloadStartFailed(OrchestratorError):
    pass


class WorkloadOperationFailed(OrchestratorError):
    """A stop/remove/start issued against an existing workload failed."""
