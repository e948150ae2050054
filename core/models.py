"""Data models for deployment tracking and inbound webhook events.

This module provides pydantic models for:
- Deployment records kept by the registry
- Container (workload) snapshots read back from the engine
- Parsed GitHub push events
- Outcomes reported by the orchestrator and webhook dispatcher
"""
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_deployment_id() -> str:
    return str(uuid.uuid4())


class PortMapping(BaseModel):
    host_port: int
    container_port: int
    protocol: str = "tcp"


class Deployment(BaseModel):
    """A tracked source-to-workload binding kept redeployable."""

    id: str = Field(default_factory=new_deployment_id)
    name: str
    source_repository: str
    source_branch: str = "main"
    build_file_path: Optional[str] = None
    environment: Dict[str, str] = Field(default_factory=dict)
    port_mappings: List[PortMapping] = Field(default_factory=list)
    auto_deploy: bool = True
    created_at: Optional[datetime] = None
    last_deployed_at: Optional[datetime] = None
    last_revision: Optional[str] = None
    workload_id: Optional[str] = None

    def __repr__(self):
        return f"<Deployment {self.name} ({self.id}) workload={self.workload_id}>"


class Workload(BaseModel):
    """Container metadata as reported by the container engine."""

    id: str
    name: str
    image: str = ""
    status: str = ""
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ports: List[PortMapping] = Field(default_factory=list)
    environment: Dict[str, str] = Field(default_factory=dict)


class DeploymentRequest(BaseModel):
    """Operator request to deploy a repository from source."""

    repository: str = Field(..., min_length=1, description="Git clone URL")
    name: str = Field(..., min_length=1)
    branch: str = "main"
    environment: Dict[str, str] = Field(default_factory=dict)
    auto_deploy: bool = True


class Commit(BaseModel):
    id: str = ""
    message: str = ""
    timestamp: Optional[datetime] = None


class WebhookRepository(BaseModel):
    full_name: str = ""
    clone_url: str
    default_branch: Optional[str] = None


class InboundWebhookEvent(BaseModel):
    ref: str
    repository: WebhookRepository
    commits: List[Commit] = Field(default_factory=list)


class RedeployOutcome(BaseModel):
    deployment_id: str
    success: bool
    workload_id: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None


class WebhookResult(BaseModel):
    accepted: bool
    reason: str
    error_kind: Optional[str] = None
    deployments: List[RedeployOutcome] = Field(default_factory=list)
