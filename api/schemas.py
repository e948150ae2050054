from typing import List

from pydantic import BaseModel, Field


class WebhookAccepted(BaseModel):
    accepted: bool = True
    reason: str
    deployments: List[str] = Field(default_factory=list, description="Deployment ids queued for redeploy")


class ActionResult(BaseModel):
    workload_id: str
    action: str
    status: str = "ok"


class LogsResponse(BaseModel):
    workload_id: str
    tail: int
    logs: str


class PortsResponse(BaseModel):
    used: List[int]
    next_available: int
