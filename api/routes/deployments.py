"""Operator endpoints: deployments and the workloads behind them."""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query

from api.deps import get_orchestrator
from api.middleware.auth import require_api_key
from api.schemas import ActionResult, LogsResponse, PortsResponse
from core.models import Deployment, DeploymentRequest, Workload
from core.orchestrator import DeploymentOrchestrator

router = APIRouter(prefix="/api", dependencies=[Depends(require_api_key)])


@router.get("/deployments", response_model=List[Deployment])
def list_deployments(orchestrator: DeploymentOrchestrator = Depends(get_orchestrator)):
    return orchestrator.list_deployments()


@router.get("/deployments/{deployment_id}", response_model=Deployment)
def get_deployment(
    deployment_id: str,
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.get_deployment(deployment_id)


@router.post("/deployments", response_model=Deployment, status_code=201)
async def deploy_from_source(
    request: DeploymentRequest,
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.deploy(request)


@router.post("/deployments/{deployment_id}/redeploy", response_model=Deployment)
async def redeploy(
    deployment_id: str,
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.redeploy(deployment_id)


@router.delete("/deployments/{deployment_id}", response_model=Deployment)
async def remove_deployment(
    deployment_id: str,
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.remove_deployment(deployment_id)


@router.get("/workloads", response_model=List[Workload])
async def list_workloads(orchestrator: DeploymentOrchestrator = Depends(get_orchestrator)):
    return await orchestrator.list_workloads()


@router.get("/workloads/{workload_id}", response_model=Workload)
async def get_workload(
    workload_id: str,
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.get_workload(workload_id)


@router.get("/workloads/{workload_id}/logs", response_model=LogsResponse)
async def workload_logs(
    workload_id: str,
    tail: int = Query(100, ge=1, le=10000),
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
):
    logs = await orchestrator.fetch_logs(workload_id, tail)
    return LogsResponse(workload_id=workload_id, tail=tail, logs=logs)


@router.post("/workloads/{workload_id}/stop", response_model=ActionResult)
async def stop_workload(
    workload_id: str,
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
):
    await orchestrator.stop_workload(workload_id)
    return ActionResult(workload_id=workload_id, action="stop")


@router.post("/workloads/{workload_id}/start", response_model=ActionResult)
async def start_workload(
    workload_id: str,
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
):
    await orchestrator.start_workload(workload_id)
    return ActionResult(workload_id=workload_id, action="start")


@router.delete("/workloads/{workload_id}", response_model=ActionResult)
async def remove_workload(
    workload_id: str,
    force: bool = False,
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
):
    await orchestrator.remove_workload(workload_id, force=force)
    return ActionResult(workload_id=workload_id, action="remove")


@router.get("/ports", response_model=PortsResponse)
async def ports(orchestrator: DeploymentOrchestrator = Depends(get_orchestrator)):
    used = await orchestrator.used_ports()
    return PortsResponse(used=used, next_available=orchestrator.ports.allocate(set(used)))
