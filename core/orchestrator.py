# core/orchestrator.py
"""Deploy and redeploy workloads from git sources.

A deploy runs fetch -> locate Dockerfile -> resolve revision -> build ->
allocate port -> create -> start -> register. A redeploy retires the
deployment's current workload first and then runs the same rollout, updating
the existing record in place.

Blocking Docker and git calls run in worker threads. Redeploys of one
deployment id are serialized with a per-id lock; different ids run freely
in parallel.
"""
import asyncio
import functools
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Type

from loguru import logger

from core.errors import (
    BuildDescriptorNotFound,
    DeploymentNotFound,
    ImageBuildFailed,
    OrchestratorError,
    PortAllocationFailed,
    PortConflict,
    SourceFetchFailed,
    WorkloadCreateFailed,
    WorkloadNotFound,
    WorkloadOperationFailed,
    WorkloadStartFailed,
)
from core.metrics import ACTIVE_CONTAINERS_GAUGE, DEPLOYMENT_COUNTER, REDEPLOY_COUNTER
from core.models import Deployment, DeploymentRequest, PortMapping, Workload, utcnow
from core.network import PortManager
from core.registry import DeploymentRegistry

BIND_ATTEMPTS = 2


def slugify(name: str) -> str:
    return name.strip().lower().replace(" ", "-")


def _relative(path: Path, root: str) -> str:
    try:
        return str(path.relative_to(root))
    except ValueError:
        return str(path)


@dataclass
class Rollout:
    workload_id: str
    image: str
    revision: str
    build_file_path: str
    port_mappings: List[PortMapping]


class DeploymentOrchestrator:
    def __init__(
        self,
        engine,
        git_manager,
        registry: Optional[DeploymentRegistry] = None,
        port_manager: Optional[PortManager] = None,
        container_port: int = 80,
        operation_timeout: float = 900.0,
        image_prefix: str = "pypaas",
        stop_timeout: int = 10,
    ):
        self.engine = engine
        self.git = git_manager
        self.registry = registry or DeploymentRegistry()
        self.ports = port_manager or PortManager()
        self.container_port = container_port
        self.operation_timeout = operation_timeout
        self.image_prefix = image_prefix
        self.stop_timeout = stop_timeout
        self._locks: Dict[str, asyncio.Lock] = {}
        self._locks_guard = threading.Lock()

    def image_name(self, name: str) -> str:
        return f"{self.image_prefix}-{slugify(name)}"

    def _lock_for(self, deployment_id: str) -> asyncio.Lock:
        with self._locks_guard:
            lock = self._locks.get(deployment_id)
            if lock is None:
                lock = self._locks[deployment_id] = asyncio.Lock()
            return lock

    def _forget_lock(self, deployment_id: str) -> None:
        with self._locks_guard:
            self._locks.pop(deployment_id, None)

    # ------------------------------------------------------------------
    # Thread offloading
    # ------------------------------------------------------------------
    async def _call(
        self,
        error_cls: Type[OrchestratorError],
        details: Dict[str, Any],
        fn: Callable,
        *args,
        **kwargs,
    ):
        """Run a blocking collaborator call in a thread.

        Typed failures pass through untouched; anything else is reported as
        ``error_cls`` so callers only ever see orchestrator errors.
        """
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except OrchestratorError:
            raise
        except Exception as e:
            raise error_cls(str(e), details) from e

    async def _call_with_deadline(
        self,
        deadline: float,
        error_cls: Type[OrchestratorError],
        details: Dict[str, Any],
        fn: Callable,
        *args,
        on_abandon: Optional[Callable[[], None]] = None,
    ):
        loop = asyncio.get_running_loop()
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise error_cls("Operation timed out", details)

        future = loop.run_in_executor(None, functools.partial(fn, *args))
        try:
            return await asyncio.wait_for(asyncio.shield(future), remaining)
        except asyncio.TimeoutError:
            # The worker thread can't be interrupted; tidy up once it returns.
            def _abandoned(f: asyncio.Future) -> None:
                if not f.cancelled():
                    f.exception()
                if on_abandon is not None:
                    on_abandon()

            future.add_done_callback(_abandoned)
            raise error_cls(
                f"{details.get('step', 'operation')} timed out after "
                f"{self.operation_timeout:.0f}s",
                details,
            )
        except asyncio.CancelledError:
            if on_abandon is not None:
                future.add_done_callback(lambda _f: on_abandon())
            raise
        except OrchestratorError:
            raise
        except Exception as e:
            raise error_cls(str(e), details) from e

    # ------------------------------------------------------------------
    # Rollout
    # ------------------------------------------------------------------
    async def _rollout(
        self,
        repository: str,
        branch: str,
        name: str,
        environment: Dict[str, str],
        deployment_id: Optional[str] = None,
    ) -> Rollout:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.operation_timeout
        ctx = {"deployment_id": deployment_id, "repository": repository, "branch": branch}

        checkout = self.git.checkout_path(repository)
        try:
            await self._call_with_deadline(
                deadline,
                SourceFetchFailed,
                {**ctx, "step": "fetch-source"},
                self.git.fetch_source,
                repository,
                branch,
                checkout,
                on_abandon=lambda: self.git.cleanup(checkout),
            )

            descriptor = await self._call(
                BuildDescriptorNotFound,
                {**ctx, "step": "locate-build-descriptor"},
                self.git.locate_build_descriptor,
                checkout,
            )
            if descriptor is None:
                raise BuildDescriptorNotFound(
                    "No Dockerfile found in repository",
                    {**ctx, "step": "locate-build-descriptor"},
                )

            revision = await self._call(
                SourceFetchFailed,
                {**ctx, "step": "resolve-revision"},
                self.git.latest_revision,
                checkout,
            )

            descriptor_path = Path(descriptor)
            tag = f"{self.image_name(name)}:latest"
            image = await self._call_with_deadline(
                deadline,
                ImageBuildFailed,
                {**ctx, "step": "build-image", "image": tag},
                self.engine.build_image,
                str(descriptor_path.parent),
                tag,
                descriptor_path.name,
            )

            labels = {"app": slugify(name), "revision": revision}
            if deployment_id:
                labels["deployment_id"] = deployment_id
            workload_id, mappings = await self._bind_and_start(
                image, name, environment, labels, ctx
            )
        finally:
            await asyncio.to_thread(self.git.cleanup, checkout)

        return Rollout(
            workload_id=workload_id,
            image=image,
            revision=revision,
            build_file_path=_relative(descriptor_path, checkout),
            port_mappings=mappings,
        )

    async def _bind_and_start(
        self,
        image: str,
        name: str,
        environment: Dict[str, str],
        labels: Dict[str, str],
        ctx: Dict[str, Any],
    ):
        """Allocate a host port, create and start the workload.

        A port grabbed by a concurrent allocation between reading the live
        port set and binding is retried once with a freshly computed port.
        """
        taken: Set[int] = set()
        last_conflict: Optional[PortConflict] = None

        for attempt in range(1, BIND_ATTEMPTS + 1):
            used = await self._call(
                PortAllocationFailed,
                {**ctx, "step": "allocate-port"},
                self.engine.used_ports,
            )
            host_port = self.ports.allocate(used, exclude=taken)
            mappings = [
                PortMapping(host_port=host_port, container_port=self.container_port)
            ]
            container_name = f"{slugify(name)}-{uuid.uuid4().hex[:8]}"
            step_ctx = {**ctx, "host_port": host_port}

            try:
                workload_id = await self._call(
                    WorkloadCreateFailed,
                    {**step_ctx, "step": "create-workload"},
                    self.engine.create_workload,
                    image,
                    container_name,
                    mappings,
                    dict(environment),
                    labels,
                )
            except PortConflict as e:
                logger.warning(
                    f"Port {host_port} taken while creating {container_name} "
                    f"(attempt {attempt}/{BIND_ATTEMPTS}): {e}"
                )
                taken.add(host_port)
                last_conflict = e
                continue

            try:
                await self._call(
                    WorkloadStartFailed,
                    {**step_ctx, "step": "start-workload", "workload_id": workload_id},
                    self.engine.start_workload,
                    workload_id,
                )
            except PortConflict as e:
                logger.warning(
                    f"Port {host_port} taken while starting {workload_id[:12]} "
                    f"(attempt {attempt}/{BIND_ATTEMPTS}): {e}"
                )
                taken.add(host_port)
                last_conflict = e
                await self._discard(workload_id)
                continue
            except (WorkloadStartFailed, WorkloadNotFound) as e:
                logger.error(
                    f"Container {workload_id[:12]} created but failed to start; "
                    f"left for manual reconciliation: {e}"
                )
                if isinstance(e, WorkloadStartFailed):
                    raise
                raise WorkloadStartFailed(
                    str(e), {**step_ctx, "step": "start-workload", "workload_id": workload_id}
                ) from e

            return workload_id, mappings

        raise PortAllocationFailed(
            f"Could not bind a host port after {BIND_ATTEMPTS} attempts",
            {**ctx, "step": "allocate-port", "ports_tried": sorted(taken)},
        ) from last_conflict

    async def _discard(self, workload_id: str) -> None:
        try:
            await asyncio.to_thread(self.engine.remove_workload, workload_id, True)
        except Exception as e:
            logger.warning(f"Could not remove unstarted container {workload_id[:12]}: {e}")

    async def _retire(self, deployment: Deployment) -> None:
        """Stop then remove the deployment's current workload, tolerating failures."""
        workload_id = deployment.workload_id
        try:
            await asyncio.to_thread(
                self.engine.stop_workload, workload_id, self.stop_timeout
            )
        except WorkloadNotFound:
            logger.warning(
                f"Workload {workload_id[:12]} of {deployment.name} ({deployment.id}) "
                f"is already gone"
            )
            return
        except Exception as e:
            logger.warning(
                f"Failed to stop {workload_id[:12]} of {deployment.name} "
                f"({deployment.id}): {e}"
            )

        try:
            await asyncio.to_thread(self.engine.remove_workload, workload_id, True)
        except WorkloadNotFound:
            pass
        except Exception as e:
            logger.warning(
                f"Failed to remove {workload_id[:12]} of {deployment.name} "
                f"({deployment.id}); left for manual reconciliation: {e}"
            )

    def _refresh_gauge(self) -> None:
        ACTIVE_CONTAINERS_GAUGE.set(
            sum(1 for d in self.registry.list_all() if d.workload_id)
        )

    # ------------------------------------------------------------------
    # Deploy / redeploy
    # ------------------------------------------------------------------
    async def deploy(self, request: DeploymentRequest) -> Deployment:
        """Deploy a repository from source and register a new deployment."""
        logger.info(
            f"Starting deployment {request.name!r} from {request.repository}@{request.branch}"
        )
        deployment = Deployment(
            name=request.name,
            source_repository=request.repository,
            source_branch=request.branch,
            environment=dict(request.environment),
            auto_deploy=request.auto_deploy,
        )
        try:
            rollout = await self._rollout(
                request.repository,
                request.branch,
                request.name,
                deployment.environment,
                deployment.id,
            )
        except OrchestratorError as e:
            DEPLOYMENT_COUNTER.labels(outcome="failed").inc()
            logger.error(
                f"Failed to deploy {request.name!r} from {request.repository}: "
                f"[{e.kind}] {e}"
            )
            raise

        now = utcnow()
        deployment = deployment.model_copy(
            update={
                "workload_id": rollout.workload_id,
                "port_mappings": rollout.port_mappings,
                "build_file_path": rollout.build_file_path,
                "last_revision": rollout.revision,
                "created_at": now,
                "last_deployed_at": now,
            }
        )
        registered = self.registry.add(deployment)
        DEPLOYMENT_COUNTER.labels(outcome="succeeded").inc()
        self._refresh_gauge()
        logger.success(
            f"Deployed {request.name!r} ({registered.id}) from {request.repository} "
            f"as {rollout.workload_id[:12]} on port {rollout.port_mappings[0].host_port}"
        )
        return registered

    async def redeploy(self, deployment_id: str) -> Deployment:
        async with self._lock_for(deployment_id):
            deployment = self.registry.get(deployment_id)
            if deployment is None:
                logger.warning(f"Deployment {deployment_id} not found")
                raise DeploymentNotFound(deployment_id)

            logger.info(
                f"Redeploying {deployment.name!r} ({deployment.id}) from "
                f"{deployment.source_repository}@{deployment.source_branch}"
            )
            if deployment.workload_id:
                await self._retire(deployment)
                self.registry.clear_workload(deployment_id)
                self._refresh_gauge()

            try:
                rollout = await self._rollout(
                    deployment.source_repository,
                    deployment.source_branch,
                    deployment.name,
                    deployment.environment,
                    deployment.id,
                )
            except OrchestratorError as e:
                REDEPLOY_COUNTER.labels(outcome="failed").inc()
                logger.error(
                    f"Failed to redeploy {deployment.name!r} ({deployment.id}) from "
                    f"{deployment.source_repository}: [{e.kind}] {e}"
                )
                raise

            updated = self.registry.update_after_redeploy(
                deployment_id,
                rollout.workload_id,
                utcnow(),
                port_mappings=rollout.port_mappings,
                build_file_path=rollout.build_file_path,
                revision=rollout.revision,
            )
            REDEPLOY_COUNTER.labels(outcome="succeeded").inc()
            self._refresh_gauge()
            logger.success(
                f"Redeployed {deployment.name!r} ({deployment.id}) as "
                f"{rollout.workload_id[:12]} at {rollout.revision[:7]}"
            )
            return updated

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------
    def list_deployments(self) -> List[Deployment]:
        return self.registry.list_all()

    def get_deployment(self, deployment_id: str) -> Deployment:
        deployment = self.registry.get(deployment_id)
        if deployment is None:
            raise DeploymentNotFound(deployment_id)
        return deployment

    async def remove_deployment(self, deployment_id: str) -> Deployment:
        """Remove the workload a deployment owns, then forget the deployment."""
        async with self._lock_for(deployment_id):
            deployment = self.registry.get(deployment_id)
            if deployment is None:
                raise DeploymentNotFound(deployment_id)
            if deployment.workload_id:
                try:
                    await self._call(
                        WorkloadOperationFailed,
                        {"deployment_id": deployment_id, "step": "remove-workload"},
                        self.engine.remove_workload,
                        deployment.workload_id,
                        True,
                    )
                except WorkloadNotFound:
                    logger.warning(
                        f"Workload {deployment.workload_id[:12]} of {deployment_id} "
                        f"was already gone"
                    )
            self.registry.remove(deployment_id)
        self._forget_lock(deployment_id)
        self._refresh_gauge()
        logger.info(f"Removed deployment {deployment.name!r} ({deployment_id})")
        return deployment

    async def list_workloads(self) -> List[Workload]:
        return await self._call(
            WorkloadOperationFailed, {"step": "list-workloads"}, self.engine.list_workloads
        )

    async def get_workload(self, workload_id: str) -> Workload:
        workload = await self._call(
            WorkloadOperationFailed,
            {"workload_id": workload_id, "step": "inspect-workload"},
            self.engine.inspect_workload,
            workload_id,
        )
        if workload is None:
            raise WorkloadNotFound(workload_id)
        return workload

    async def stop_workload(self, workload_id: str) -> None:
        await self._call(
            WorkloadOperationFailed,
            {"workload_id": workload_id, "step": "stop-workload"},
            self.engine.stop_workload,
            workload_id,
            self.stop_timeout,
        )

    async def start_workload(self, workload_id: str) -> None:
        await self._call(
            WorkloadStartFailed,
            {"workload_id": workload_id, "step": "start-workload"},
            self.engine.start_workload,
            workload_id,
        )

    async def remove_workload(self, workload_id: str, force: bool = False) -> None:
        """Remove a container; a deployment that owned it is dropped as well."""
        await self._call(
            WorkloadOperationFailed,
            {"workload_id": workload_id, "step": "remove-workload"},
            self.engine.remove_workload,
            workload_id,
            force,
        )
        owner = self.registry.find_by_workload(workload_id)
        if owner is None:
            return
        async with self._lock_for(owner.id):
            current = self.registry.get(owner.id)
            # a redeploy may have replaced the workload while we waited
            if current is None or current.workload_id != workload_id:
                return
            self.registry.remove(owner.id)
        self._forget_lock(owner.id)
        logger.info(f"Dropped deployment {owner.name!r} ({owner.id}) with its workload")
        self._refresh_gauge()

    async def fetch_logs(self, workload_id: str, tail: int = 100) -> str:
        return await self._call(
            WorkloadOperationFailed,
            {"workload_id": workload_id, "step": "fetch-logs"},
            self.engine.fetch_logs,
            workload_id,
            tail,
        )

    async def used_ports(self) -> List[int]:
        used = await self._call(
            WorkloadOperationFailed, {"step": "list-workloads"}, self.engine.used_ports
        )
        return sorted(used)
