# core/engine.py
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from docker.errors import APIError, BuildError, DockerException, ImageNotFound, NotFound
from loguru import logger

from core.errors import (
    ImageBuildFailed,
    PortConflict,
    WorkloadCreateFailed,
    WorkloadNotFound,
    WorkloadOperationFailed,
    WorkloadStartFailed,
)
from core.models import PortMapping, Workload
from core.network import validate_port

MANAGED_LABEL = "managed_by"
NAMESPACE = "pypaas"

_PORT_CONFLICT_MARKERS = (
    "port is already allocated",
    "address already in use",
    "bind for",
)
_FRACTION = re.compile(r"\.(\d+)")


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse Docker's RFC3339 timestamps (nanosecond precision, ``Z`` suffix)."""
    if not value or value.startswith("0001-01-01"):
        return None
    value = value.replace("Z", "+00:00")
    value = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _is_port_conflict(error: Exception) -> bool:
    text = str(error).lower()
    return any(marker in text for marker in _PORT_CONFLICT_MARKERS)


def _parse_env(env: Optional[List[str]]) -> Dict[str, str]:
    result: Dict[str, str] = {}
    for item in env or []:
        key, _, value = item.partition("=")
        result[key] = value
    return result


def _parse_ports(ports: Optional[Dict[str, Any]]) -> List[PortMapping]:
    mappings: List[PortMapping] = []
    for key, bindings in (ports or {}).items():
        container_port, _, protocol = key.partition("/")
        for binding in bindings or []:
            host_port = validate_port(binding.get("HostPort"))
            if host_port is None:
                continue
            mappings.append(
                PortMapping(
                    host_port=host_port,
                    container_port=int(container_port),
                    protocol=protocol or "tcp",
                )
            )
    return mappings


def _merge_ports(
    published: List[PortMapping], requested: List[PortMapping]
) -> List[PortMapping]:
    """Published bindings plus requested ones a created container has not bound yet."""
    merged = list(published)
    for mapping in requested:
        if mapping not in merged:
            merged.append(mapping)
    return merged


class ContainerEngine:
    """Container-engine collaborator backed by the Docker SDK."""

    def __init__(self, client: Optional[Any] = None):
        self._client = client

    def _ensure_client(self):
        if self._client is None:
            import docker

            self._client = docker.from_env()
        return self._client

    @property
    def client(self):
        return self._ensure_client()

    @client.setter
    def client(self, value):
        self._client = value

    def _to_workload(self, container) -> Workload:
        attrs = getattr(container, "attrs", None) or {}
        state = attrs.get("State") or {}
        config = attrs.get("Config") or {}
        network = attrs.get("NetworkSettings") or {}
        host_config = attrs.get("HostConfig") or {}
        image = config.get("Image") or ""
        if not image:
            tags = getattr(getattr(container, "image", None), "tags", None) or []
            image = tags[0] if tags else ""
        return Workload(
            id=container.id,
            name=(getattr(container, "name", None) or attrs.get("Name", "")).lstrip("/"),
            image=image,
            status=getattr(container, "status", None) or state.get("Status", ""),
            created_at=_parse_timestamp(attrs.get("Created")),
            started_at=_parse_timestamp(state.get("StartedAt")),
            ports=_merge_ports(
                _parse_ports(network.get("Ports")),
                _parse_ports(host_config.get("PortBindings")),
            ),
            environment=_parse_env(config.get("Env")),
        )

    def _get(self, workload_id: str):
        try:
            return self.client.containers.get(workload_id)
        except NotFound:
            raise WorkloadNotFound(workload_id)

    def list_workloads(self) -> List[Workload]:
        try:
            containers = self.client.containers.list(all=True)
        except DockerException as e:
            raise WorkloadOperationFailed(f"Could not list containers: {e}")
        return [self._to_workload(c) for c in containers]

    def used_ports(self) -> Set[int]:
        """Host ports published by every container the engine knows about."""
        return {p.host_port for w in self.list_workloads() for p in w.ports}

    def inspect_workload(self, workload_id: str) -> Optional[Workload]:
        try:
            container = self.client.containers.get(workload_id)
        except NotFound:
            return None
        return self._to_workload(container)

    def build_image(
        self, path: str, tag: str, dockerfile: Optional[str] = None
    ) -> str:
        logger.info(f"Building image {tag} from {path}")
        kwargs: Dict[str, Any] = {"path": path, "tag": tag, "rm": True}
        if dockerfile:
            kwargs["dockerfile"] = dockerfile
        try:
            image, _ = self.client.images.build(**kwargs)
        except BuildError as e:
            raise ImageBuildFailed(f"Image build failed: {e.msg}", {"image": tag})
        except (APIError, DockerException, TypeError) as e:
            raise ImageBuildFailed(f"Image build failed: {e}", {"image": tag})
        logger.success(f"Image built: {tag} ({image.id[:19]})")
        return image.id

    def create_workload(
        self,
        image: str,
        name: str,
        port_mappings: List[PortMapping],
        environment: Optional[Dict[str, str]] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> str:
        ports = {
            f"{p.container_port}/{p.protocol}": p.host_port for p in port_mappings
        }
        all_labels = {MANAGED_LABEL: NAMESPACE}
        all_labels.update(labels or {})
        try:
            container = self.client.containers.create(
                image,
                name=name,
                detach=True,
                environment=dict(environment or {}),
                ports=ports,
                labels=all_labels,
            )
        except ImageNotFound as e:
            raise WorkloadCreateFailed(f"Image not found: {e}", {"image": image})
        except APIError as e:
            if _is_port_conflict(e):
                raise PortConflict(f"Host port already bound: {e}", {"name": name})
            raise WorkloadCreateFailed(f"Container create failed: {e}", {"name": name})
        logger.info(f"Created container {container.id[:12]} with name {name}")
        return container.id

    def start_workload(self, workload_id: str) -> None:
        container = self._get(workload_id)
        try:
            container.start()
        except APIError as e:
            if _is_port_conflict(e):
                raise PortConflict(
                    f"Host port already bound: {e}", {"workload_id": workload_id}
                )
            raise WorkloadStartFailed(
                f"Container start failed: {e}", {"workload_id": workload_id}
            )
        logger.info(f"Started container {workload_id[:12]}")

    def stop_workload(self, workload_id: str, timeout: int = 10) -> None:
        container = self._get(workload_id)
        try:
            container.stop(timeout=timeout)
        except APIError as e:
            raise WorkloadOperationFailed(
                f"Container stop failed: {e}", {"workload_id": workload_id}
            )
        logger.info(f"Stopped container {workload_id[:12]}")

    def remove_workload(self, workload_id: str, force: bool = False) -> None:
        container = self._get(workload_id)
        try:
            container.remove(force=force)
        except APIError as e:
            raise WorkloadOperationFailed(
                f"Container remove failed: {e}", {"workload_id": workload_id}
            )
        logger.info(f"Removed container {workload_id[:12]}")

    def fetch_logs(self, workload_id: str, tail: int = 100) -> str:
        container = self._get(workload_id)
        try:
            raw = container.logs(tail=tail, timestamps=False)
        except APIError as e:
            raise WorkloadOperationFailed(
                f"Could not read logs: {e}", {"workload_id": workload_id}
            )
        if isinstance(raw, bytes):
            return raw.decode("utf-8", errors="replace")
        return str(raw)
