# core/registry.py
"""In-memory catalog of deployment records.

Records live for the lifetime of the process. Every read hands out a deep
copy taken under the lock, so callers never see a record half-way through an
update and can't mutate registry state by accident.
"""
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from core.git_manager import normalize_repository_url
from core.models import Deployment, PortMapping


class DeploymentRegistry:
    def __init__(self, normalize: Optional[Callable[[str], str]] = None):
        self._lock = threading.Lock()
        self._deployments: Dict[str, Deployment] = {}
        self._normalize = normalize or normalize_repository_url

    def __len__(self) -> int:
        with self._lock:
            return len(self._deployments)

    def add(self, deployment: Deployment) -> Deployment:
        with self._lock:
            if deployment.id in self._deployments:
                raise ValueError(f"Deployment {deployment.id} already registered")
            self._deployments[deployment.id] = deployment.model_copy(deep=True)
            return deployment.model_copy(deep=True)

    def get(self, deployment_id: str) -> Optional[Deployment]:
        with self._lock:
            record = self._deployments.get(deployment_id)
            return record.model_copy(deep=True) if record else None

    def list_all(self) -> List[Deployment]:
        with self._lock:
            return [d.model_copy(deep=True) for d in self._deployments.values()]

    def find_by_repository(self, repository_url: str) -> List[Deployment]:
        """Auto-deploy deployments whose source repository matches the URL."""
        wanted = self._normalize(repository_url)
        with self._lock:
            return [
                d.model_copy(deep=True)
                for d in self._deployments.values()
                if d.auto_deploy and self._normalize(d.source_repository) == wanted
            ]

    def find_by_workload(self, workload_id: str) -> Optional[Deployment]:
        with self._lock:
            for d in self._deployments.values():
                if d.workload_id and d.workload_id == workload_id:
                    return d.model_copy(deep=True)
            return None

    def remove(self, deployment_id: str) -> Optional[Deployment]:
        with self._lock:
            record = self._deployments.pop(deployment_id, None)
            return record.model_copy(deep=True) if record else None

    def update_after_redeploy(
        self,
        deployment_id: str,
        workload_id: str,
        timestamp: datetime,
        port_mappings: Optional[Sequence[PortMapping]] = None,
        build_file_path: Optional[str] = None,
        revision: Optional[str] = None,
    ) -> Optional[Deployment]:
        with self._lock:
            record = self._deployments.get(deployment_id)
            if record is None:
                return None
            changes = {"workload_id": workload_id, "last_deployed_at": timestamp}
            if record.created_at is None:
                changes["created_at"] = timestamp
            if port_mappings is not None:
                changes["port_mappings"] = [p.model_copy() for p in port_mappings]
            if build_file_path is not None:
                changes["build_file_path"] = build_file_path
            if revision is not None:
                changes["last_revision"] = revision
            updated = record.model_copy(update=changes, deep=True)
            self._deployments[deployment_id] = updated
            return updated.model_copy(deep=True)

    def clear_workload(self, deployment_id: str) -> Optional[Deployment]:
        with self._lock:
            record = self._deployments.get(deployment_id)
            if record is None:
                return None
            updated = record.model_copy(
                update={"workload_id": None, "port_mappings": []}, deep=True
            )
            self._deployments[deployment_id] = updated
            return updated.model_copy(deep=True)
