# tests/conftest.py
import itertools
import os
import shutil
import sys
import threading
import time
import uuid
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("ENABLE_RATE_LIMIT", "false")

from core.errors import WorkloadNotFound  # noqa: E402
from core.models import PortMapping, Workload  # noqa: E402
from core.orchestrator import DeploymentOrchestrator  # noqa: E402
from core.registry import DeploymentRegistry  # noqa: E402


# ---------------------------------------------------------------------------
# Keep docker away from the host for all tests
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def patch_docker_from_env():
    """Prevent docker.from_env() from contacting the host."""
    fake_client = MagicMock()
    fake_client.containers.list.return_value = []
    with patch("docker.from_env", return_value=fake_client):
        yield fake_client


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------
class FakeEngine:
    """Container engine double that keeps containers in a dict.

    ``fail`` maps a method name to an exception, or to a list of exceptions
    consumed one per call.
    """

    def __init__(self):
        self.containers = {}
        self.calls = []
        self.fail = {}
        self._ids = itertools.count(1)
        self._image_ids = itertools.count(1)
        self.images = {}
        self.tags = {}
        self.before_create = None
        self._lock = threading.Lock()

    def _record(self, method, *args):
        with self._lock:
            self.calls.append((method,) + args)
            err = self.fail.get(method)
            if isinstance(err, list):
                if err:
                    raise err.pop(0)
            elif err is not None:
                raise err

    def add_container(self, workload_id, host_port=None, status="running", name=None):
        ports = []
        if host_port is not None:
            ports = [PortMapping(host_port=host_port, container_port=80)]
        self.containers[workload_id] = {
            "name": name or workload_id,
            "image": "existing:latest",
            "status": status,
            "ports": ports,
            "env": {},
            "labels": {},
        }

    def method_calls(self, method):
        return [c for c in self.calls if c[0] == method]

    def list_workloads(self):
        self._record("list_workloads")
        return [
            Workload(
                id=cid,
                name=c["name"],
                image=c["image"],
                status=c["status"],
                ports=list(c["ports"]),
                environment=dict(c["env"]),
            )
            for cid, c in list(self.containers.items())
        ]

    def used_ports(self):
        return {p.host_port for w in self.list_workloads() for p in w.ports}

    def inspect_workload(self, workload_id):
        self._record("inspect_workload", workload_id)
        for w in self.list_workloads():
            if w.id == workload_id:
                return w
        return None

    def build_image(self, path, tag, dockerfile=None):
        self._record("build_image", path, tag, dockerfile)
        image_id = f"sha256:{next(self._image_ids):064x}"
        descriptor = Path(path) / (dockerfile or "Dockerfile")
        self.images[image_id] = descriptor.read_text() if descriptor.exists() else ""
        self.tags[tag] = image_id
        return image_id

    def create_workload(self, image, name, port_mappings, environment=None, labels=None):
        self._record("create_workload", image, name, list(port_mappings), dict(environment or {}))
        if self.before_create is not None:
            self.before_create()
        workload_id = f"c{next(self._ids) + 1}"
        self.containers[workload_id] = {
            "name": name,
            "image": self.tags.get(image, image),
            "status": "created",
            "ports": list(port_mappings),
            "env": dict(environment or {}),
            "labels": dict(labels or {}),
        }
        return workload_id

    def _require(self, workload_id):
        if workload_id not in self.containers:
            raise WorkloadNotFound(workload_id)
        return self.containers[workload_id]

    def start_workload(self, workload_id):
        self._record("start_workload", workload_id)
        self._require(workload_id)["status"] = "running"

    def stop_workload(self, workload_id, timeout=10):
        self._record("stop_workload", workload_id)
        self._require(workload_id)["status"] = "exited"

    def remove_workload(self, workload_id, force=False):
        self._record("remove_workload", workload_id)
        self._require(workload_id)
        del self.containers[workload_id]

    def fetch_logs(self, workload_id, tail=100):
        self._record("fetch_logs", workload_id, tail)
        self._require(workload_id)
        return f"last {tail} lines of {workload_id}"


class FakeGit:
    """Source fetcher double writing throwaway checkouts under ``base``."""

    def __init__(self, base: Path):
        self.base = base
        self.fetched = []
        self.cleaned = []
        self.descriptor = "Dockerfile"
        self.revision = "0123456789abcdef0123456789abcdef01234567"
        self.fetch_error = None
        self.fetch_delay = 0.0

    def checkout_path(self, repo_url):
        return str(self.base / uuid.uuid4().hex)

    def fetch_source(self, repo_url, branch="main", dest=None):
        if self.fetch_delay:
            time.sleep(self.fetch_delay)
        if self.fetch_error is not None:
            raise self.fetch_error
        dest = Path(dest or self.checkout_path(repo_url))
        dest.mkdir(parents=True, exist_ok=True)
        if self.descriptor:
            (dest / self.descriptor).parent.mkdir(parents=True, exist_ok=True)
            (dest / self.descriptor).write_text(f"FROM nginx:alpine\n# source {repo_url}\n")
        self.fetched.append((repo_url, branch))
        return str(dest)

    def locate_build_descriptor(self, path):
        if not self.descriptor:
            return None
        candidate = Path(path) / self.descriptor
        return str(candidate) if candidate.exists() else None

    def latest_revision(self, path):
        return self.revision

    def cleanup(self, path):
        self.cleaned.append(path)
        shutil.rmtree(path, ignore_errors=True)

    def checkouts_left(self):
        return [p for p in self.base.iterdir()] if self.base.exists() else []


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def fake_git(tmp_path):
    base = tmp_path / "checkouts"
    base.mkdir()
    return FakeGit(base)


@pytest.fixture
def registry():
    return DeploymentRegistry()


@pytest.fixture
def orchestrator(fake_engine, fake_git, registry):
    return DeploymentOrchestrator(fake_engine, fake_git, registry)
