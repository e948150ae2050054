import threading
from datetime import datetime, timedelta, timezone

import pytest

from core.models import Deployment, PortMapping
from core.registry import DeploymentRegistry


def _deployment(**overrides):
    data = {
        "id": "d1",
        "name": "app",
        "source_repository": "https://github.com/org/app.git",
        "workload_id": "w1",
    }
    data.update(overrides)
    return Deployment(**data)


@pytest.fixture
def registry():
    return DeploymentRegistry()


def test_add_and_get(registry):
    registry.add(_deployment())
    assert registry.get("d1").name == "app"
    assert registry.get("missing") is None
    assert len(registry) == 1


def test_duplicate_id_rejected(registry):
    registry.add(_deployment())
    with pytest.raises(ValueError):
        registry.add(_deployment())


def test_reads_are_copies(registry):
    registry.add(_deployment(environment={"A": "1"}))

    copy = registry.get("d1")
    copy.environment["A"] = "changed"
    copy.workload_id = "tampered"

    assert registry.get("d1").environment == {"A": "1"}
    assert registry.get("d1").workload_id == "w1"


def test_added_record_is_detached_from_caller(registry):
    original = _deployment(environment={"A": "1"})
    registry.add(original)
    original.environment["A"] = "changed"

    assert registry.get("d1").environment == {"A": "1"}


@pytest.mark.parametrize(
    "url",
    [
        "https://github.com/org/app.git",
        "https://github.com/org/app",
        "https://GitHub.com/Org/App.git/",
        "http://github.com/org/app",
        "git@github.com:org/app.git",
    ],
)
def test_find_by_repository_normalizes(registry, url):
    registry.add(_deployment())
    assert [d.id for d in registry.find_by_repository(url)] == ["d1"]


def test_find_by_repository_no_match(registry):
    registry.add(_deployment())
    assert registry.find_by_repository("https://github.com/org/other.git") == []
    assert registry.find_by_repository("https://gitlab.com/org/app.git") == []


def test_find_by_repository_skips_manual_deployments(registry):
    registry.add(_deployment(id="auto"))
    registry.add(_deployment(id="manual", auto_deploy=False))

    assert [d.id for d in registry.find_by_repository("https://github.com/org/app")] == [
        "auto"
    ]


def test_find_by_workload(registry):
    registry.add(_deployment())
    assert registry.find_by_workload("w1").id == "d1"
    assert registry.find_by_workload("w2") is None


def test_update_after_redeploy(registry):
    registry.add(_deployment())
    ts = datetime(2024, 1, 1, tzinfo=timezone.utc)

    updated = registry.update_after_redeploy(
        "d1",
        "w2",
        ts,
        port_mappings=[PortMapping(host_port=8001, container_port=80)],
        revision="abc123",
    )

    assert updated.workload_id == "w2"
    assert updated.last_deployed_at == ts
    assert updated.created_at == ts
    assert updated.last_revision == "abc123"
    assert updated.port_mappings[0].host_port == 8001
    assert registry.get("d1") == updated


def test_update_keeps_original_created_at(registry):
    created = datetime(2023, 1, 1, tzinfo=timezone.utc)
    registry.add(_deployment(created_at=created))

    updated = registry.update_after_redeploy("d1", "w2", created + timedelta(days=1))

    assert updated.created_at == created


def test_update_missing(registry):
    assert registry.update_after_redeploy("nope", "w", datetime.now(timezone.utc)) is None


def test_clear_workload(registry):
    registry.add(
        _deployment(port_mappings=[PortMapping(host_port=8000, container_port=80)])
    )

    cleared = registry.clear_workload("d1")

    assert cleared.workload_id is None
    assert cleared.port_mappings == []
    assert registry.find_by_workload("w1") is None


def test_remove(registry):
    registry.add(_deployment())
    assert registry.remove("d1").id == "d1"
    assert registry.remove("d1") is None
    assert registry.list_all() == []


def test_concurrent_updates_stay_consistent(registry):
    registry.add(_deployment())
    ts = datetime.now(timezone.utc)
    seen = []

    def writer(n):
        for i in range(200):
            registry.update_after_redeploy(
                "d1",
                f"w{n}-{i}",
                ts,
                port_mappings=[PortMapping(host_port=9000 + n, container_port=80)],
            )

    def reader():
        for _ in range(400):
            d = registry.get("d1")
            seen.append((d.workload_id, d.port_mappings[0].host_port if d.port_mappings else None))

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    threads.append(threading.Thread(target=reader))
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    for workload_id, port in seen:
        if workload_id == "w1":
            continue
        writer_id = int(workload_id[1:].split("-")[0])
        assert port == 9000 + writer_id


def test_remove_hands_out_a_copy(registry):
    registry.add(_deployment(environment={"A": "1"}))
    stored = registry._deployments["d1"]

    removed = registry.remove("d1")

    assert removed == stored
    assert removed is not stored
    assert removed.environment is not stored.environment
