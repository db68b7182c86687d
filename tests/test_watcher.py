import pytest

from podwatt.watcher import (
    ContainerIdentity,
    ContainerNotStartedError,
    PodWatcher,
    parse_container_id_from_pod_status,
)


def make_pod(uid="uid-1", name="podA", namespace="test", containers=None, init=None, conditions=None):
    if conditions is None:
        conditions = [{"type": "ContainersReady", "status": "True"}]
    return {
        "metadata": {"uid": uid, "name": name, "namespace": namespace},
        "status": {
            "conditions": conditions,
            "containerStatuses": containers or [],
            "initContainerStatuses": init or [],
        },
    }


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("containerd://abc123", "abc123"),
        ("docker://def456", "def456"),
        ("cri-o://ghi", "ghi"),
        ("plain", "plain"),
        ("", ""),
        ("a//b//c", "c"),
    ],
)
def test_parse_container_id(raw, expected):
    assert parse_container_id_from_pod_status(raw) == expected


def test_fill_info_creates_entries():
    watcher = PodWatcher()
    pod = make_pod()
    watcher.fill_info(pod, [{"name": "c1", "containerID": "containerd://id1"}])
    assert watcher.containers["id1"] == ContainerIdentity("c1", "podA", "test", "id1")


def test_fill_info_renames_existing_entry():
    existing = ContainerIdentity("old", "oldpod", "oldns", "id1")
    watcher = PodWatcher(containers={"id1": existing})
    watcher.fill_info(make_pod(), [{"name": "c1", "containerID": "docker://id1"}])
    assert watcher.containers["id1"] is existing
    assert (existing.container_name, existing.pod_name, existing.namespace) == ("c1", "podA", "test")


def test_fill_info_raises_for_unstarted_but_fills_others():
    watcher = PodWatcher()
    with pytest.raises(ContainerNotStartedError):
        watcher.fill_info(
            make_pod(),
            [{"name": "pending", "containerID": ""}, {"name": "c2", "containerID": "containerd://id2"}],
        )
    assert list(watcher.containers) == ["id2"]


def test_handle_update_records_ready_pod():
    watcher = PodWatcher()
    pod = make_pod(
        containers=[{"name": "c1", "containerID": "containerd://id1"}],
        init=[{"name": "init", "containerID": "containerd://id0"}],
    )
    watcher.handle_update(pod)
    assert set(watcher.containers) == {"id0", "id1"}
    assert watcher.managed_pods == {"uid-1"}


def test_handle_update_skips_managed_pod():
    watcher = PodWatcher()
    watcher.handle_update(make_pod(containers=[{"name": "c1", "containerID": "containerd://id1"}]))
    watcher.handle_update(make_pod(name="renamed", containers=[{"name": "c1", "containerID": "containerd://id1"}]))
    assert watcher.containers["id1"].pod_name == "podA"


def test_handle_update_retries_until_all_started():
    watcher = PodWatcher()
    watcher.handle_update(make_pod(containers=[{"name": "c1", "containerID": ""}]))
    assert watcher.managed_pods == set()
    assert watcher.containers == {}
    watcher.handle_update(make_pod(containers=[{"name": "c1", "containerID": "containerd://id1"}]))
    assert watcher.managed_pods == {"uid-1"}
    assert watcher.containers["id1"].container_name == "c1"


def test_handle_update_ignores_unready_condition():
    watcher = PodWatcher()
    pod = make_pod(
        containers=[{"name": "c1", "containerID": "containerd://id1"}],
        conditions=[{"type": "PodScheduled", "status": "False"}],
    )
    watcher.handle_update(pod)
    assert watcher.containers == {}
    assert watcher.managed_pods == set()


def test_handle_update_ignores_non_pod_objects():
    watcher = PodWatcher()
    watcher.handle_update("not a pod")
    assert watcher.containers == {}


def test_handle_update_unsupported_kind():
    watcher = PodWatcher(resource_kind="services")
    watcher.handle_update(make_pod(containers=[{"name": "c1", "containerID": "containerd://id1"}]))
    assert watcher.containers == {}


def test_handle_deleted_removes_containers():
    shared = {"other": ContainerIdentity("x", "y", "z", "other")}
    watcher = PodWatcher(containers=shared)
    pod = make_pod(containers=[{"name": "c1", "containerID": "containerd://id1"}])
    watcher.handle_update(pod)
    assert "id1" in shared
    watcher.handle_deleted(pod)
    assert set(shared) == {"other"}
    assert watcher.managed_pods == set()


def test_handle_deleted_rejects_non_pod():
    with pytest.raises(TypeError):
        PodWatcher().handle_deleted(42)


def test_custom_factory_is_used():
    created = []

    class Entry:
        def __init__(self, container_name, pod_name, namespace, container_id):
            created.append(container_id)
            self.container_name = container_name
            self.pod_name = pod_name
            self.namespace = namespace

    watcher = PodWatcher(container_factory=Entry)
    watcher.handle_update(make_pod(containers=[{"name": "c1", "containerID": "containerd://id1"}]))
    assert created == ["id1"]
    entry = watcher.containers["id1"]
    assert type(entry) is Entry
    assert (entry.container_name, entry.pod_name, entry.namespace) == ("c1", "podA", "test")
    assert watcher.managed_pods == {"uid-1"}


def test_delete_info_tolerates_missing():
    watcher = PodWatcher(containers={"id1": ContainerIdentity("c", "p", "n", "id1")})
    watcher.delete_info([{"name": "c", "containerID": "containerd://missing"}])
    assert list(watcher.containers) == ["id1"]