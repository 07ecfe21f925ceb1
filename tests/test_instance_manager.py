import threading

import pytest

from dbmaker_manager.core.errors import (
    CreateFailed,
    RuntimeOperationError,
    RuntimeUnavailable,
    StartFailed,
    UnknownTemplate,
)
from dbmaker_manager.core.instance import InstanceStatus


def test_create_instance_happy_path(manager, runtime, allocator, route_sync):
    instance = manager.create_instance("alice", "postgresql", "mydb", {"POSTGRES_PASSWORD": "pw"})

    assert instance.status == InstanceStatus.RUNNING
    assert instance.port == 20000
    assert instance.subdomain == "alice-mydb-postgresql"
    assert instance.container_name == "dbmaker-alice-postgresql-mydb"
    assert instance.connection_string == "postgresql://admin:pw@alice-mydb-postgresql.mydomain.com:80/mydb"
    assert allocator.is_reserved(20000)
    assert route_sync.lookup("alice-mydb-postgresql") == 20000
    assert runtime.pulled == ["postgres:16-alpine"]

    spec = runtime.specs[instance.container_id]
    assert spec.port_bindings == {"5432/tcp": 20000}
    assert spec.environment["POSTGRES_DB"] == "mydb"
    assert spec.environment["POSTGRES_PASSWORD"] == "pw"
    assert spec.restart_policy == "unless-stopped"
    assert [v.source for v in spec.volumes] == ["dbmaker-alice-postgresql-mydb-data"]
    assert spec.labels["dbmaker.userId"] == "alice"
    assert spec.labels["dbmaker.databaseType"] == "postgresql"
    assert spec.labels["dbmaker.containerName"] == "mydb"
    assert spec.labels["dbmaker.subdomain"] == "alice-mydb-postgresql"
    assert spec.labels["dbmaker.port"] == "20000"
    assert spec.labels["dbmaker.createdAt"] == instance.created_at.isoformat()


def test_version_hint_is_kept_off_the_subdomain(manager):
    instance = manager.create_instance("alice", "postgresql@16-alpine", "mydb")

    assert instance.template_type == "postgresql"
    assert instance.template_version == "16-alpine"
    assert instance.subdomain == "alice-mydb-postgresql"


def test_instances_get_distinct_ports(manager):
    first = manager.create_instance("alice", "redis", "cache")
    second = manager.create_instance("bob", "redis", "cache")

    assert first.port != second.port
    assert first.subdomain != second.subdomain


def test_unknown_template_leaves_reservations_unchanged(manager, runtime, allocator):
    manager.create_instance("alice", "redis", "cache")
    before = allocator.get_reserved_ports()

    with pytest.raises(UnknownTemplate):
        manager.create_instance("alice", "cassandra", "big")

    assert allocator.get_reserved_ports() == before
    assert len(runtime.containers) == 1


def test_empty_owner_is_rejected_before_reservation(manager, allocator):
    with pytest.raises(ValueError):
        manager.create_instance("", "redis", "cache")

    assert allocator.reserved_count() == 0


def test_container_that_does_not_start_is_marked_failed(manager, runtime, allocator, route_sync):
    runtime.exit_on_start = True

    instance = manager.create_instance("alice", "postgresql", "mydb")

    assert instance.status == InstanceStatus.FAILED
    assert not allocator.is_reserved(instance.port)
    assert route_sync.lookup(instance.subdomain) is None
    assert instance.container_id in runtime.containers


def test_unstarted_container_removed_when_configured(manager, runtime):
    runtime.exit_on_start = True
    manager.remove_unstarted = True

    instance = manager.create_instance("alice", "postgresql", "mydb")

    assert instance.status == InstanceStatus.FAILED
    assert instance.container_id not in runtime.containers


def test_create_rejection_releases_port(manager, runtime, allocator):
    runtime.create_error = RuntimeOperationError("Conflict: name already in use")

    with pytest.raises(CreateFailed, match="dbmaker-alice-redis-cache"):
        manager.create_instance("alice", "redis", "cache")

    assert allocator.reserved_count() == 0


def test_start_rejection_releases_port(manager, runtime, allocator, route_sync):
    runtime.start_error = RuntimeOperationError("port is already allocated")

    with pytest.raises(StartFailed):
        manager.create_instance("alice", "redis", "cache")

    assert allocator.reserved_count() == 0
    assert route_sync.entries() == []


def test_unreachable_runtime_propagates_and_releases_port(manager, runtime, allocator):
    runtime.available = False

    with pytest.raises(RuntimeUnavailable):
        manager.create_instance("alice", "redis", "cache")

    assert allocator.reserved_count() == 0


def test_pull_failure_is_not_fatal(manager, runtime):
    runtime.pull_error = RuntimeOperationError("pull access denied")

    instance = manager.create_instance("alice", "redis", "cache")

    assert instance.status == InstanceStatus.RUNNING


def test_create_then_remove(manager, runtime, allocator, route_sync):
    instance = manager.create_instance("alice", "redis", "cache")

    assert manager.remove_container(instance.container_id) is True

    assert instance.container_id not in runtime.containers
    assert route_sync.lookup(instance.subdomain) is None
    assert not allocator.is_reserved(instance.port)


def test_remove_is_idempotent(manager, route_sync, allocator):
    instance = manager.create_instance("alice", "redis", "cache")

    assert manager.remove_container(instance.container_id, instance.subdomain, instance.port)
    assert manager.remove_container(instance.container_id, instance.subdomain, instance.port)

    assert route_sync.entries() == []
    assert allocator.reserved_count() == 0


def test_remove_uses_hints_for_vanished_container(manager, runtime, route_sync, allocator):
    instance = manager.create_instance("alice", "redis", "cache")
    del runtime.containers[instance.container_id]

    assert manager.remove_container(instance.container_id, instance.subdomain, instance.port)

    assert route_sync.lookup(instance.subdomain) is None
    assert not allocator.is_reserved(instance.port)


def test_remove_failure_still_releases_route_and_port(manager, runtime, route_sync, allocator, monkeypatch):
    instance = manager.create_instance("alice", "redis", "cache")

    def refuse(container_id, force=True):
        raise RuntimeOperationError("removal already in progress")

    monkeypatch.setattr(runtime, "remove_container", refuse)

    assert manager.remove_container(instance.container_id) is False
    assert route_sync.lookup(instance.subdomain) is None
    assert not allocator.is_reserved(instance.port)


def test_start_and_stop_report_failures(manager):
    instance = manager.create_instance("alice", "redis", "cache")

    assert manager.stop_container(instance.container_id) is True
    assert manager.get_stats(instance.container_id).status == InstanceStatus.STOPPED
    assert manager.start_container(instance.container_id) is True
    assert manager.stop_container("does-not-exist") is False
    assert manager.start_container("does-not-exist") is False


def test_get_all_stats_only_reports_managed_containers(manager, runtime):
    running = manager.create_instance("alice", "redis", "cache")
    stopped = manager.create_instance("bob", "redis", "cache")
    manager.stop_container(stopped.container_id)
    runtime.add_container("unrelated", ports=[5432])
    runtime.add_container("half-labelled", labels={"dbmaker.userId": "mallory"})

    stats = {s.container_id: s for s in manager.get_all_stats()}

    assert set(stats) == {running.container_id, stopped.container_id}
    assert stats[running.container_id].status == InstanceStatus.RUNNING
    assert stats[running.container_id].owner_id == "alice"
    assert stats[running.container_id].port == running.port
    assert stats[stopped.container_id].status == InstanceStatus.STOPPED
    assert stats[running.container_id].cpu_usage == 0.0


def test_dead_container_maps_to_failed(manager, runtime):
    instance = manager.create_instance("alice", "redis", "cache")
    runtime.containers[instance.container_id].update(running=False, dead=True)

    assert manager.get_stats(instance.container_id).status == InstanceStatus.FAILED


def test_get_stats_unknown_container(manager):
    assert manager.get_stats("nope") is None


def test_is_managed_requires_full_label_set(manager):
    instance = manager.create_instance("alice", "redis", "cache")
    labels = manager.managed_labels(instance)

    assert manager.is_managed(labels)
    labels.pop("dbmaker.createdAt")
    assert not manager.is_managed(labels)


@pytest.mark.parametrize(
    "owner,name,key,expected",
    [
        ("alice", "mydb", "postgresql", "alice-mydb-postgresql"),
        ("Alice_Smith", "My DB!", "postgresql", "alice-smith-my-db-postgresql"),
        ("u", "a.b", "redis", "u-ab-redis"),
    ],
)
def test_generate_subdomain(manager, owner, name, key, expected):
    assert manager.generate_subdomain(owner, name, key) == expected


def test_generate_subdomain_truncates_to_dns_label(manager):
    subdomain = manager.generate_subdomain("owner", "x" * 100, "postgresql")

    assert len(subdomain) == 63
    assert subdomain.startswith("owner-xxx")


def test_redis_create_then_port_is_reusable(manager, allocator, route_sync):
    instance = manager.create_instance("user1", "redis", "cache1", {})

    assert instance.subdomain == "user1-cache1-redis"
    assert route_sync.lookup("user1-cache1-redis") == instance.port

    manager.remove_container(instance.container_id)

    assert route_sync.entries() == []
    assert allocator.reserve() == instance.port


def test_get_stats_ignores_unlabelled_container(manager, runtime):
    foreign = runtime.add_container("someone-elses-db", ports=[5432])

    assert manager.get_stats(foreign) is None


def test_non_utf8_route_table_does_not_break_create_or_remove(manager, runtime, allocator, route_sync):
    route_sync.table_path.parent.mkdir(parents=True)
    route_sync.table_path.write_bytes(b"# caf\xe9 edited\n")

    instance = manager.create_instance("user1", "redis", "cache1", {})

    assert instance.status == InstanceStatus.RUNNING
    assert route_sync.lookup("user1-cache1-redis") == instance.port

    route_sync.table_path.write_bytes(b"# caf\xe9 edited\n")

    assert manager.remove_container(instance.container_id) is True
    assert instance.container_id not in runtime.containers
    assert not allocator.is_reserved(instance.port)


def test_concurrent_creates_get_distinct_ports_and_routes(manager, route_sync):
    results = []
    lock = threading.Lock()

    def worker(i):
        instance = manager.create_instance(f"user{i}", "redis", "cache")
        with lock:
            results.append(instance)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 10
    assert len({i.port for i in results}) == 10
    assert all(i.status == InstanceStatus.RUNNING for i in results)
    assert {e.port for e in route_sync.entries()} == {i.port for i in results}
