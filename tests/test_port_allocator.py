import threading

import pytest

from dbmaker_manager.core.errors import PortExhausted


def test_reserve_returns_first_free_port(allocator):
    assert allocator.reserve() == 20000
    assert allocator.reserve() == 20001
    assert allocator.get_reserved_ports() == {20000, 20001}


def test_concurrent_reservations_are_unique(allocator):
    results = []
    lock = threading.Lock()

    def worker():
        port = allocator.reserve()
        with lock:
            results.append(port)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 20
    assert len(set(results)) == 20
    assert all(20000 <= p <= allocator.range_end for p in results)


def test_release_is_idempotent(allocator):
    port = allocator.reserve()

    allocator.release(port)
    allocator.release(port)
    allocator.release(20049)

    assert not allocator.is_reserved(port)
    assert allocator.reserve() == port


def test_skips_ports_busy_at_os_level(allocator, busy_ports):
    busy_ports.update({20000, 20001})

    assert allocator.reserve() == 20002
    assert allocator.is_reserved(20000)
    assert allocator.is_reserved(20001)


def test_skips_ports_published_by_runtime(allocator, runtime):
    runtime.add_container("someone-else", ports=[20000, 20002])
    runtime.add_container("below-range", ports=[8080])

    assert allocator.reserve() == 20001
    assert allocator.reserve() == 20003
    assert not allocator.is_reserved(8080)


def test_published_port_of_stopped_container_is_absorbed(allocator, runtime):
    runtime.add_container("stopped", ports=[20000], running=False)

    allocator.refresh()

    assert allocator.is_reserved(20000)


def test_exhaustion_raises(runtime, busy_ports, monkeypatch):
    from dbmaker_manager.core.port_allocator import PortAllocator

    small = PortAllocator(runtime, range_start=30000, range_size=3)
    monkeypatch.setattr(small, "_can_bind", lambda port: port not in busy_ports)
    busy_ports.add(30001)

    small.reserve()
    small.reserve()
    with pytest.raises(PortExhausted) as exc_info:
        small.reserve()

    assert "30000-30002" in str(exc_info.value)
    assert exc_info.value.tracked == 3


def test_unreachable_runtime_does_not_block_reservation(allocator, runtime):
    runtime.available = False

    assert allocator.reserve() == 20000
