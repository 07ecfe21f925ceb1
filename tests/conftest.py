import itertools
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from dbmaker_manager.core.errors import ContainerNotFound, RuntimeUnavailable
from dbmaker_manager.core.instance_manager import InstanceManager
from dbmaker_manager.core.port_allocator import PortAllocator
from dbmaker_manager.core.route_sync import RouteSynchronizer
from dbmaker_manager.core.store import JsonInstanceStore
from dbmaker_manager.core.template import TemplateManager
from dbmaker_manager.runtime.models import ContainerInfo, ContainerSpec, ContainerSummary

PACKAGED_TEMPLATES = Path(__file__).resolve().parent.parent / "dbmaker_manager" / "templates"


class FakeRuntime:
    """In-memory container engine implementing the RuntimeClient protocol."""

    def __init__(self):
        self.containers: Dict[str, dict] = {}
        self.specs: Dict[str, ContainerSpec] = {}
        self.pulled: List[str] = []
        self.available = True
        self.create_error: Optional[Exception] = None
        self.start_error: Optional[Exception] = None
        self.pull_error: Optional[Exception] = None
        self.exit_on_start = False
        self._ids = itertools.count(1)

    def _check(self):
        if not self.available:
            raise RuntimeUnavailable("Cannot connect to the Docker daemon")

    def _get(self, container_id: str) -> dict:
        if container_id not in self.containers:
            raise ContainerNotFound(container_id)
        return self.containers[container_id]

    def add_container(self, name: str, ports=(), labels=None, running=True, dead=False) -> str:
        container_id = f"ext{next(self._ids)}"
        self.containers[container_id] = {
            "name": name,
            "labels": dict(labels or {}),
            "ports": list(ports),
            "running": running,
            "dead": dead,
            "exit_code": None if running else 0,
        }
        return container_id

    def ping(self) -> None:
        self._check()

    def create_container(self, spec: ContainerSpec) -> str:
        self._check()
        if self.create_error:
            raise self.create_error
        container_id = f"c{next(self._ids)}"
        self.containers[container_id] = {
            "name": spec.name,
            "labels": dict(spec.labels),
            "ports": list(spec.port_bindings.values()),
            "running": False,
            "dead": False,
            "exit_code": None,
        }
        self.specs[container_id] = spec
        return container_id

    def start_container(self, container_id: str) -> None:
        self._check()
        container = self._get(container_id)
        if self.start_error:
            raise self.start_error
        if self.exit_on_start:
            container.update(running=False, exit_code=1)
        else:
            container.update(running=True, exit_code=None)

    def stop_container(self, container_id: str, timeout: int = 10) -> None:
        self._check()
        self._get(container_id).update(running=False, exit_code=0)

    def remove_container(self, container_id: str, force: bool = True) -> None:
        self._check()
        self._get(container_id)
        del self.containers[container_id]

    def _status(self, container: dict) -> str:
        if container["running"]:
            return "running"
        if container["dead"]:
            return "dead"
        return "exited" if container["exit_code"] is not None else "created"

    def inspect_container(self, container_id: str) -> ContainerInfo:
        self._check()
        container = self._get(container_id)
        return ContainerInfo(
            id=container_id,
            name=container["name"],
            status=self._status(container),
            running=container["running"],
            dead=container["dead"],
            exit_code=container["exit_code"],
            labels=container["labels"],
            published_ports=container["ports"],
        )

    def list_containers(self, all: bool = True, labels=None) -> List[ContainerSummary]:
        self._check()
        summaries = []
        for container_id, container in list(self.containers.items()):
            if not all and not container["running"]:
                continue
            # ``all`` is shadowed by the parameter
            if labels and any(not self._label_matches(container["labels"], f) for f in labels):
                continue
            summaries.append(
                ContainerSummary(
                    id=container_id,
                    name=container["name"],
                    status=self._status(container),
                    labels=container["labels"],
                    published_ports=container["ports"],
                )
            )
        return summaries

    @staticmethod
    def _label_matches(container_labels: Dict[str, str], label_filter: str) -> bool:
        key, sep, value = label_filter.partition("=")
        if key not in container_labels:
            return False
        return not sep or container_labels[key] == value

    def pull_image(self, image: str) -> None:
        self._check()
        if self.pull_error:
            raise self.pull_error
        self.pulled.append(image)


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def busy_ports():
    """Ports some other OS process is listening on."""
    return set()


@pytest.fixture
def allocator(runtime, busy_ports, monkeypatch):
    port_allocator = PortAllocator(runtime, range_start=20000, range_size=50, bind_host="127.0.0.1")
    monkeypatch.setattr(port_allocator, "_can_bind", lambda port: port not in busy_ports)
    return port_allocator


@pytest.fixture
def route_sync(tmp_path):
    return RouteSynchronizer(
        table_path=tmp_path / "nginx" / "dynamic-upstreams.conf",
        base_domain="mydomain.com",
        reload_command="",
    )


@pytest.fixture
def template_manager():
    """Built-in templates only."""
    return TemplateManager(None, base_domain="mydomain.com", http_port=80)


@pytest.fixture
def manager(runtime, allocator, route_sync, template_manager):
    return InstanceManager(
        runtime,
        port_allocator=allocator,
        route_sync=route_sync,
        template_manager=template_manager,
        settle_delay=0,
        product_prefix="dbmaker",
        label_prefix="dbmaker",
        remove_unstarted=False,
    )


@pytest.fixture
def store(tmp_path):
    return JsonInstanceStore(tmp_path / "instances")


@pytest.fixture
def packaged_templates():
    return PACKAGED_TEMPLATES
