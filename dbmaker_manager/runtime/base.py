"""Capability interface the orchestrator expects from a container runtime."""

from typing import List, Optional, Protocol

from .models import ContainerInfo, ContainerSpec, ContainerSummary


class RuntimeClient(Protocol):
    """Thin transport to a container engine.

    Implementations raise ``RuntimeUnavailable`` when the engine cannot be
    reached, ``ContainerNotFound`` for unknown container ids and
    ``RuntimeOperationError`` when the engine rejects a request.
    """

    def ping(self) -> None: ...

    def create_container(self, spec: ContainerSpec) -> str: ...

    def start_container(self, container_id: str) -> None: ...

    def stop_container(self, container_id: str, timeout: int = 10) -> None: ...

    def remove_container(self, container_id: str, force: bool = True) -> None: ...

    def inspect_container(self, container_id: str) -> ContainerInfo: ...

    def list_containers(
        self, all: bool = True, labels: Optional[List[str]] = None
    ) -> List[ContainerSummary]: ...

    def pull_image(self, image: str) -> None: ...
