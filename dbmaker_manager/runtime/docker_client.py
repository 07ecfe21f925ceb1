"""Docker implementation of the runtime client using the Docker Python SDK."""

from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

import docker
import requests
from docker.errors import APIError, DockerException, NotFound

from ..core.errors import ContainerNotFound, RuntimeOperationError, RuntimeUnavailable
from ..utils.logging import get_logger
from .models import ContainerInfo, ContainerSpec, ContainerSummary

logger = get_logger(__name__)


def split_image_reference(image: str) -> Tuple[str, Optional[str]]:
    """
    Split an image reference into repository and tag.

    A colon inside the registry host (``registry:5000/db``) is not a tag
    separator. Digest references are returned whole.

    Args:
        image: Image reference, e.g. ``postgres:16-alpine``

    Returns:
        Tuple of (repository, tag); tag is None for digest references
    """
    if "@" in image:
        return image, None
    repository, _, last = image.rpartition("/")
    if ":" in last:
        name, tag = last.split(":", 1)
        return (f"{repository}/{name}" if repository else name), tag
    return image, "latest"


def _published_ports(attrs: dict) -> List[int]:
    """Collect host ports from live bindings and configured bindings."""
    ports = set()
    live = (attrs.get("NetworkSettings") or {}).get("Ports") or {}
    configured = (attrs.get("HostConfig") or {}).get("PortBindings") or {}
    for bindings in list(live.values()) + list(configured.values()):
        for binding in bindings or []:
            host_port = (binding or {}).get("HostPort")
            if host_port and str(host_port).isdigit():
                ports.add(int(host_port))
    return sorted(ports)


class DockerRuntimeClient:
    """Runtime client backed by the local Docker daemon."""

    def __init__(self, client: Optional[docker.DockerClient] = None):
        """
        Initialize the runtime client.

        Args:
            client: Pre-built Docker client (defaults to ``docker.from_env()``
                on first use)
        """
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as e:
                raise RuntimeUnavailable(f"Docker daemon not available: {e}") from e
        return self._client

    @contextmanager
    def _translate_errors(self, container_id: Optional[str] = None) -> Iterator[None]:
        try:
            yield
        except NotFound as e:
            if container_id is not None:
                raise ContainerNotFound(container_id) from e
            raise RuntimeOperationError(str(e)) from e
        except APIError as e:
            raise RuntimeOperationError(str(e)) from e
        except (DockerException, requests.exceptions.ConnectionError) as e:
            raise RuntimeUnavailable(f"Docker daemon not available: {e}") from e

    def ping(self) -> None:
        """
        Test the daemon connection.

        Raises:
            RuntimeUnavailable: If the Docker daemon is not available
        """
        with self._translate_errors():
            self.client.ping()

    def create_container(self, spec: ContainerSpec) -> str:
        """
        Create (but do not start) a container.

        Args:
            spec: Container specification

        Returns:
            ID of the created container
        """
        volumes: Dict[str, Dict[str, str]] = {
            v.source: {"bind": v.target, "mode": "ro" if v.read_only else "rw"}
            for v in spec.volumes
        }
        with self._translate_errors():
            container = self.client.containers.create(
                spec.image,
                name=spec.name,
                environment=spec.environment,
                ports=spec.port_bindings,
                volumes=volumes or None,
                labels=spec.labels,
                restart_policy={"Name": spec.restart_policy},
            )
        return container.id

    def start_container(self, container_id: str) -> None:
        with self._translate_errors(container_id):
            self.client.containers.get(container_id).start()

    def stop_container(self, container_id: str, timeout: int = 10) -> None:
        with self._translate_errors(container_id):
            self.client.containers.get(container_id).stop(timeout=timeout)

    def remove_container(self, container_id: str, force: bool = True) -> None:
        with self._translate_errors(container_id):
            self.client.containers.get(container_id).remove(force=force)

    def inspect_container(self, container_id: str) -> ContainerInfo:
        """
        Inspect a container.

        Args:
            container_id: Container ID or name

        Returns:
            ContainerInfo with state, labels and published ports

        Raises:
            ContainerNotFound: If the container does not exist
        """
        with self._translate_errors(container_id):
            container = self.client.containers.get(container_id)
            attrs = container.attrs
        state = attrs.get("State") or {}
        config = attrs.get("Config") or {}
        return ContainerInfo(
            id=container.id,
            name=container.name,
            status=state.get("Status", container.status),
            running=bool(state.get("Running")),
            dead=bool(state.get("Dead")),
            exit_code=state.get("ExitCode"),
            error=state.get("Error") or None,
            labels=config.get("Labels") or {},
            published_ports=_published_ports(attrs),
        )

    def list_containers(
        self, all: bool = True, labels: Optional[List[str]] = None
    ) -> List[ContainerSummary]:
        """
        List containers, optionally filtered by label.

        Args:
            all: Include stopped containers
            labels: Label filters (``key`` or ``key=value``)

        Returns:
            List of ContainerSummary
        """
        filters = {"label": list(labels)} if labels else None
        with self._translate_errors():
            containers = self.client.containers.list(all=all, filters=filters, ignore_removed=True)
        return [
            ContainerSummary(
                id=c.id,
                name=c.name,
                status=c.status,
                labels=c.labels or {},
                published_ports=_published_ports(c.attrs),
            )
            for c in containers
        ]

    def pull_image(self, image: str) -> None:
        repository, tag = split_image_reference(image)
        logger.debug("image_pull_started", image=image)
        with self._translate_errors():
            self.client.images.pull(repository, tag=tag)
        logger.debug("image_pull_finished", image=image)
