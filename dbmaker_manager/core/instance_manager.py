"""Container lifecycle management for database instances."""

import re
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..config import Config
from ..runtime.base import RuntimeClient
from ..runtime.models import ContainerInfo, ContainerSpec, VolumeBinding
from ..utils.logging import get_logger
from .errors import (
    ContainerNotFound,
    CreateFailed,
    OrchestratorError,
    RuntimeOperationError,
    RuntimeUnavailable,
    StartFailed,
)
from .instance import DatabaseTemplate, Instance, InstanceStatus, MonitoringData
from .port_allocator import PortAllocator
from .route_sync import RouteSynchronizer
from .template import FileTemplateResolver, TemplateManager

logger = get_logger(__name__)

DNS_LABEL_MAX = 63


@dataclass(frozen=True)
class ManagedLabels:
    """Label keys written onto every managed container."""

    prefix: str

    @property
    def owner_id(self) -> str:
        return f"{self.prefix}.userId"

    @property
    def database_type(self) -> str:
        return f"{self.prefix}.databaseType"

    @property
    def name(self) -> str:
        return f"{self.prefix}.containerName"

    @property
    def subdomain(self) -> str:
        return f"{self.prefix}.subdomain"

    @property
    def port(self) -> str:
        return f"{self.prefix}.port"

    @property
    def created_at(self) -> str:
        return f"{self.prefix}.createdAt"

    @property
    def required(self) -> List[str]:
        return [self.owner_id, self.database_type, self.name, self.subdomain, self.port, self.created_at]


def _parse_port(value: Optional[str]) -> Optional[int]:
    if value and value.isdigit():
        return int(value)
    return None


def status_from_state(info: ContainerInfo) -> InstanceStatus:
    """Map runtime state onto instance status."""
    if info.running:
        return InstanceStatus.RUNNING
    if info.dead:
        return InstanceStatus.FAILED
    return InstanceStatus.STOPPED


class InstanceManager:
    """Drives instances from request to running container and back down."""

    def __init__(
        self,
        runtime: RuntimeClient,
        port_allocator: Optional[PortAllocator] = None,
        route_sync: Optional[RouteSynchronizer] = None,
        template_manager: Optional[TemplateManager] = None,
        settle_delay: Optional[float] = None,
        product_prefix: Optional[str] = None,
        label_prefix: Optional[str] = None,
        remove_unstarted: Optional[bool] = None,
    ):
        """
        Initialize instance manager.

        Args:
            runtime: Container runtime client
            port_allocator: Port allocator (defaults to one over ``runtime``)
            route_sync: Proxy route synchronizer
            template_manager: Template resolution (defaults to the YAML library
                with built-in fallback)
            settle_delay: Seconds to wait after start before checking state
            product_prefix: Prefix for container names
            label_prefix: Prefix for identifying labels
            remove_unstarted: Remove containers that never reached running
        """
        self.runtime = runtime
        self.port_allocator = port_allocator or PortAllocator(runtime)
        self.route_sync = route_sync or RouteSynchronizer()
        self.template_manager = template_manager or TemplateManager(FileTemplateResolver())
        self.settle_delay = Config.SETTLE_DELAY if settle_delay is None else settle_delay
        self.product_prefix = product_prefix or Config.PRODUCT_PREFIX
        self.labels = ManagedLabels(label_prefix or Config.LABEL_PREFIX)
        self.remove_unstarted = (
            Config.REMOVE_UNSTARTED_CONTAINERS if remove_unstarted is None else remove_unstarted
        )

    def generate_subdomain(self, owner_id: str, name: str, template_key: str) -> str:
        """
        Build a DNS-safe subdomain for an instance.

        Args:
            owner_id: Owner identifier
            name: Logical instance name
            template_key: Template key without version hint

        Returns:
            Lower-case label of at most 63 characters
        """
        subdomain = f"{owner_id}-{name}-{template_key}".lower().replace("_", "-").replace(" ", "-")
        subdomain = re.sub(r"[^a-z0-9-]", "", subdomain)
        return subdomain[:DNS_LABEL_MAX]

    def generate_container_name(self, owner_id: str, template_key: str, name: str) -> str:
        container_name = f"{self.product_prefix}-{owner_id}-{template_key}-{name}"
        return re.sub(r"[^a-zA-Z0-9_.-]", "-", container_name)

    def managed_labels(self, instance: Instance) -> Dict[str, str]:
        return {
            self.labels.owner_id: instance.owner_id,
            self.labels.database_type: instance.template_type,
            self.labels.name: instance.name,
            self.labels.subdomain: instance.subdomain,
            self.labels.port: str(instance.port),
            self.labels.created_at: instance.created_at.isoformat(),
        }

    def is_managed(self, labels: Dict[str, str]) -> bool:
        """True when every identifying label is present."""
        return all(labels.get(key) for key in self.labels.required)

    def _pull_image(self, image: str) -> None:
        try:
            self.runtime.pull_image(image)
        except OrchestratorError as e:
            logger.warning("image_pull_failed_assuming_local", image=image, error=str(e))

    def _container_spec(
        self, instance: Instance, template: DatabaseTemplate, environment: Dict[str, str]
    ) -> ContainerSpec:
        volumes = []
        for i, volume in enumerate(template.volumes):
            source = volume.host_path or (
                f"{instance.container_name}-data" if i == 0 else f"{instance.container_name}-data-{i}"
            )
            volumes.append(
                VolumeBinding(source=source, target=volume.container_path, read_only=volume.read_only)
            )

        return ContainerSpec(
            name=instance.container_name,
            image=template.docker_image,
            environment=environment,
            port_bindings={f"{p.container_port}/{p.protocol}": instance.port for p in template.ports},
            volumes=volumes,
            labels=self.managed_labels(instance),
            restart_policy="unless-stopped",
        )

    def create_instance(
        self,
        owner_id: str,
        template_key: str,
        name: str,
        configuration: Optional[Dict[str, str]] = None,
    ) -> Instance:
        """
        Provision a new database container.

        Steps:
        1. Resolve template (library first, built-in fallback)
        2. Reserve a host port
        3. Derive subdomain, container name and environment
        4. Pull image (best effort)
        5. Create and start the container, wait for it to settle
        6. Publish the proxy route if it is running

        Args:
            owner_id: Owner identifier
            template_key: Template key with optional ``@version`` / ``:version`` hint
            name: Logical instance name
            configuration: Environment overrides

        Returns:
            Instance with status RUNNING, or FAILED if the container did not come up

        Raises:
            ValueError: If owner_id or name is empty
            UnknownTemplate: If the template cannot be resolved
            PortExhausted: If no host port is free
            CreateFailed: If the runtime rejects the container
            StartFailed: If the runtime rejects the start request
            RuntimeUnavailable: If the runtime cannot be reached
        """
        if not owner_id or not name:
            raise ValueError("owner_id and name are required")

        resolved = self.template_manager.resolve(template_key)
        template = resolved.template

        port = self.port_allocator.reserve()
        try:
            instance = Instance(
                owner_id=owner_id,
                name=name,
                template_type=resolved.key,
                template_version=resolved.version,
                container_name=self.generate_container_name(owner_id, resolved.key, name),
                port=port,
                subdomain=self.generate_subdomain(owner_id, name, resolved.key),
                status=InstanceStatus.CREATING,
                configuration=dict(configuration or {}),
            )
            logger.info(
                "instance_creating",
                container_name=instance.container_name,
                port=port,
                subdomain=instance.subdomain,
                template=resolved.key,
                template_source=resolved.source,
            )

            environment = self.template_manager.build_environment(
                resolved.key, template, name, configuration
            )
            self._pull_image(template.docker_image)

            spec = self._container_spec(instance, template, environment)
            try:
                instance.container_id = self.runtime.create_container(spec)
            except RuntimeOperationError as e:
                raise CreateFailed(instance.container_name, str(e), e) from e

            instance.connection_string = self.template_manager.render_connection_string(
                template, port, environment, instance.subdomain
            )

            try:
                self.runtime.start_container(instance.container_id)
            except (RuntimeOperationError, ContainerNotFound) as e:
                raise StartFailed(instance.container_name, str(e), e) from e

            time.sleep(self.settle_delay)

            try:
                info = self.runtime.inspect_container(instance.container_id)
            except ContainerNotFound:
                info = None
        except Exception as e:
            # Release the port if container creation failed
            self.port_allocator.release(port)
            logger.error("instance_create_failed", owner_id=owner_id, name=name, port=port, error=str(e))
            raise

        if info is not None and info.running:
            instance.status = InstanceStatus.RUNNING
            self.route_sync.publish(instance.subdomain, port)
            logger.info(
                "instance_running",
                container_name=instance.container_name,
                owner_id=owner_id,
                port=port,
            )
        else:
            instance.status = InstanceStatus.FAILED
            self._abandon_unstarted(instance, info)

        return instance

    def _abandon_unstarted(self, instance: Instance, info: Optional[ContainerInfo]) -> None:
        logger.error(
            "instance_start_failed",
            container_name=instance.container_name,
            state=info.status if info else "missing",
            exit_code=info.exit_code if info else None,
            error=info.error if info else None,
        )
        self.port_allocator.release(instance.port)

        if not self.remove_unstarted:
            return
        try:
            self.runtime.remove_container(instance.container_id, force=True)
            logger.info("unstarted_container_removed", container_name=instance.container_name)
        except OrchestratorError as e:
            logger.warning(
                "unstarted_container_remove_failed", container_name=instance.container_name, error=str(e)
            )

    def start_container(self, container_id: str) -> bool:
        """
        Start an existing container.

        Args:
            container_id: Container to start

        Returns:
            True on success, False if the runtime refused
        """
        try:
            self.runtime.start_container(container_id)
        except OrchestratorError as e:
            logger.error("container_start_failed", container_id=container_id, error=str(e))
            return False
        logger.info("container_started", container_id=container_id)
        return True

    def stop_container(self, container_id: str) -> bool:
        """
        Stop a running container.

        Args:
            container_id: Container to stop

        Returns:
            True on success, False if the runtime refused
        """
        try:
            self.runtime.stop_container(container_id, timeout=Config.STOP_TIMEOUT)
        except OrchestratorError as e:
            logger.error("container_stop_failed", container_id=container_id, error=str(e))
            return False
        logger.info("container_stopped", container_id=container_id)
        return True

    def remove_container(
        self,
        container_id: str,
        subdomain: Optional[str] = None,
        port: Optional[int] = None,
    ) -> bool:
        """
        Remove a container and release its route and port.

        Labels on the container take precedence over the hints; the hints
        cover containers that are already gone from the runtime.

        Args:
            container_id: Container to remove
            subdomain: Known subdomain of the instance
            port: Known host port of the instance

        Returns:
            True if the container is gone from the runtime

        Raises:
            RuntimeUnavailable: If the runtime cannot be reached
        """
        labels: Dict[str, str] = {}
        try:
            labels = self.runtime.inspect_container(container_id).labels
        except ContainerNotFound:
            logger.info("container_already_removed", container_id=container_id)
        except RuntimeUnavailable:
            raise
        except OrchestratorError as e:
            logger.warning("container_inspect_failed", container_id=container_id, error=str(e))

        subdomain = labels.get(self.labels.subdomain) or subdomain
        port = _parse_port(labels.get(self.labels.port)) or port

        removed = True
        try:
            self.runtime.remove_container(container_id, force=True)
        except ContainerNotFound:
            pass
        except OrchestratorError as e:
            removed = False
            logger.error("container_remove_failed", container_id=container_id, error=str(e))

        if subdomain:
            self.route_sync.retract(subdomain)
        if port:
            self.port_allocator.release(port)

        logger.info("container_removed", container_id=container_id, subdomain=subdomain, port=port, removed=removed)
        return removed

    def _monitoring_data(self, info: ContainerInfo) -> MonitoringData:
        labels = info.labels
        status = status_from_state(info)
        return MonitoringData(
            container_id=info.id,
            owner_id=labels.get(self.labels.owner_id, ""),
            name=labels.get(self.labels.name, ""),
            template_type=labels.get(self.labels.database_type, ""),
            subdomain=labels.get(self.labels.subdomain, ""),
            port=_parse_port(labels.get(self.labels.port)),
            status=status,
            is_healthy=info.running,
            error_message=info.error,
        )

    def get_stats(self, container_id: str) -> Optional[MonitoringData]:
        """
        Get monitoring data for one container.

        Args:
            container_id: Container to inspect

        Returns:
            MonitoringData, or None if the runtime does not know the container
            or it lacks the managed labels
        """
        try:
            info = self.runtime.inspect_container(container_id)
        except ContainerNotFound:
            return None
        if not self.is_managed(info.labels):
            return None
        return self._monitoring_data(info)

    def get_all_stats(self) -> List[MonitoringData]:
        """Monitoring data for every managed container, running or stopped."""
        summaries = self.runtime.list_containers(all=True, labels=[self.labels.owner_id])

        stats = []
        for summary in summaries:
            if not self.is_managed(summary.labels):
                continue
            data = self.get_stats(summary.id)
            if data is not None:
                stats.append(data)
        return stats
