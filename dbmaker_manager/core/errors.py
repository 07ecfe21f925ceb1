"""Error taxonomy for container provisioning."""

from typing import Optional


class OrchestratorError(RuntimeError):
    """Base class for all orchestrator failures."""


class UnknownTemplate(OrchestratorError):
    """Neither the template library nor the built-in table knows the key."""

    def __init__(self, template_key: str):
        super().__init__(f"Unknown database type: {template_key}")
        self.template_key = template_key


class PortExhausted(OrchestratorError):
    """No free port left in the configured range."""

    def __init__(self, start: int, end: int, tracked: int):
        super().__init__(
            f"No available ports in range {start}-{end}. Total tracked ports: {tracked}"
        )
        self.start = start
        self.end = end
        self.tracked = tracked


class RuntimeUnavailable(OrchestratorError):
    """The container runtime cannot be reached at all."""


class ContainerNotFound(OrchestratorError):
    """The runtime does not know the container."""

    def __init__(self, container_id: str):
        super().__init__(f"Container {container_id} not found")
        self.container_id = container_id


class RuntimeOperationError(OrchestratorError):
    """The runtime was reachable but rejected an operation."""


class CreateFailed(OrchestratorError):
    """The runtime rejected the container create call."""

    def __init__(self, container_name: str, reason: str, cause: Optional[BaseException] = None):
        super().__init__(f"Failed to create container {container_name}: {reason}")
        self.container_name = container_name
        self.cause = cause


class StartFailed(OrchestratorError):
    """The runtime rejected the container start call."""

    def __init__(self, container_name: str, reason: str, cause: Optional[BaseException] = None):
        super().__init__(f"Failed to start container {container_name}: {reason}")
        self.container_name = container_name
        self.cause = cause


class RouteSyncFailed(OrchestratorError):
    """Writing the proxy routing table failed."""
