"""Container runtime client module."""

from .base import RuntimeClient
from .docker_client import DockerRuntimeClient
from .models import ContainerInfo, ContainerSpec, ContainerSummary, VolumeBinding

__all__ = [
    "RuntimeClient",
    "DockerRuntimeClient",
    "ContainerInfo",
    "ContainerSpec",
    "ContainerSummary",
    "VolumeBinding",
]
