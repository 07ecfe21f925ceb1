"""Pydantic models exchanged with the container runtime."""

from pydantic import BaseModel, Field
from typing import Dict, List, Optional


class VolumeBinding(BaseModel):
    """Named volume or host path mounted into a container."""

    source: str  # volume name or absolute host path
    target: str
    read_only: bool = False


class ContainerSpec(BaseModel):
    """Everything the runtime needs to create a container."""

    name: str = Field(..., min_length=1)
    image: str = Field(..., min_length=1)
    environment: Dict[str, str] = Field(default_factory=dict)
    port_bindings: Dict[str, int] = Field(
        default_factory=dict, description="'<container_port>/<proto>' -> host port"
    )
    volumes: List[VolumeBinding] = Field(default_factory=list)
    labels: Dict[str, str] = Field(default_factory=dict)
    restart_policy: str = "unless-stopped"


class ContainerInfo(BaseModel):
    """Inspect result for a single container."""

    id: str
    name: str = ""
    status: str = ""  # created|running|paused|restarting|removing|exited|dead
    running: bool = False
    dead: bool = False
    exit_code: Optional[int] = None
    error: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    published_ports: List[int] = Field(default_factory=list)


class ContainerSummary(BaseModel):
    """List entry for a container."""

    id: str
    name: str = ""
    status: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)
    published_ports: List[int] = Field(default_factory=list)
