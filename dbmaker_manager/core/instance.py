"""Data models for database instance provisioning."""

import uuid
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InstanceStatus(str, Enum):
    """Lifecycle status of a provisioned database instance."""
    CREATING = "creating"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"
    REMOVING = "removing"


class PortMapping(BaseModel):
    """Container port exposed by a template."""
    container_port: int = Field(..., ge=1, le=65535)
    protocol: str = Field("tcp", pattern=r"^(tcp|udp|sctp)$")


class VolumeMapping(BaseModel):
    """Volume mounted into a template's container."""
    container_path: str = Field(..., min_length=1)
    host_path: Optional[str] = Field(None, description="Bind-mount host path; named volume when empty")
    read_only: bool = False


class DatabaseTemplate(BaseModel):
    """Recipe for running one database engine."""
    model_config = ConfigDict(frozen=True)

    type: str = Field(..., min_length=1, description="Template key, e.g. postgresql")
    display_name: str = ""
    description: str = ""
    version: Optional[str] = None
    docker_image: str = Field(..., min_length=1)
    ports: List[PortMapping] = Field(..., min_length=1)
    volumes: List[VolumeMapping] = Field(default_factory=list)
    default_environment: Dict[str, str] = Field(default_factory=dict)
    default_configuration: Dict[str, Any] = Field(default_factory=dict)
    connection_string_template: Optional[str] = None
    is_enabled: bool = True


class Instance(BaseModel):
    """A tenant-owned database instance and its container."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    template_type: str = Field(..., min_length=1)
    template_version: Optional[str] = None

    container_name: str = ""
    container_id: str = ""
    port: int = 0
    connection_string: str = ""
    subdomain: str = ""

    status: InstanceStatus = Field(default=InstanceStatus.CREATING)
    configuration: Dict[str, str] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=utc_now)
    last_accessed_at: datetime = Field(default_factory=utc_now)


class MonitoringData(BaseModel):
    """Point-in-time view of a managed container.

    Resource figures stay at zero until a metrics pipeline exists.
    """
    container_id: str
    owner_id: str = ""
    name: str = ""
    template_type: str = ""
    subdomain: str = ""
    port: Optional[int] = None
    status: InstanceStatus
    cpu_usage: float = 0.0
    memory_usage: int = 0
    memory_limit: int = 0
    network_io: Dict[str, int] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)
    is_healthy: bool = True
    error_message: Optional[str] = None
