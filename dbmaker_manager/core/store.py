"""Instance record persistence."""

import json
import shutil
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, Protocol

from pydantic import ValidationError

from ..config import Config
from ..utils.logging import get_logger
from .instance import Instance

logger = get_logger(__name__)


class InstanceStore(Protocol):
    """Persistence for Instance records, owned outside the orchestrator."""

    def list_instances(self) -> List[Instance]: ...

    def get(self, instance_id: str) -> Optional[Instance]: ...

    def save(self, instance: Instance) -> None: ...

    def delete(self, instance_id: str) -> None: ...


class JsonInstanceStore:
    """Stores each instance as ``<root>/<instance_id>/metadata.json``."""

    def __init__(self, instances_root: Optional[Path] = None):
        """
        Initialize store.

        Args:
            instances_root: Root directory for instances (defaults to Config.INSTANCES_ROOT)
        """
        self.instances_root = Path(instances_root or Config.INSTANCES_ROOT)
        self.instances_root.mkdir(parents=True, exist_ok=True)

        self._lock = Lock()
        self.instances: Dict[str, Instance] = {}
        self._load_instances()

    def _load_instances(self):
        """Load all instances from disk."""
        for instance_dir in self.instances_root.iterdir():
            metadata_path = instance_dir / "metadata.json"
            if not (instance_dir.is_dir() and metadata_path.exists()):
                continue
            try:
                instance = self._read_metadata(metadata_path)
            except (OSError, ValueError, ValidationError) as e:
                # Skip instances with invalid metadata
                logger.warning("instance_metadata_unreadable", path=str(metadata_path), error=str(e))
                continue
            self.instances[instance.id] = instance

        logger.debug("instances_loaded", count=len(self.instances), root=str(self.instances_root))

    def list_instances(self) -> List[Instance]:
        with self._lock:
            return [i.model_copy(deep=True) for i in self.instances.values()]

    def get(self, instance_id: str) -> Optional[Instance]:
        with self._lock:
            instance = self.instances.get(instance_id)
            return instance.model_copy(deep=True) if instance else None

    def save(self, instance: Instance) -> None:
        """
        Save instance metadata to JSON.

        Args:
            instance: Instance to save
        """
        with self._lock:
            instance_dir = self.instances_root / instance.id
            instance_dir.mkdir(parents=True, exist_ok=True)
            with open(instance_dir / "metadata.json", 'w') as f:
                json.dump(instance.model_dump(mode='json'), f, indent=2)
            self.instances[instance.id] = instance.model_copy(deep=True)

    def delete(self, instance_id: str) -> None:
        with self._lock:
            self.instances.pop(instance_id, None)
            instance_dir = self.instances_root / instance_id
            if instance_dir.exists():
                shutil.rmtree(instance_dir)

    def _read_metadata(self, metadata_path: Path) -> Instance:
        with open(metadata_path, 'r') as f:
            return Instance.model_validate(json.load(f))
