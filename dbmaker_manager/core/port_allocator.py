"""Port allocation manager to prevent host port conflicts across containers."""

import socket
from threading import Lock
from typing import Optional, Set

from ..config import Config
from ..runtime.base import RuntimeClient
from ..utils.logging import get_logger
from .errors import OrchestratorError, PortExhausted

logger = get_logger(__name__)


class PortAllocator:
    """Hands out host TCP ports that no other process or container is using.

    Reservations live in memory for the lifetime of the process. Ports
    published by containers this process did not create are absorbed from the
    runtime before every reservation.
    """

    def __init__(
        self,
        runtime: RuntimeClient,
        range_start: Optional[int] = None,
        range_size: Optional[int] = None,
        bind_host: Optional[str] = None,
    ):
        """
        Initialize port allocator.

        Args:
            runtime: Runtime client used to discover published ports
            range_start: First port of the range (defaults to Config.PORT_RANGE_START)
            range_size: Width of the range (defaults to Config.PORT_RANGE_SIZE)
            bind_host: Address used for the bind probe (defaults to Config.BIND_HOST)
        """
        self.runtime = runtime
        self.range_start = range_start if range_start is not None else Config.PORT_RANGE_START
        self.range_size = range_size if range_size is not None else Config.PORT_RANGE_SIZE
        self.bind_host = bind_host or Config.BIND_HOST

        self._lock = Lock()
        self._reserved: Set[int] = set()

    @property
    def range_end(self) -> int:
        """Last port of the range (inclusive)."""
        return self.range_start + self.range_size - 1

    def _can_bind(self, port: int) -> bool:
        """
        Check if some OS process is already listening on the port.

        Args:
            port: Port number to check

        Returns:
            True if a listener could be bound and released, False otherwise
        """
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
                sock.settimeout(1)
                sock.bind((self.bind_host, port))
            return True
        except OSError:
            return False

    def _refresh_locked(self) -> None:
        try:
            containers = self.runtime.list_containers(all=True)
        except OrchestratorError as e:
            logger.warning("runtime_port_scan_failed", error=str(e))
            return

        published = set()
        for container in containers:
            for port in container.published_ports:
                if port >= self.range_start:
                    published.add(port)
        self._reserved.update(published)
        logger.debug("runtime_ports_absorbed", count=len(published))

    def refresh(self):
        """Mark every port published by a runtime container as reserved."""
        with self._lock:
            self._refresh_locked()

    def reserve(self) -> int:
        """
        Reserve the first free port in the range.

        Returns:
            Reserved port number

        Raises:
            PortExhausted: If no port in the range is free
        """
        with self._lock:
            self._refresh_locked()
            logger.debug(
                "port_search_started", start=self.range_start, tracked=len(self._reserved)
            )

            for port in range(self.range_start, self.range_start + self.range_size):
                # Includes ports published by runtime containers
                if port in self._reserved:
                    continue

                if not self._can_bind(port):
                    # In use by some OS process
                    self._reserved.add(port)
                    logger.debug("port_in_use_by_system", port=port)
                    continue

                self._reserved.add(port)
                logger.info("port_reserved", port=port)
                return port

            error = PortExhausted(self.range_start, self.range_end, len(self._reserved))
            logger.error("port_range_exhausted", start=self.range_start, end=self.range_end)
            raise error

    def release(self, port: int):
        """
        Release a reserved port. Releasing an unreserved port is a no-op.

        Args:
            port: Port to release
        """
        with self._lock:
            if port in self._reserved:
                self._reserved.discard(port)
                logger.info("port_released", port=port)

    def is_reserved(self, port: int) -> bool:
        return port in self._reserved

    def reserved_count(self) -> int:
        return len(self._reserved)

    def get_reserved_ports(self) -> Set[int]:
        """Get set of all currently reserved ports."""
        with self._lock:
            return set(self._reserved)
