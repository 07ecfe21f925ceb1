"""Reverse-proxy routing table maintenance."""

import os
import re
import shlex
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from threading import Lock, Thread
from typing import List, Optional

from ..config import Config
from ..utils.logging import get_logger
from .errors import RouteSyncFailed

logger = get_logger(__name__)

HEADER = [
    "# Dynamic upstream configuration file",
    "# This file is managed by the container orchestrator",
    "# Each line maps a subdomain pattern to a port number",
]

_LINE_RE = re.compile(r"^(?P<pattern>\S+)\s+(?P<port>\d+);$")


@dataclass(frozen=True)
class RouteEntry:
    pattern: str
    port: int

    def render(self) -> str:
        return f"{self.pattern} {self.port};"


class RouteSynchronizer:
    """Keeps the proxy's subdomain -> port table in line with running containers.

    The table is an nginx ``map`` include: one ``<pattern> <port>;`` line per
    subdomain under a fixed comment header. Every change rewrites the whole
    file so stale or duplicate entries cannot survive a crash.
    """

    def __init__(
        self,
        table_path: Optional[Path] = None,
        base_domain: Optional[str] = None,
        reload_command: Optional[str] = None,
        reload_timeout: Optional[int] = None,
    ):
        """
        Initialize route synchronizer.

        Args:
            table_path: Routing table file (defaults to Config.ROUTE_TABLE_PATH)
            base_domain: Domain subdomains live under (defaults to Config.BASE_DOMAIN)
            reload_command: Shell-style command that reloads the proxy; empty to only log
            reload_timeout: Seconds to wait for the reload command
        """
        self.table_path = Path(table_path or Config.ROUTE_TABLE_PATH)
        self.base_domain = base_domain or Config.BASE_DOMAIN
        self.reload_command = Config.PROXY_RELOAD_COMMAND if reload_command is None else reload_command
        self.reload_timeout = reload_timeout or Config.PROXY_RELOAD_TIMEOUT
        self._lock = Lock()

    def pattern_for(self, subdomain: str) -> str:
        """Regex server-name pattern matching exactly ``<subdomain>.<base_domain>``."""
        # Subdomains are already reduced to [a-z0-9-]
        domain = self.base_domain.replace(".", "\\.")
        return f"~^{subdomain}\\.{domain}$"

    def _read_entries(self) -> List[RouteEntry]:
        if not self.table_path.exists():
            return []

        entries = []
        with open(self.table_path, 'r', encoding='utf-8', errors='replace') as f:
            for raw in f:
                line = raw.strip()
                if not line or line.startswith("#"):
                    continue
                match = _LINE_RE.match(line)
                if match is None:
                    logger.warning("route_line_ignored", line=line, path=str(self.table_path))
                    continue
                entries.append(RouteEntry(match.group("pattern"), int(match.group("port"))))
        return entries

    def _write_entries(self, entries: List[RouteEntry]):
        content = "\n".join(HEADER) + "\n\n" + "".join(f"{e.render()}\n" for e in entries)
        try:
            self.table_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.table_path.parent, prefix=f".{self.table_path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    f.write(content)
                os.replace(tmp_path, self.table_path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise RouteSyncFailed(f"Failed to write routing table {self.table_path}: {e}") from e

    def _rewrite(self, subdomain: str, port: Optional[int]):
        pattern = self.pattern_for(subdomain)
        with self._lock:
            try:
                entries = [e for e in self._read_entries() if e.pattern != pattern]
            except (OSError, ValueError) as e:
                raise RouteSyncFailed(f"Failed to read routing table {self.table_path}: {e}") from e
            if port is not None:
                entries.append(RouteEntry(pattern, port))
            self._write_entries(entries)

    def publish(self, subdomain: str, port: int) -> None:
        """
        Map a subdomain to a host port, replacing any previous mapping.

        Failures are logged, never raised.

        Args:
            subdomain: Instance subdomain
            port: Host port the container is published on
        """
        try:
            self._rewrite(subdomain, port)
        except RouteSyncFailed as e:
            logger.error("route_publish_failed", subdomain=subdomain, port=port, error=str(e))
            return
        logger.info("route_published", subdomain=subdomain, port=port)
        self.reload()

    def retract(self, subdomain: str) -> None:
        """
        Drop the mapping for a subdomain. Failures are logged, never raised.

        Args:
            subdomain: Instance subdomain
        """
        try:
            self._rewrite(subdomain, None)
        except RouteSyncFailed as e:
            logger.error("route_retract_failed", subdomain=subdomain, error=str(e))
            return
        logger.info("route_retracted", subdomain=subdomain)
        self.reload()

    def reload(self) -> None:
        """Ask the proxy to reload its configuration (fire-and-forget).

        The reload command runs on a daemon thread; its outcome is only logged.
        """
        if not self.reload_command:
            logger.info("proxy_reload_requested", command=None)
            return

        Thread(target=self._run_reload, name="proxy-reload", daemon=True).start()

    def _run_reload(self) -> None:
        try:
            result = subprocess.run(
                shlex.split(self.reload_command),
                capture_output=True,
                text=True,
                timeout=self.reload_timeout,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.error("proxy_reload_failed", command=self.reload_command, error=str(e))
            return

        if result.returncode != 0:
            logger.error(
                "proxy_reload_failed",
                command=self.reload_command,
                returncode=result.returncode,
                stderr=result.stderr.strip(),
            )
            return
        logger.info("proxy_reloaded", command=self.reload_command)

    def entries(self) -> List[RouteEntry]:
        """Current table contents."""
        return self._read_entries()

    def lookup(self, subdomain: str) -> Optional[int]:
        """Port mapped for a subdomain, or None."""
        pattern = self.pattern_for(subdomain)
        for entry in self._read_entries():
            if entry.pattern == pattern:
                return entry.port
        return None
