"""Global configuration for the DbMaker container orchestrator."""

from pathlib import Path
import os


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


class Config:
    """Global application configuration.

    Every value can be overridden with the matching ``DBMAKER_*`` environment
    variable; values are read once at import time.
    """

    # Paths
    _PACKAGE_DIR = Path(__file__).parent
    _STATE_DIR = Path.home() / ".dbmaker"

    INSTANCES_ROOT = Path(_env_str("DBMAKER_INSTANCES_ROOT", str(_STATE_DIR / "instances")))
    TEMPLATES_ROOT = Path(_env_str("DBMAKER_TEMPLATES_ROOT", str(_PACKAGE_DIR / "templates")))

    # Naming
    PRODUCT_PREFIX = _env_str("DBMAKER_PRODUCT_PREFIX", "dbmaker")
    LABEL_PREFIX = _env_str("DBMAKER_LABEL_PREFIX", "dbmaker")

    # Port allocation
    PORT_RANGE_START = _env_int("DBMAKER_PORT_RANGE_START", 10000)
    PORT_RANGE_SIZE = _env_int("DBMAKER_PORT_RANGE_SIZE", 10000)
    BIND_HOST = _env_str("DBMAKER_BIND_HOST", "0.0.0.0")

    # Reverse proxy
    BASE_DOMAIN = _env_str("DBMAKER_BASE_DOMAIN", "dbmaker.local")
    PROXY_HTTP_PORT = _env_int("DBMAKER_PROXY_HTTP_PORT", 80)
    ROUTE_TABLE_PATH = Path(
        _env_str("DBMAKER_ROUTE_TABLE_PATH", str(_STATE_DIR / "nginx" / "dynamic-upstreams.conf"))
    )
    PROXY_RELOAD_COMMAND = os.getenv("DBMAKER_PROXY_RELOAD_COMMAND", "")
    PROXY_RELOAD_TIMEOUT = _env_int("DBMAKER_PROXY_RELOAD_TIMEOUT", 15)  # seconds

    # Docker
    SETTLE_DELAY = _env_float("DBMAKER_SETTLE_DELAY", 2.0)  # seconds
    STOP_TIMEOUT = _env_int("DBMAKER_STOP_TIMEOUT", 10)  # seconds
    REMOVE_UNSTARTED_CONTAINERS = _env_bool("DBMAKER_REMOVE_UNSTARTED_CONTAINERS", False)

    # Monitoring
    RECONCILE_INTERVAL = _env_int("DBMAKER_RECONCILE_INTERVAL", 30)  # seconds
    CLEANUP_INTERVAL = _env_int("DBMAKER_CLEANUP_INTERVAL", 3600)  # seconds
    INACTIVITY_DAYS = _env_int("DBMAKER_INACTIVITY_DAYS", 7)
    FAILED_RETENTION_DAYS = _env_int("DBMAKER_FAILED_RETENTION_DAYS", 30)

    # Logging
    LOG_LEVEL = _env_str("DBMAKER_LOG_LEVEL", "INFO")
    LOG_FORMAT = _env_str("DBMAKER_LOG_FORMAT", "console")  # console|json

    # UI
    STATUS_REFRESH_INTERVAL = _env_int("DBMAKER_STATUS_REFRESH_INTERVAL", 5)  # seconds

    @classmethod
    def validate(cls):
        """
        Validate configuration on startup.

        Raises:
            RuntimeUnavailable: If the Docker daemon cannot be reached
            RuntimeError: If configuration is invalid
        """
        if cls.PORT_RANGE_SIZE <= 0 or not (1024 <= cls.PORT_RANGE_START <= 65535):
            raise RuntimeError(
                f"Invalid port range start={cls.PORT_RANGE_START} size={cls.PORT_RANGE_SIZE}"
            )

        # Test Docker connection
        from .runtime import DockerRuntimeClient
        DockerRuntimeClient().ping()

        # Create state directories if they don't exist
        cls.INSTANCES_ROOT.mkdir(parents=True, exist_ok=True)
        cls.ROUTE_TABLE_PATH.parent.mkdir(parents=True, exist_ok=True)
