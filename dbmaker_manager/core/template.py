"""Template resolution for creating new database instances."""

import re
import yaml
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

from ..config import Config
from ..utils.logging import get_logger
from .errors import UnknownTemplate
from .instance import DatabaseTemplate, PortMapping, VolumeMapping

logger = get_logger(__name__)

TEMPLATE_KEY_RE = re.compile(r"^[a-z0-9][a-z0-9._-]{0,63}$")


def parse_template_key(raw: str) -> Tuple[str, Optional[str]]:
    """
    Split an optional version hint off a template key.

    ``postgresql@16-alpine`` and ``postgresql:16-alpine`` both yield
    ``("postgresql", "16-alpine")``; ``@`` wins when both are present.

    Args:
        raw: Template key as requested by the caller

    Returns:
        Tuple of (template key, version or None)
    """
    raw = raw.strip()
    for separator in ("@", ":"):
        if separator in raw:
            key, version = raw.split(separator, 1)
            return key, (version or None)
    return raw, None


class TemplateResolver(Protocol):
    """External template library lookup."""

    def resolve(self, key: str, version: Optional[str] = None) -> Optional[DatabaseTemplate]: ...


# Consulted only when the template library has no answer.
BUILTIN_TEMPLATES: Dict[str, DatabaseTemplate] = {
    "redis": DatabaseTemplate(
        type="redis",
        display_name="Redis",
        description="In-memory data structure store",
        docker_image="redis:7-alpine",
        ports=[PortMapping(container_port=6379)],
        default_configuration={
            "maxmemory": "256mb",
            "maxmemory-policy": "allkeys-lru",
        },
    ),
    "postgresql": DatabaseTemplate(
        type="postgresql",
        display_name="PostgreSQL",
        description="Advanced open source relational database",
        docker_image="postgres:16-alpine",
        ports=[PortMapping(container_port=5432)],
        default_environment={
            "POSTGRES_DB": "userdb",
            "POSTGRES_USER": "admin",
            "POSTGRES_PASSWORD": "secure_password_123",
        },
        volumes=[VolumeMapping(container_path="/var/lib/postgresql/data")],
    ),
}


class FileTemplateResolver:
    """Reads the template library from a directory of YAML files.

    Layout::

        <root>/<key>/template.yaml           display_name, description, is_enabled, latest_version
        <root>/<key>/versions/<version>.yaml docker_image, ports, volumes, default_environment, ...
    """

    def __init__(self, templates_root: Optional[Path] = None):
        """
        Initialize resolver.

        Args:
            templates_root: Library directory (defaults to Config.TEMPLATES_ROOT)
        """
        self.templates_root = Path(templates_root or Config.TEMPLATES_ROOT)

    def _load_yaml(self, path: Path) -> dict:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a mapping")
        return data

    def list_templates(self) -> List[str]:
        """List the keys of all templates in the library."""
        if not self.templates_root.is_dir():
            return []
        return sorted(
            d.name for d in self.templates_root.iterdir()
            if d.is_dir() and (d / "template.yaml").exists()
        )

    def _version_file(self, template_dir: Path, version: Optional[str]) -> Optional[Path]:
        versions_dir = template_dir / "versions"
        if not versions_dir.is_dir():
            return None

        if version:
            candidate = versions_dir / f"{version}.yaml"
            return candidate if candidate.exists() else None

        # Most recently written version wins when no latest_version is declared
        files = sorted(versions_dir.glob("*.yaml"), key=lambda p: p.stat().st_mtime, reverse=True)
        return files[0] if files else None

    def resolve(self, key: str, version: Optional[str] = None) -> Optional[DatabaseTemplate]:
        """
        Resolve a template from the library.

        Args:
            key: Template key, e.g. ``postgresql``
            version: Optional version, e.g. ``16-alpine`` (defaults to latest)

        Returns:
            DatabaseTemplate or None if the library has no such enabled template
        """
        if not TEMPLATE_KEY_RE.match(key) or (version and not TEMPLATE_KEY_RE.match(version)):
            return None

        template_dir = self.templates_root / key
        meta_path = template_dir / "template.yaml"
        if not meta_path.exists():
            return None

        meta = self._load_yaml(meta_path)
        if not meta.get("is_enabled", True):
            return None

        version_path = self._version_file(template_dir, version or meta.get("latest_version"))
        if version_path is None:
            return None
        vmeta = self._load_yaml(version_path)

        return DatabaseTemplate(
            type=key,
            display_name=meta.get("display_name") or key,
            description=meta.get("description") or "",
            version=str(vmeta.get("version") or version_path.stem),
            docker_image=vmeta["docker_image"],
            ports=vmeta.get("ports") or [],
            volumes=vmeta.get("volumes") or [],
            default_environment={
                str(k): str(v) for k, v in (vmeta.get("default_environment") or {}).items()
            },
            default_configuration=vmeta.get("default_configuration") or {},
            connection_string_template=vmeta.get("connection_string_template") or None,
        )


@dataclass(frozen=True)
class ResolvedTemplate:
    key: str
    version: Optional[str]
    template: DatabaseTemplate
    source: str  # library|builtin


class TemplateManager:
    """Resolves templates and derives per-instance environment and connection strings."""

    def __init__(
        self,
        resolver: Optional[TemplateResolver] = None,
        builtin_templates: Optional[Dict[str, DatabaseTemplate]] = None,
        base_domain: Optional[str] = None,
        http_port: Optional[int] = None,
    ):
        """
        Initialize template manager.

        Args:
            resolver: Template library (None disables the library tier)
            builtin_templates: Fallback table (defaults to BUILTIN_TEMPLATES)
            base_domain: Domain the proxy serves subdomains under
            http_port: Port the proxy listens on
        """
        self.resolver = resolver
        self.builtin_templates = BUILTIN_TEMPLATES if builtin_templates is None else builtin_templates
        self.base_domain = base_domain or Config.BASE_DOMAIN
        self.http_port = http_port if http_port is not None else Config.PROXY_HTTP_PORT

    def _from_library(self, key: str, version: Optional[str]) -> Optional[DatabaseTemplate]:
        if self.resolver is None:
            return None
        try:
            return self.resolver.resolve(key, version)
        except Exception as e:
            # An unreachable or broken library is treated as a miss
            logger.warning("template_library_unavailable", key=key, version=version, error=str(e))
            return None

    def _from_builtin(self, key: str) -> Optional[DatabaseTemplate]:
        return self.builtin_templates.get(key)

    def resolve(self, raw_key: str) -> ResolvedTemplate:
        """
        Resolve a template key with optional version hint.

        The template library is consulted first; the built-in table only on a miss.

        Args:
            raw_key: Key as requested, e.g. ``postgresql@16-alpine``

        Returns:
            ResolvedTemplate

        Raises:
            UnknownTemplate: If neither tier knows the key
        """
        key, version = parse_template_key(raw_key)

        template = self._from_library(key, version)
        if template is not None:
            return ResolvedTemplate(key=key, version=template.version or version, template=template, source="library")

        logger.warning(
            "template_not_in_library",
            key=key,
            version=version,
            fallback=key in self.builtin_templates,
        )
        template = self._from_builtin(key)
        if template is None:
            raise UnknownTemplate(raw_key)
        return ResolvedTemplate(key=key, version=version, template=template, source="builtin")

    def available_templates(self) -> List[str]:
        """Keys resolvable through either tier."""
        keys = set(self.builtin_templates)
        list_templates = getattr(self.resolver, "list_templates", None)
        if list_templates is not None:
            keys.update(list_templates())
        return sorted(keys)

    def build_environment(
        self,
        template_key: str,
        template: DatabaseTemplate,
        name: str,
        overrides: Optional[Dict[str, str]] = None,
    ) -> Dict[str, str]:
        """
        Merge template defaults with caller overrides (overrides win).

        Args:
            template_key: Resolved template key
            template: Resolved template
            name: Logical instance name
            overrides: Caller-supplied configuration

        Returns:
            Environment for the container
        """
        environment = dict(template.default_environment)
        for key, value in (overrides or {}).items():
            environment[key] = str(value)

        if template_key == "postgresql" and "POSTGRES_DB" not in (overrides or {}):
            environment["POSTGRES_DB"] = name

        return environment

    def host_for(self, subdomain: str) -> str:
        return f"{subdomain}.{self.base_domain}"

    def render_connection_string(
        self,
        template: DatabaseTemplate,
        port: int,
        environment: Dict[str, str],
        subdomain: str,
    ) -> str:
        """
        Build the client connection string for an instance.

        Args:
            template: Resolved template
            port: Reserved host port
            environment: Merged container environment
            subdomain: Instance subdomain

        Returns:
            Connection string
        """
        host = self.host_for(subdomain)

        if template.connection_string_template and template.connection_string_template.strip():
            cs = template.connection_string_template
            cs = (
                cs.replace("{HOST_PORT}", str(port))
                .replace("{SUBDOMAIN}", subdomain)
                .replace("{HOST}", host)
                .replace("{HTTP_PORT}", str(self.http_port))
            )
            for key, value in environment.items():
                cs = cs.replace("{" + key + "}", value)
            return cs

        if template.type == "redis":
            return f"redis://{host}:{self.http_port}"
        if template.type == "postgresql":
            user = environment.get("POSTGRES_USER", "admin")
            password = environment.get("POSTGRES_PASSWORD", "password")
            database = environment.get("POSTGRES_DB", "userdb")
            return f"postgresql://{user}:{password}@{host}:{self.http_port}/{database}"
        return f"{template.type}://{host}:{self.http_port}"
