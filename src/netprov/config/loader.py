"""
Stack file and template loading.

Stack file search order:
1. Explicit path (--config flag)
2. ./netprov.yaml (project root)
3. ~/.netprov/config.yaml (user home)
4. Defaults (NETPROV_* environment only)

A stack file has two optional sections::

    stack:
      gcp_project: jstz-dev-dbc1
      gcp_region: europe-west2
    secrets:
      backend: gcp
      fallback: [env, file]
      gcp:
        project_id: jstz-dev-dbc1

Templates are read once into immutable ConfigDocument snapshots; a loader
never goes back to disk for a template it has already returned.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from netprov.config.document import ConfigDocument
from netprov.config.secrets import SecretBackend, SecretConfig
from netprov.config.settings import Settings
from netprov.core.errors import ConfigurationError

logger = structlog.get_logger()


def get_config_path(explicit_path: str | Path | None = None) -> Path | None:
    """
    Find the stack file to use.

    Returns:
        Path to the stack file or None if not found

    Raises:
        ConfigurationError: an explicit path was given but does not exist
    """
    if explicit_path:
        path = Path(explicit_path)
        if not path.exists():
            raise ConfigurationError(f"Stack file not found: {path}", {"path": str(path)})
        return path

    cwd_config = Path.cwd() / "netprov.yaml"
    if cwd_config.exists():
        return cwd_config

    home_config = Path.home() / ".netprov" / "config.yaml"
    if home_config.exists():
        return home_config

    return None


def get_credentials_path() -> Path:
    """Get the credentials file path."""
    return Path.home() / ".netprov" / "credentials.yaml"


def read_yaml(path: Path) -> Any:
    """Parse a YAML file, mapping I/O and syntax problems to ConfigurationError."""
    try:
        with open(path) as f:
            return yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"File not found: {path}", {"path": str(path)}) from e
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot parse {path}: {e}", {"path": str(path)}) from e


class ConfigLoader:
    """Loads stack settings and secrets configuration from a stack file."""

    def __init__(self, config_path: Path | None = None):
        self.config_path = config_path
        self.credentials_path = get_credentials_path()
        self._data: dict[str, Any] | None = None

    def _raw(self) -> dict[str, Any]:
        if self._data is None:
            if self.config_path is None:
                self._data = {}
            else:
                data = read_yaml(self.config_path) or {}
                if not isinstance(data, dict):
                    raise ConfigurationError(f"Stack file {self.config_path} must be a mapping")
                self._data = data
                logger.debug("loaded_stack_file", path=str(self.config_path))
        return self._data

    def load_settings(self, **overrides: Any) -> Settings:
        """Build Settings from the ``stack`` section, env and explicit overrides."""
        values = dict(self._raw().get("stack") or {})
        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return Settings(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid stack settings: {e}") from e

    def load_secrets_config(self) -> SecretConfig:
        """Parse the ``secrets`` section of the stack file."""
        data = self._raw().get("secrets") or {}
        try:
            backend = SecretBackend(data.get("backend", "env"))
            fallback = [SecretBackend(fb) for fb in data.get("fallback", ["env", "file"])]
        except ValueError as e:
            raise ConfigurationError(f"Unknown secret backend: {e}") from e

        gcp = data.get("gcp", {})
        # Backend retries follow the engine tunables
        settings = self.load_settings()
        return SecretConfig(
            backend=backend,
            fallback=fallback,
            strict=bool(data.get("strict", False)),
            env_prefix=data.get("env_prefix", "NETPROV_SECRET_"),
            gcp_project_id=gcp.get("project_id"),
            gcp_secret_prefix=gcp.get("secret_prefix", ""),
            credentials_file=Path(data.get("credentials_file", str(self.credentials_path))),
            retry_max_attempts=settings.retry_max_attempts,
            retry_backoff_multiplier=settings.retry_backoff_multiplier,
            retry_backoff_min=settings.retry_backoff_min,
            retry_backoff_max=settings.retry_backoff_max,
        )


class TemplateLoader:
    """Reads template documents from a directory as immutable snapshots."""

    def __init__(self, templates_dir: Path):
        self.templates_dir = Path(templates_dir)
        self._snapshots: dict[str, ConfigDocument] = {}

    def load(self, name: str) -> ConfigDocument:
        if name not in self._snapshots:
            path = self.templates_dir / name
            data = read_yaml(path)
            self._snapshots[name] = ConfigDocument(data or {}, source=str(path))
            logger.debug("loaded_template", path=str(path))
        return self._snapshots[name]


def load_settings(path: str | Path | None = None, **overrides: Any) -> Settings:
    """Convenience function to load stack settings."""
    return ConfigLoader(get_config_path(path)).load_settings(**overrides)


def load_secrets_config(path: str | Path | None = None) -> SecretConfig:
    """Convenience function to load secrets configuration."""
    return ConfigLoader(get_config_path(path)).load_secrets_config()
