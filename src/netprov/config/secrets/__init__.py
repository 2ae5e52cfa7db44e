"""
Secret resolution with pluggable backend support.

Core backends (always available):
- Environment variables (NETPROV_SECRET_<NAME>, default)
- Credentials file (~/.netprov/credentials.yaml)

Optional backends (loaded on demand):
- GCP Secret Manager (requires google-cloud-secret-manager)

Secrets are exposed to the rest of the system as SecretRefs whose value is a
DeferredValue flagged ``secret``. ``resolve_all`` settles every reference
concurrently and fails the run with ConfigurationError, listing each missing
name, before any resource is touched.
"""

from __future__ import annotations

import asyncio
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Iterable

import structlog
import yaml
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from netprov.core.errors import ConfigurationError, TransientAPIError
from netprov.deferred import DeferredState, DeferredValue
from netprov.logging import register_secret

logger = structlog.get_logger()


def _sanitize_path(path: str) -> str:
    """Mask a secret name for logging, keeping only a short prefix."""
    if not path or len(path) <= 2:
        return "***"
    if "/" in path:
        return f"{path.split('/', 1)[0]}/***"
    return f"{path[:2]}***"


class SecretBackend(StrEnum):
    """Supported secret backends."""

    ENV = "env"
    FILE = "file"
    GCP = "gcp"


class SecretBackendUnavailableError(ConfigurationError):
    """A configured backend cannot be used (missing dependency or settings)."""

    def __init__(self, backend: str, reason: str):
        self.backend = backend
        self.reason = reason
        super().__init__(
            f"Secret backend '{backend}' is unavailable: {reason}",
            {"backend": backend},
        )


@dataclass
class SecretConfig:
    """Configuration for secrets resolution."""

    backend: SecretBackend = SecretBackend.ENV
    fallback: list[SecretBackend] = field(
        default_factory=lambda: [SecretBackend.ENV, SecretBackend.FILE]
    )
    strict: bool = False

    env_prefix: str = "NETPROV_SECRET_"

    # GCP config
    gcp_project_id: str | None = None
    gcp_secret_prefix: str = ""

    # File config
    credentials_file: Path = field(
        default_factory=lambda: Path.home() / ".netprov" / "credentials.yaml"
    )

    # Retry for transient backend errors
    retry_max_attempts: int = 5
    retry_backoff_multiplier: float = 2.0
    retry_backoff_min: float = 1.0
    retry_backoff_max: float = 30.0


class BaseSecretBackend(ABC):
    """Base class for secret backends."""

    @abstractmethod
    def get_secret(self, path: str) -> str | None:
        """Get a secret by name; None when absent."""

    @abstractmethod
    def list_secrets(self) -> list[str]:
        """List available secret names."""


class EnvSecretBackend(BaseSecretBackend):
    """Environment variable secret backend."""

    def __init__(self, prefix: str = "NETPROV_SECRET_"):
        self.prefix = prefix

    def get_secret(self, path: str) -> str | None:
        return os.environ.get(self._path_to_env(path))

    def list_secrets(self) -> list[str]:
        return [
            self._env_to_path(key) for key in os.environ if key.startswith(self.prefix)
        ]

    def _path_to_env(self, path: str) -> str:
        normalized = path.replace("/", "_").replace("-", "_").upper()
        return f"{self.prefix}{normalized}"

    def _env_to_path(self, env_key: str) -> str:
        return env_key[len(self.prefix) :].lower().replace("_", "-")


class FileSecretBackend(BaseSecretBackend):
    """File-based secret backend using credentials.yaml.

    Names may be flat (``riscvnet-faucet-key``) or slash-separated paths
    into nested mappings (``riscvnet/faucet-key``).
    """

    def __init__(self, credentials_file: Path):
        self.credentials_file = credentials_file
        self._cache: dict[str, Any] | None = None

    def _load_credentials(self) -> dict[str, Any]:
        if self._cache is not None:
            return self._cache

        if not self.credentials_file.exists():
            self._cache = {}
            return self._cache

        try:
            with open(self.credentials_file) as f:
                self._cache = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Cannot read credentials file {self.credentials_file}: {e}"
            ) from e
        return self._cache

    def get_secret(self, path: str) -> str | None:
        current: Any = self._load_credentials()
        for part in path.split("/"):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return None
        return str(current) if current is not None else None

    def list_secrets(self) -> list[str]:
        return self._flatten_keys(self._load_credentials())

    def _flatten_keys(self, data: dict, prefix: str = "") -> list[str]:
        keys = []
        for k, v in data.items():
            path = f"{prefix}/{k}" if prefix else k
            if isinstance(v, dict):
                keys.extend(self._flatten_keys(v, path))
            else:
                keys.append(path)
        return keys


def _load_cloud_backend(
    backend_type: SecretBackend, config: SecretConfig
) -> BaseSecretBackend | None:
    """Lazy-load a cloud backend. Returns None if dependencies are not installed."""
    try:
        if backend_type == SecretBackend.GCP:
            from netprov.config.secrets.backends import GCPSecretBackend

            return GCPSecretBackend(config)
    except ImportError as e:
        if config.strict:
            raise SecretBackendUnavailableError(backend_type, str(e)) from e
        logger.debug(f"{backend_type}_backend_unavailable", reason=str(e))
    return None


@dataclass(frozen=True)
class SecretRef:
    """A named reference to secret material."""

    name: str
    value: DeferredValue[str] = field(compare=False, repr=False)


class SecretResolver:
    """Resolves secrets from multiple backends with fallback support."""

    def __init__(self, config: SecretConfig | None = None):
        self.config = config or SecretConfig()
        self._backends: dict[SecretBackend, BaseSecretBackend] = {}
        self._refs: dict[str, SecretRef] = {}
        self._init_backends()

    def _init_backends(self) -> None:
        self._backends[SecretBackend.ENV] = EnvSecretBackend(self.config.env_prefix)
        self._backends[SecretBackend.FILE] = FileSecretBackend(self.config.credentials_file)

        if self.config.gcp_project_id:
            backend = _load_cloud_backend(SecretBackend.GCP, self.config)
            if backend:
                self._backends[SecretBackend.GCP] = backend
        elif self.config.strict and self.config.backend == SecretBackend.GCP:
            raise SecretBackendUnavailableError("gcp", "gcp_project_id is not set")

    @property
    def backends(self) -> list[SecretBackend]:
        return list(self._backends)

    def add_backend(self, name: SecretBackend, backend: BaseSecretBackend) -> None:
        self._backends[name] = backend

    def resolve(self, path: str) -> str | None:
        """Resolve a secret by name from the primary backend, then fallbacks."""
        if self.config.backend in self._backends:
            value = self._backends[self.config.backend].get_secret(path)
            if value is not None:
                return value

        for fallback in self.config.fallback:
            if fallback in self._backends and fallback != self.config.backend:
                value = self._backends[fallback].get_secret(path)
                if value is not None:
                    logger.debug(
                        "secret_resolved_from_fallback",
                        path=_sanitize_path(path),
                        backend=str(fallback),
                    )
                    return value

        return None

    def ref(self, name: str) -> SecretRef:
        """Return the (cached) reference for ``name``; resolution is deferred."""
        if name not in self._refs:
            self._refs[name] = SecretRef(
                name=name,
                value=DeferredValue(label=f"secret:{name}", secret=True),
            )
        return self._refs[name]

    def resolve_deferred(self, name: str) -> DeferredValue[str]:
        """Shorthand for ``ref(name).value``."""
        return self.ref(name).value

    @property
    def refs(self) -> list[SecretRef]:
        return list(self._refs.values())

    async def _resolve_retrying(self, name: str) -> str | None:
        """Resolve in a worker thread, retrying transient backend errors."""
        config = self.config

        def _before_sleep(state: Any) -> None:
            logger.warning(
                "secret_backend_retry",
                path=_sanitize_path(name),
                attempt=state.attempt_number,
            )

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientAPIError),
            stop=stop_after_attempt(config.retry_max_attempts),
            wait=wait_exponential(
                multiplier=config.retry_backoff_multiplier,
                min=config.retry_backoff_min,
                max=config.retry_backoff_max,
            ),
            before_sleep=_before_sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                value = await asyncio.to_thread(self.resolve, name)
        return value

    async def _settle(self, ref: SecretRef) -> None:
        if ref.value.done():
            return
        try:
            value = await self._resolve_retrying(ref.name)
        except Exception as exc:
            ref.value.fail(exc)
            return
        if ref.value.done():
            return
        if value is None:
            ref.value.fail(ConfigurationError(f"Secret '{ref.name}' not found"))
        else:
            register_secret(value)
            ref.value.resolve(value)

    async def resolve_all(self, refs: Iterable[SecretRef] | None = None) -> None:
        """Settle every reference; raise ConfigurationError if any is missing or unreadable."""
        targets = list(refs) if refs is not None else self.refs
        await asyncio.gather(*(self._settle(ref) for ref in targets))

        failed = [ref for ref in targets if ref.value.state is DeferredState.FAILED]
        if failed:
            unavailable = sorted(
                ref.name for ref in failed if isinstance(ref.value.error, TransientAPIError)
            )
            missing = sorted(ref.name for ref in failed if ref.name not in unavailable)
            reasons = []
            if missing:
                reasons.append(f"not found: {', '.join(missing)}")
            if unavailable:
                reasons.append(
                    f"backend unavailable after {self.config.retry_max_attempts} attempts: "
                    f"{', '.join(unavailable)}"
                )
            raise ConfigurationError(
                f"Required secrets could not be resolved ({'; '.join(reasons)})",
                {
                    "secrets": sorted(ref.name for ref in failed),
                    "missing": missing,
                    "unavailable": unavailable,
                },
            )
        logger.info("secrets_resolved", count=len(targets))

    def verify_secrets(self, paths: list[str]) -> dict[str, bool]:
        """Report which secrets exist without exposing their values."""
        return {path: self.resolve(path) is not None for path in paths}


__all__ = [
    "SecretBackend",
    "SecretBackendUnavailableError",
    "SecretConfig",
    "SecretRef",
    "BaseSecretBackend",
    "EnvSecretBackend",
    "FileSecretBackend",
    "SecretResolver",
    "_sanitize_path",
]
