"""
Cloud secret backends - lazy loaded when needed.

These backends require additional dependencies:
- GCPSecretBackend: google-cloud-secret-manager
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from google.api_core import exceptions as gcp_exceptions
from google.cloud import secretmanager

from netprov.config.secrets import BaseSecretBackend, _sanitize_path
from netprov.core.errors import TransientAPIError

if TYPE_CHECKING:
    from netprov.config.secrets import SecretConfig

logger = structlog.get_logger()

_TRANSIENT = (
    gcp_exceptions.ServiceUnavailable,
    gcp_exceptions.DeadlineExceeded,
    gcp_exceptions.TooManyRequests,
    gcp_exceptions.InternalServerError,
)


def _sanitize_error(exc: Exception) -> str:
    """Sanitize error message to avoid leaking sensitive details."""
    return type(exc).__name__


class GCPSecretBackend(BaseSecretBackend):
    """Google Cloud Secret Manager backend.

    Secret ``riscvnet-faucet-key`` maps to
    ``projects/<project>/secrets/<prefix>riscvnet-faucet-key/versions/latest``.
    """

    def __init__(self, config: "SecretConfig", client: secretmanager.SecretManagerServiceClient | None = None):
        self.config = config
        self._client = client

    def _get_client(self) -> secretmanager.SecretManagerServiceClient:
        if self._client is None:
            self._client = secretmanager.SecretManagerServiceClient()
        return self._client

    def _path_to_secret_name(self, path: str) -> str:
        return f"{self.config.gcp_secret_prefix}{path.replace('/', '-').replace('_', '-')}"

    def get_secret(self, path: str) -> str | None:
        client = self._get_client()
        secret_path = (
            f"projects/{self.config.gcp_project_id}/secrets/"
            f"{self._path_to_secret_name(path)}/versions/latest"
        )
        try:
            response = client.access_secret_version(request={"name": secret_path})
        except gcp_exceptions.NotFound:
            logger.debug("gcp_secret_not_found", path=_sanitize_path(path))
            return None
        except _TRANSIENT as e:
            raise TransientAPIError(
                f"Secret Manager unavailable while reading {_sanitize_path(path)}",
                {"error": _sanitize_error(e)},
            ) from e
        return response.payload.data.decode("UTF-8")

    def list_secrets(self) -> list[str]:
        client = self._get_client()
        parent = f"projects/{self.config.gcp_project_id}"
        secrets = []
        for secret in client.list_secrets(request={"parent": parent}):
            name = secret.name.split("/")[-1]
            if name.startswith(self.config.gcp_secret_prefix):
                secrets.append(name[len(self.config.gcp_secret_prefix) :])
        return secrets


__all__ = ["GCPSecretBackend"]
