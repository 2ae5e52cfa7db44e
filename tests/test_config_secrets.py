"""Tests for config/secrets.

Tests for secret backends, fallback resolution and deferred secret refs.
"""

from unittest.mock import MagicMock

import pytest
from fakes import DictSecretBackend
from google.api_core import exceptions as gcp_exceptions

from netprov.config.secrets import (
    EnvSecretBackend,
    FileSecretBackend,
    SecretBackend,
    SecretBackendUnavailableError,
    SecretConfig,
    SecretResolver,
    _sanitize_path,
)
from netprov.config.secrets.backends import GCPSecretBackend
from netprov.core.errors import ConfigurationError, TransientAPIError
from netprov.deferred import DeferredState

NO_WAIT = {"retry_backoff_multiplier": 0.0, "retry_backoff_min": 0.0, "retry_backoff_max": 0.0}


class UnavailableSecretBackend(DictSecretBackend):
    """Raises TransientAPIError for the first ``outages`` lookups."""

    def __init__(self, secrets: dict[str, str], outages: int) -> None:
        super().__init__(secrets)
        self.outages = outages

    def get_secret(self, path: str) -> str | None:
        self.lookups.append(path)
        if self.outages > 0:
            self.outages -= 1
            raise TransientAPIError("Secret Manager unavailable")
        return self.secrets.get(path)


class TestSanitizePath:
    """Tests for _sanitize_path helper."""

    def test_empty_path(self):
        assert _sanitize_path("") == "***"

    def test_short_path(self):
        assert _sanitize_path("ab") == "***"

    def test_path_with_segments(self):
        assert _sanitize_path("riscvnet/faucet-key") == "riscvnet/***"

    def test_simple_path(self):
        assert _sanitize_path("riscvnet-faucet-key") == "ri***"


class TestEnvSecretBackend:
    """Tests for EnvSecretBackend."""

    def test_name_to_env_var(self, monkeypatch):
        monkeypatch.setenv("NETPROV_SECRET_RISCVNET_FAUCET_KEY", "edsk-faucet")
        assert EnvSecretBackend().get_secret("riscvnet-faucet-key") == "edsk-faucet"

    def test_missing(self, monkeypatch):
        monkeypatch.delenv("NETPROV_SECRET_NOPE", raising=False)
        assert EnvSecretBackend().get_secret("nope") is None

    def test_list(self, monkeypatch):
        monkeypatch.setenv("TEST_PREFIX_RISCVNET_ACTIVATOR_KEY", "x")
        assert EnvSecretBackend("TEST_PREFIX_").list_secrets() == ["riscvnet-activator-key"]


class TestFileSecretBackend:
    """Tests for FileSecretBackend."""

    def test_flat_and_nested(self, tmp_path):
        credentials = tmp_path / "credentials.yaml"
        credentials.write_text(
            "riscvnet-faucet-key: edsk-faucet\nriscvnet:\n  activator-key: edsk-activator\n"
        )
        backend = FileSecretBackend(credentials)
        assert backend.get_secret("riscvnet-faucet-key") == "edsk-faucet"
        assert backend.get_secret("riscvnet/activator-key") == "edsk-activator"
        assert backend.get_secret("riscvnet/missing") is None
        assert sorted(backend.list_secrets()) == ["riscvnet-faucet-key", "riscvnet/activator-key"]

    def test_missing_file(self, tmp_path):
        assert FileSecretBackend(tmp_path / "none.yaml").get_secret("x") is None

    def test_malformed_file(self, tmp_path):
        credentials = tmp_path / "credentials.yaml"
        credentials.write_text("key: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Cannot read credentials"):
            FileSecretBackend(credentials).get_secret("key")


class TestGCPSecretBackend:
    """Tests for GCPSecretBackend with a mocked client."""

    def _backend(self, client):
        config = SecretConfig(gcp_project_id="jstz-dev-dbc1", gcp_secret_prefix="dev-")
        return GCPSecretBackend(config, client=client)

    def test_reads_latest_version(self):
        client = MagicMock()
        client.access_secret_version.return_value.payload.data = b"edsk-faucet"
        assert self._backend(client).get_secret("riscvnet-faucet-key") == "edsk-faucet"
        client.access_secret_version.assert_called_once_with(
            request={
                "name": "projects/jstz-dev-dbc1/secrets/dev-riscvnet-faucet-key/versions/latest"
            }
        )

    def test_not_found(self):
        client = MagicMock()
        client.access_secret_version.side_effect = gcp_exceptions.NotFound("gone")
        assert self._backend(client).get_secret("riscvnet-faucet-key") is None

    def test_unavailable_is_transient(self):
        client = MagicMock()
        client.access_secret_version.side_effect = gcp_exceptions.ServiceUnavailable("down")
        with pytest.raises(TransientAPIError):
            self._backend(client).get_secret("riscvnet-faucet-key")

    def test_list_strips_prefix(self):
        client = MagicMock()
        secret = MagicMock()
        secret.name = "projects/jstz-dev-dbc1/secrets/dev-riscvnet-faucet-key"
        other = MagicMock()
        other.name = "projects/jstz-dev-dbc1/secrets/prod-thing"
        client.list_secrets.return_value = [secret, other]
        assert self._backend(client).list_secrets() == ["riscvnet-faucet-key"]


class TestSecretResolver:
    """Tests for SecretResolver."""

    def _resolver(self, tmp_path, **secrets):
        resolver = SecretResolver(SecretConfig(credentials_file=tmp_path / "none.yaml"))
        backend = DictSecretBackend(secrets)
        resolver.add_backend(SecretBackend.ENV, backend)
        return resolver, backend

    def test_fallback_order(self, tmp_path):
        credentials = tmp_path / "credentials.yaml"
        credentials.write_text("riscvnet-faucet-key: from-file\n")
        resolver = SecretResolver(SecretConfig(credentials_file=credentials))
        resolver.add_backend(SecretBackend.ENV, DictSecretBackend({}))
        assert resolver.resolve("riscvnet-faucet-key") == "from-file"

    def test_primary_wins(self, tmp_path):
        credentials = tmp_path / "credentials.yaml"
        credentials.write_text("riscvnet-faucet-key: from-file\n")
        resolver = SecretResolver(SecretConfig(credentials_file=credentials))
        resolver.add_backend(SecretBackend.ENV, DictSecretBackend({"riscvnet-faucet-key": "env"}))
        assert resolver.resolve("riscvnet-faucet-key") == "env"

    def test_ref_is_cached_and_secret(self, tmp_path):
        resolver, _ = self._resolver(tmp_path)
        ref = resolver.ref("riscvnet-faucet-key")
        assert resolver.ref("riscvnet-faucet-key") is ref
        assert ref.value.secret
        assert ref.value.producers == frozenset()
        assert resolver.resolve_deferred("riscvnet-faucet-key") is ref.value

    def test_secret_ref_repr_hides_value(self, tmp_path):
        resolver, _ = self._resolver(tmp_path)
        assert "value" not in repr(resolver.ref("riscvnet-faucet-key"))

    @pytest.mark.asyncio
    async def test_resolve_all(self, tmp_path):
        resolver, backend = self._resolver(
            tmp_path, **{"riscvnet-activator-key": "edsk-a", "riscvnet-faucet-key": "edsk-f"}
        )
        activator = resolver.resolve_deferred("riscvnet-activator-key")
        faucet = resolver.resolve_deferred("riscvnet-faucet-key")

        await resolver.resolve_all()

        assert activator.value == "edsk-a"
        assert faucet.value == "edsk-f"
        assert sorted(backend.lookups) == ["riscvnet-activator-key", "riscvnet-faucet-key"]

    @pytest.mark.asyncio
    async def test_resolve_all_lists_every_missing_secret(self, tmp_path):
        resolver, _ = self._resolver(tmp_path, **{"riscvnet-activator-key": "edsk-a"})
        resolver.ref("riscvnet-activator-key")
        resolver.ref("riscvnet-faucet-key")
        resolver.ref("riscvnet-bootstrap1-key")

        with pytest.raises(ConfigurationError) as exc_info:
            await resolver.resolve_all()

        assert exc_info.value.details["secrets"] == [
            "riscvnet-bootstrap1-key",
            "riscvnet-faucet-key",
        ]
        assert exc_info.value.details["unavailable"] == []
        assert "not found" in str(exc_info.value)
        assert resolver.ref("riscvnet-faucet-key").value.state is DeferredState.FAILED
        assert resolver.ref("riscvnet-activator-key").value.value == "edsk-a"

    @pytest.mark.asyncio
    async def test_resolve_all_is_idempotent(self, tmp_path):
        resolver, backend = self._resolver(tmp_path, **{"riscvnet-faucet-key": "edsk-f"})
        resolver.ref("riscvnet-faucet-key")
        await resolver.resolve_all()
        await resolver.resolve_all()
        assert backend.lookups == ["riscvnet-faucet-key"]

    @pytest.mark.asyncio
    async def test_transient_backend_errors_retried(self, tmp_path):
        resolver = SecretResolver(SecretConfig(credentials_file=tmp_path / "none.yaml", **NO_WAIT))
        backend = UnavailableSecretBackend({"riscvnet-faucet-key": "edsk-f"}, outages=2)
        resolver.add_backend(SecretBackend.ENV, backend)
        faucet = resolver.resolve_deferred("riscvnet-faucet-key")

        await resolver.resolve_all()

        assert faucet.value == "edsk-f"
        assert backend.lookups == ["riscvnet-faucet-key"] * 3

    @pytest.mark.asyncio
    async def test_unavailable_backend_reported_apart_from_missing(self, tmp_path):
        config = SecretConfig(
            credentials_file=tmp_path / "none.yaml", retry_max_attempts=2, **NO_WAIT
        )
        resolver = SecretResolver(config)
        backend = UnavailableSecretBackend({"riscvnet-faucet-key": "edsk-f"}, outages=100)
        resolver.add_backend(SecretBackend.ENV, backend)
        resolver.ref("riscvnet-faucet-key")

        with pytest.raises(ConfigurationError, match="unavailable after 2 attempts") as exc_info:
            await resolver.resolve_all()

        assert exc_info.value.details["unavailable"] == ["riscvnet-faucet-key"]
        assert exc_info.value.details["missing"] == []
        assert len(backend.lookups) == 2

    def test_verify_secrets(self, tmp_path):
        resolver, _ = self._resolver(tmp_path, **{"riscvnet-faucet-key": "edsk-f"})
        assert resolver.verify_secrets(["riscvnet-faucet-key", "nope"]) == {
            "riscvnet-faucet-key": True,
            "nope": False,
        }

    def test_strict_gcp_without_project(self, tmp_path):
        config = SecretConfig(
            backend=SecretBackend.GCP, strict=True, credentials_file=tmp_path / "none.yaml"
        )
        with pytest.raises(SecretBackendUnavailableError, match="gcp_project_id"):
            SecretResolver(config)
