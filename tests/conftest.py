"""Root test configuration."""

import logging

import pytest
import structlog

from netprov.config.settings import Settings
from netprov.logging import clear_secrets, redact_secrets


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            redact_secrets,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@pytest.fixture(autouse=True)
def _forget_registered_secrets():
    """Secrets registered for redaction by one test must not leak into the next."""
    yield
    clear_secrets()


@pytest.fixture
def settings(tmp_path, monkeypatch):
    """Settings isolated from the developer's environment and .env file."""
    monkeypatch.chdir(tmp_path)
    return Settings(
        _env_file=None,
        gcp_access_token="test-token",
        node_timeout_seconds=5.0,
        poll_interval_seconds=0.01,
        retry_max_attempts=3,
        retry_backoff_multiplier=0.0,
        retry_backoff_min=0.0,
        retry_backoff_max=0.0,
    )
