"""Chart installs through the helm CLI.

``helm upgrade --install`` is itself an upsert, so re-running an install
against an existing release converges instead of duplicating it.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
import yaml

from netprov.core.errors import PermanentAPIError, ResourceNotFound, TransientAPIError
from netprov.providers.base import ApiResult

logger = structlog.get_logger()

_TRANSIENT_MARKERS = (
    "timed out",
    "timeout",
    "connection refused",
    "connection reset",
    "tls handshake",
    "i/o timeout",
    "another operation (install/upgrade/rollback) is in progress",
)


@contextmanager
def _temp_file(content: str, suffix: str) -> Iterator[str]:
    fd, path = tempfile.mkstemp(suffix=suffix)
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.chmod(path, 0o600)
        yield path
    finally:
        os.unlink(path)


class HelmInstaller:
    """Installs and inspects helm releases."""

    def __init__(self, binary: str = "helm", *, timeout: str = "15m") -> None:
        self.binary = binary
        self.timeout = timeout

    async def _run(self, *args: str) -> str:
        process = await asyncio.create_subprocess_exec(
            self.binary,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            message = stderr.decode(errors="replace").strip()
            lowered = message.lower()
            if "release: not found" in lowered:
                raise ResourceNotFound(message)
            if any(marker in lowered for marker in _TRANSIENT_MARKERS):
                raise TransientAPIError(f"helm {args[0]} failed: {message}")
            raise PermanentAPIError(f"helm {args[0]} failed: {message}")
        return stdout.decode()

    async def install(
        self,
        release: str,
        *,
        chart: str,
        version: str,
        repo: str,
        namespace: str,
        values: dict[str, Any],
        kubeconfig: str | None = None,
    ) -> ApiResult:
        with _temp_file(yaml.safe_dump(values, sort_keys=False), ".yaml") as values_file:
            args = [
                "upgrade",
                "--install",
                release,
                chart,
                "--version",
                version,
                "--repo",
                repo,
                "--namespace",
                namespace,
                "--values",
                values_file,
                "--timeout",
                self.timeout,
                "--output",
                "json",
            ]
            if kubeconfig:
                with _temp_file(kubeconfig, ".kubeconfig") as kubeconfig_file:
                    output = await self._run(*args, "--kubeconfig", kubeconfig_file)
            else:
                output = await self._run(*args)

        logger.info("helm_release_installed", release=release, chart=chart, version=version)
        return self._result(output)

    async def status(
        self, release: str, *, namespace: str, kubeconfig: str | None = None
    ) -> ApiResult:
        args = ["status", release, "--namespace", namespace, "--output", "json"]
        if kubeconfig:
            with _temp_file(kubeconfig, ".kubeconfig") as kubeconfig_file:
                output = await self._run(*args, "--kubeconfig", kubeconfig_file)
        else:
            output = await self._run(*args)
        return self._result(output)

    @staticmethod
    def _result(output: str) -> ApiResult:
        data = json.loads(output) if output.strip() else {}
        state = data.get("info", {}).get("status", "unknown")
        if state == "failed":
            raise PermanentAPIError(
                f"helm release {data.get('name')} is in failed state",
                {"release": data.get("name")},
            )
        attributes = {
            "name": data.get("name"),
            "namespace": data.get("namespace"),
            "revision": data.get("version"),
            "status": state,
            "chart": data.get("chart", {}).get("metadata", {}).get("name"),
        }
        return ApiResult(status="ready" if state == "deployed" else "pending", attributes=attributes)
