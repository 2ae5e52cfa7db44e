from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from netprov.graph.models import ResourceKey


@dataclass(frozen=True)
class ApiResult:
    """Status and attributes reported by an external system for one resource."""

    status: str
    attributes: dict[str, Any] = field(default_factory=dict)


class CloudResourceAPI(Protocol):
    """Cloud resource API addressed by kind and identity key.

    ``create_or_update`` is an upsert; ``get`` raises ResourceNotFound.
    """

    async def create_or_update(
        self, kind: str, key: ResourceKey, spec: dict[str, Any]
    ) -> ApiResult:
        ...

    async def get(self, kind: str, key: ResourceKey) -> ApiResult:
        ...


class KubernetesAPI(Protocol):
    """Kubernetes object API addressed by kind/name/namespace."""

    async def apply(self, manifest: dict[str, Any]) -> ApiResult:
        ...

    async def get(
        self, api_version: str, kind: str, name: str, namespace: str | None
    ) -> ApiResult:
        ...


class ChartInstaller(Protocol):
    """Packaged-application installer (chart name, version, repository)."""

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
        ...

    async def status(
        self, release: str, *, namespace: str, kubeconfig: str | None = None
    ) -> ApiResult:
        ...


class DNSProvider(Protocol):
    async def upsert_record(
        self, zone: str, name: str, type: str, ttl: int, values: list[str]
    ) -> ApiResult:
        ...

    async def get_record(self, zone: str, name: str, type: str) -> ApiResult:
        ...
