"""Concrete resource handlers for orchestration."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import structlog

from netprov.config.document import copy_tree, get_path, split_path
from netprov.core.errors import PermanentAPIError, ResourceNotFound
from netprov.orchestration.registry import HandlerContext, HandlerRegistry
from netprov.providers.base import (
    ApiResult,
    ChartInstaller,
    CloudResourceAPI,
    DNSProvider,
    KubernetesAPI,
)
from netprov.providers.gcp import (
    ABSENT,
    KIND_ADDRESS,
    KIND_CLUSTER,
    KIND_DNS_RECORD,
    KIND_GLOBAL_ADDRESS,
    KIND_NODE_POOL,
)

logger = structlog.get_logger()

KIND_K8S_PROVIDER = "k8s:Provider"
KIND_NAMESPACE = "k8s:Namespace"
KIND_SERVICE = "k8s:Service"
KIND_INGRESS = "k8s:Ingress"
KIND_CUSTOM_RESOURCE = "k8s:CustomResource"
KIND_CHART = "helm:Chart"

READY = "ready"


def without_paths(document: Dict[str, Any], paths: List[str]) -> Dict[str, Any]:
    """Copy of ``document`` with the given dotted paths removed."""
    result = copy_tree(document)
    for path in paths:
        *parents, last = split_path(path)
        parent = get_path(result, parents, None) if parents else result
        if isinstance(parent, dict):
            parent.pop(last, None)
    return result


def is_subset(desired: Any, live: Any) -> bool:
    """Whether every value in ``desired`` is present and equal in ``live``."""
    if isinstance(desired, dict):
        if not isinstance(live, dict):
            return False
        return all(k in live and is_subset(v, live[k]) for k, v in desired.items())
    if isinstance(desired, list):
        if not isinstance(live, list) or len(desired) != len(live):
            return False
        return all(is_subset(d, l) for d, l in zip(desired, live))
    return desired == live


def matches(ctx: HandlerContext, live: ApiResult) -> bool:
    """Whether the live resource already satisfies the desired attributes."""
    return is_subset(without_paths(ctx.attributes, ctx.ignore_changes), live.attributes)


def _kubeconfig(ctx: HandlerContext) -> Optional[str]:
    if isinstance(ctx.provider, dict):
        return ctx.provider.get("kubeconfig")
    return ctx.provider


class CloudResourceHandler:
    """Handles GCP compute addresses and GKE clusters/node pools."""

    def __init__(self, api: CloudResourceAPI) -> None:
        self._api = api

    @property
    def kinds(self) -> tuple[str, ...]:
        return (KIND_ADDRESS, KIND_GLOBAL_ADDRESS, KIND_CLUSTER, KIND_NODE_POOL)

    async def read(self, ctx: HandlerContext) -> Optional[ApiResult]:
        try:
            return await self._api.get(ctx.key.kind, ctx.key)
        except ResourceNotFound:
            if ctx.attributes.get(ABSENT):
                # Gone is the desired state
                return ApiResult(status=READY, attributes=dict(ctx.attributes))
            return None

    async def submit(self, ctx: HandlerContext) -> ApiResult:
        return await self._api.create_or_update(ctx.key.kind, ctx.key, ctx.attributes)

    def is_ready(self, ctx: HandlerContext, result: ApiResult) -> bool:
        return result.status == READY


class KubernetesProviderHandler:
    """Validates the cluster credentials that downstream objects use.

    No external object is created: the node becomes Ready with its kubeconfig
    once a client can be built from it.
    """

    def __init__(self, client_factory: Callable[[str], KubernetesAPI]) -> None:
        self._client_factory = client_factory

    @property
    def kinds(self) -> tuple[str, ...]:
        return (KIND_K8S_PROVIDER,)

    async def read(self, ctx: HandlerContext) -> Optional[ApiResult]:
        return None

    async def submit(self, ctx: HandlerContext) -> ApiResult:
        kubeconfig = ctx.attributes.get("kubeconfig")
        if not kubeconfig:
            raise PermanentAPIError(f"{ctx.key} has no kubeconfig")
        self._client_factory(kubeconfig)
        return ApiResult(status=READY, attributes={"kubeconfig": kubeconfig})

    def is_ready(self, ctx: HandlerContext, result: ApiResult) -> bool:
        return True


class KubernetesHandler:
    """Handles namespaces, services, ingresses and custom objects."""

    def __init__(self, client_factory: Callable[[str], KubernetesAPI]) -> None:
        self._client_factory = client_factory
        self._clients: Dict[str, KubernetesAPI] = {}

    @property
    def kinds(self) -> tuple[str, ...]:
        return (KIND_NAMESPACE, KIND_SERVICE, KIND_INGRESS, KIND_CUSTOM_RESOURCE)

    def _client(self, ctx: HandlerContext) -> KubernetesAPI:
        kubeconfig = _kubeconfig(ctx)
        if not kubeconfig:
            raise PermanentAPIError(f"{ctx.key} has no Kubernetes provider configured")
        if kubeconfig not in self._clients:
            self._clients[kubeconfig] = self._client_factory(kubeconfig)
        return self._clients[kubeconfig]

    async def read(self, ctx: HandlerContext) -> Optional[ApiResult]:
        manifest = ctx.attributes
        try:
            return await self._client(ctx).get(
                manifest["apiVersion"],
                manifest["kind"],
                manifest["metadata"]["name"],
                manifest["metadata"].get("namespace"),
            )
        except ResourceNotFound:
            return None

    async def submit(self, ctx: HandlerContext) -> ApiResult:
        return await self._client(ctx).apply(ctx.attributes)

    def is_ready(self, ctx: HandlerContext, result: ApiResult) -> bool:
        return result.status == READY


class ChartHandler:
    """Handles helm chart releases; the release name is the resource name."""

    def __init__(self, installer: ChartInstaller) -> None:
        self._installer = installer

    @property
    def kinds(self) -> tuple[str, ...]:
        return (KIND_CHART,)

    async def read(self, ctx: HandlerContext) -> Optional[ApiResult]:
        try:
            return await self._installer.status(
                ctx.key.name,
                namespace=ctx.attributes["namespace"],
                kubeconfig=_kubeconfig(ctx),
            )
        except ResourceNotFound:
            return None

    async def submit(self, ctx: HandlerContext) -> ApiResult:
        attrs = ctx.attributes
        return await self._installer.install(
            ctx.key.name,
            chart=attrs["chart"],
            version=attrs["version"],
            repo=attrs["repo"],
            namespace=attrs["namespace"],
            values=attrs.get("values", {}),
            kubeconfig=_kubeconfig(ctx),
        )

    def is_ready(self, ctx: HandlerContext, result: ApiResult) -> bool:
        return result.status == READY


class DNSRecordHandler:
    """Handles DNS record sets."""

    def __init__(self, dns: DNSProvider) -> None:
        self._dns = dns

    @property
    def kinds(self) -> tuple[str, ...]:
        return (KIND_DNS_RECORD,)

    async def read(self, ctx: HandlerContext) -> Optional[ApiResult]:
        attrs = ctx.attributes
        try:
            live = await self._dns.get_record(attrs["managedZone"], attrs["name"], attrs["type"])
        except ResourceNotFound:
            return None
        # Record sets do not echo their zone
        return ApiResult(
            status=live.status, attributes={**live.attributes, "managedZone": attrs["managedZone"]}
        )

    async def submit(self, ctx: HandlerContext) -> ApiResult:
        attrs = ctx.attributes
        values = [v for v in attrs.get("rrdatas", []) if v]
        if not values:
            raise PermanentAPIError(f"{ctx.key} has no record values")
        return await self._dns.upsert_record(
            attrs["managedZone"], attrs["name"], attrs["type"], int(attrs.get("ttl", 300)), values
        )

    def is_ready(self, ctx: HandlerContext, result: ApiResult) -> bool:
        return result.status == READY


def register_default_handlers(
    registry: HandlerRegistry,
    *,
    cloud: CloudResourceAPI,
    dns: DNSProvider,
    charts: ChartInstaller,
    kubernetes_factory: Callable[[str], KubernetesAPI],
) -> None:
    """Register the built-in handlers against the given providers."""
    registry.register(CloudResourceHandler(cloud))
    registry.register(DNSRecordHandler(dns))
    registry.register(ChartHandler(charts))
    registry.register(KubernetesProviderHandler(kubernetes_factory))
    registry.register(KubernetesHandler(kubernetes_factory))
