"""
Kubernetes object provider.

Upserts namespaces, services, ingresses and custom objects (ManagedCertificate,
BackendConfig) addressed by their kind/name/namespace triple. The official
client is synchronous; calls run in the default executor.

Upsert: create first, and on 409 Conflict patch the existing object.
"""

from __future__ import annotations

import asyncio
from functools import partial
from typing import Any, Callable

import structlog
import urllib3
import yaml
from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from netprov.core.errors import (
    PermanentAPIError,
    ResourceNotFound,
    TransientAPIError,
)
from netprov.clients.base import is_retryable_status
from netprov.providers.base import ApiResult

logger = structlog.get_logger()

READY = "ready"
PENDING = "pending"


def _plural(kind: str) -> str:
    lower = kind.lower()
    return f"{lower}es" if lower.endswith("s") else f"{lower}s"


def _classify(exc: ApiException, what: str) -> Exception:
    if exc.status == 404:
        return ResourceNotFound(f"{what} not found")
    if exc.status and is_retryable_status(exc.status):
        return TransientAPIError(f"{what}: HTTP {exc.status}", {"status": exc.status})
    return PermanentAPIError(f"{what}: HTTP {exc.status} {exc.reason}", {"status": exc.status})


class KubernetesProvider:
    """Kubernetes API access bound to one cluster."""

    def __init__(self, api_client: Any) -> None:
        self._api_client = api_client
        self._core = client.CoreV1Api(api_client)
        self._networking = client.NetworkingV1Api(api_client)
        self._custom = client.CustomObjectsApi(api_client)

    @classmethod
    def from_kubeconfig(cls, kubeconfig: str) -> "KubernetesProvider":
        """Build a provider from a kubeconfig document (YAML text)."""
        api_client = config.new_client_from_config_dict(yaml.safe_load(kubeconfig))
        return cls(api_client)

    async def _run_sync(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    def _to_dict(self, obj: Any) -> dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        return self._api_client.sanitize_for_serialization(obj)

    def _operations(
        self, api_version: str, kind: str, name: str, namespace: str | None
    ) -> tuple[Callable[..., Any], Callable[..., Any], Callable[..., Any]]:
        """Return (create, patch, read) callables bound to this object's address."""
        if api_version == "v1" and kind == "Namespace":
            return (
                lambda body: self._core.create_namespace(body),
                lambda body: self._core.patch_namespace(name, body),
                lambda: self._core.read_namespace(name),
            )
        if api_version == "v1" and kind == "Service":
            return (
                lambda body: self._core.create_namespaced_service(namespace, body),
                lambda body: self._core.patch_namespaced_service(name, namespace, body),
                lambda: self._core.read_namespaced_service(name, namespace),
            )
        if api_version == "networking.k8s.io/v1" and kind == "Ingress":
            return (
                lambda body: self._networking.create_namespaced_ingress(namespace, body),
                lambda body: self._networking.patch_namespaced_ingress(name, namespace, body),
                lambda: self._networking.read_namespaced_ingress(name, namespace),
            )
        if "/" not in api_version:
            raise PermanentAPIError(f"Unsupported core object {api_version}/{kind}")

        group, version = api_version.split("/", 1)
        plural = _plural(kind)
        return (
            lambda body: self._custom.create_namespaced_custom_object(
                group, version, namespace, plural, body
            ),
            lambda body: self._custom.patch_namespaced_custom_object(
                group, version, namespace, plural, name, body
            ),
            lambda: self._custom.get_namespaced_custom_object(
                group, version, namespace, plural, name
            ),
        )

    async def _call(self, what: str, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await self._run_sync(func, *args)
        except ApiException as exc:
            raise _classify(exc, what) from exc
        except urllib3.exceptions.HTTPError as exc:
            raise TransientAPIError(f"{what}: {exc}") from exc

    async def apply(self, manifest: dict[str, Any]) -> ApiResult:
        api_version = manifest["apiVersion"]
        kind = manifest["kind"]
        metadata = manifest.get("metadata", {})
        name = metadata["name"]
        namespace = metadata.get("namespace")
        what = f"{kind} {namespace + '/' if namespace else ''}{name}"
        create, patch, _read = self._operations(api_version, kind, name, namespace)

        try:
            obj = await self._run_sync(create, manifest)
            logger.info("k8s_object_created", object=what)
        except ApiException as exc:
            if exc.status != 409:
                raise _classify(exc, what) from exc
            obj = await self._call(what, patch, manifest)
            logger.info("k8s_object_patched", object=what)
        except urllib3.exceptions.HTTPError as exc:
            raise TransientAPIError(f"{what}: {exc}") from exc
        return ApiResult(status=self.readiness(kind, self._to_dict(obj)), attributes=self._to_dict(obj))

    async def get(
        self, api_version: str, kind: str, name: str, namespace: str | None
    ) -> ApiResult:
        what = f"{kind} {namespace + '/' if namespace else ''}{name}"
        _create, _patch, read = self._operations(api_version, kind, name, namespace)
        obj = self._to_dict(await self._call(what, read))
        return ApiResult(status=self.readiness(kind, obj), attributes=obj)

    @staticmethod
    def readiness(kind: str, obj: dict[str, Any]) -> str:
        """A LoadBalancer service is ready once it has an ingress address."""
        if kind == "Service" and obj.get("spec", {}).get("type") == "LoadBalancer":
            ingress = (obj.get("status") or {}).get("loadBalancer", {}).get("ingress") or []
            if not any(entry.get("ip") or entry.get("hostname") for entry in ingress):
                return PENDING
        if kind == "Namespace":
            phase = (obj.get("status") or {}).get("phase")
            if phase and phase != "Active":
                return PENDING
        return READY
