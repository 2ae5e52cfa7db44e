"""
Google Cloud providers over the public REST APIs.

GCPProvider covers Compute Engine static addresses and GKE clusters and node
pools; CloudDNSProvider covers Cloud DNS record sets. Both use upsert
semantics: the resource is looked up by its identity key first and only
created when absent.

A node pool spec carrying ``absent: true`` is removed instead of created;
this is how the pool GKE creates with every cluster is taken away.

Long-running operations are not awaited here. A create call returns a
``pending`` result and the reconciler polls ``get`` until the resource
reports a stable state.
"""

from __future__ import annotations

from typing import Any

import structlog

from netprov.clients.base import BaseHTTPClient
from netprov.core.errors import PermanentAPIError, ResourceNotFound
from netprov.graph.models import ResourceKey
from netprov.providers.base import ApiResult

logger = structlog.get_logger()

KIND_ADDRESS = "gcp:compute/Address"
KIND_GLOBAL_ADDRESS = "gcp:compute/GlobalAddress"
KIND_CLUSTER = "gcp:container/Cluster"
KIND_NODE_POOL = "gcp:container/NodePool"
KIND_DNS_RECORD = "gcp:dns/RecordSet"

READY = "ready"
PENDING = "pending"

# Node pool spec flag: the pool must not exist
ABSENT = "absent"
# Pool GKE creates with every cluster
DEFAULT_NODE_POOL = "default-pool"

_ADDRESS_READY = {"RESERVED", "IN_USE"}
_CONTAINER_READY = {"RUNNING"}


class GoogleAPIClient(BaseHTTPClient):
    """REST client authenticating with an OAuth2 bearer token."""

    def __init__(self, base_url: str, token: str | None, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)
        self._token = token

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers


class GCPProvider:
    """Compute addresses and GKE clusters/node pools for one project."""

    def __init__(
        self,
        project: str,
        *,
        compute: BaseHTTPClient,
        container: BaseHTTPClient,
    ) -> None:
        self.project = project
        self._compute = compute
        self._container = container

    # --- path helpers -------------------------------------------------

    def _address_collection(self, kind: str, key: ResourceKey) -> str:
        if kind == KIND_GLOBAL_ADDRESS:
            return f"/projects/{self.project}/global/addresses"
        if not key.scope:
            raise PermanentAPIError(f"Regional address {key} has no region scope")
        return f"/projects/{self.project}/regions/{key.scope}/addresses"

    def _cluster_collection(self, key: ResourceKey) -> str:
        return f"/projects/{self.project}/locations/{key.scope}/clusters"

    def _node_pool_collection(self, key: ResourceKey) -> str:
        # Node pools are scoped "<location>/<cluster>"
        location, _, cluster = (key.scope or "").partition("/")
        if not cluster:
            raise PermanentAPIError(f"Node pool {key} scope must be '<location>/<cluster>'")
        return f"/projects/{self.project}/locations/{location}/clusters/{cluster}/nodePools"

    # --- CloudResourceAPI -----------------------------------------------

    async def get(self, kind: str, key: ResourceKey) -> ApiResult:
        if kind in (KIND_ADDRESS, KIND_GLOBAL_ADDRESS):
            data = await self._compute.get(f"{self._address_collection(kind, key)}/{key.name}")
            status = READY if data.get("status") in _ADDRESS_READY and data.get("address") else PENDING
            return ApiResult(status=status, attributes=data)

        if kind == KIND_CLUSTER:
            data = await self._container.get(f"{self._cluster_collection(key)}/{key.name}")
            status = READY if data.get("status") in _CONTAINER_READY else PENDING
            return ApiResult(status=status, attributes=data)

        if kind == KIND_NODE_POOL:
            data = await self._container.get(f"{self._node_pool_collection(key)}/{key.name}")
            status = READY if data.get("status") in _CONTAINER_READY else PENDING
            return ApiResult(status=status, attributes=data)

        raise PermanentAPIError(f"GCP provider does not manage kind {kind}")

    async def create_or_update(
        self, kind: str, key: ResourceKey, spec: dict[str, Any]
    ) -> ApiResult:
        try:
            existing = await self.get(kind, key)
        except ResourceNotFound:
            existing = None

        if kind in (KIND_ADDRESS, KIND_GLOBAL_ADDRESS):
            if existing is not None:
                # Addresses are immutable once reserved
                return existing
            body = {**spec, "name": key.name}
            operation = await self._compute.post(self._address_collection(kind, key), json=body)
            logger.info("gcp_address_requested", resource=str(key))
            return ApiResult(status=PENDING, attributes={"operation": operation.get("name")})

        if kind == KIND_CLUSTER:
            if existing is not None:
                return existing
            body = {"cluster": {**spec, "name": key.name}}
            operation = await self._container.post(self._cluster_collection(key), json=body)
            logger.info("gke_cluster_requested", resource=str(key))
            return ApiResult(status=PENDING, attributes={"operation": operation.get("name")})

        if kind == KIND_NODE_POOL:
            pool = {k: v for k, v in spec.items() if k not in ("cluster", ABSENT)}
            collection = self._node_pool_collection(key)
            if spec.get(ABSENT):
                if existing is None:
                    return ApiResult(status=READY, attributes=dict(spec))
                operation = await self._container.delete(f"{collection}/{key.name}")
                logger.info("gke_node_pool_removed", resource=str(key))
                return ApiResult(status=PENDING, attributes={"operation": operation.get("name")})
            if existing is None:
                operation = await self._container.post(
                    collection, json={"nodePool": {**pool, "name": key.name}}
                )
                logger.info("gke_node_pool_requested", resource=str(key))
                return ApiResult(status=PENDING, attributes={"operation": operation.get("name")})
            desired = pool.get("initialNodeCount")
            current = existing.attributes.get("initialNodeCount")
            if desired is not None and desired != current:
                await self._container.post(
                    f"{collection}/{key.name}:setSize", json={"nodeCount": desired}
                )
                logger.info("gke_node_pool_resized", resource=str(key), node_count=desired)
                return ApiResult(status=PENDING, attributes=existing.attributes)
            return existing

        raise PermanentAPIError(f"GCP provider does not manage kind {kind}")


class CloudDNSProvider:
    """Cloud DNS record sets for one project."""

    def __init__(self, project: str, *, client: BaseHTTPClient) -> None:
        self.project = project
        self._client = client

    def _rrsets(self, zone: str) -> str:
        return f"/projects/{self.project}/managedZones/{zone}/rrsets"

    async def get_record(self, zone: str, name: str, type: str) -> ApiResult:
        data = await self._client.get(f"{self._rrsets(zone)}/{name}/{type}")
        return ApiResult(status=READY, attributes=data)

    async def upsert_record(
        self, zone: str, name: str, type: str, ttl: int, values: list[str]
    ) -> ApiResult:
        body = {"name": name, "type": type, "ttl": ttl, "rrdatas": list(values)}
        try:
            current = await self.get_record(zone, name, type)
        except ResourceNotFound:
            data = await self._client.post(self._rrsets(zone), json=body)
            logger.info("dns_record_created", zone=zone, name=name, type=type)
            return ApiResult(status=READY, attributes=data or body)

        if current.attributes.get("rrdatas") == body["rrdatas"] and current.attributes.get("ttl") == ttl:
            return current
        data = await self._client.patch(f"{self._rrsets(zone)}/{name}/{type}", json=body)
        logger.info("dns_record_updated", zone=zone, name=name, type=type)
        return ApiResult(status=READY, attributes=data or body)
