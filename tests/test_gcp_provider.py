"""Tests for providers/gcp.py using respx to mock the REST APIs."""

import json

import httpx
import pytest
import respx

from netprov.core.errors import PermanentAPIError, ResourceNotFound, TransientAPIError
from netprov.graph.models import ResourceKey
from netprov.providers.gcp import (
    KIND_ADDRESS,
    KIND_CLUSTER,
    KIND_GLOBAL_ADDRESS,
    KIND_NODE_POOL,
    CloudDNSProvider,
    GCPProvider,
    GoogleAPIClient,
)

PROJECT = "jstz-dev-dbc1"
COMPUTE = "https://compute.test/compute/v1"
CONTAINER = "https://container.test/v1"
DNS = "https://dns.test/dns/v1"

P2P_IP = ResourceKey(KIND_ADDRESS, "riscvnet-p2p-static-ip", "europe-west2")
INGRESS_IP = ResourceKey(KIND_GLOBAL_ADDRESS, "riscvnet-ingress-static-ip")
CLUSTER = ResourceKey(KIND_CLUSTER, "riscvnet-cluster", "europe-west2")
POOL = ResourceKey(KIND_NODE_POOL, "riscvnet-node-pool", "europe-west2/riscvnet-cluster")
DEFAULT_POOL = ResourceKey(KIND_NODE_POOL, "default-pool", "europe-west2/riscvnet-cluster")

REGIONAL = f"{COMPUTE}/projects/{PROJECT}/regions/europe-west2/addresses"
GLOBAL = f"{COMPUTE}/projects/{PROJECT}/global/addresses"
CLUSTERS = f"{CONTAINER}/projects/{PROJECT}/locations/europe-west2/clusters"
POOLS = f"{CLUSTERS}/riscvnet-cluster/nodePools"
RRSETS = f"{DNS}/projects/{PROJECT}/managedZones/jstz-info/rrsets"


@pytest.fixture
def provider():
    return GCPProvider(
        PROJECT,
        compute=GoogleAPIClient(COMPUTE, "test-token"),
        container=GoogleAPIClient(CONTAINER, "test-token"),
    )


@pytest.fixture
def dns():
    return CloudDNSProvider(PROJECT, client=GoogleAPIClient(DNS, "test-token"))


class TestAddresses:
    """Tests for static address upserts."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_get_reserved_address(self, provider):
        route = respx.get(f"{REGIONAL}/riscvnet-p2p-static-ip").mock(
            return_value=httpx.Response(
                200, json={"name": "riscvnet-p2p-static-ip", "address": "35.0.0.1", "status": "RESERVED"}
            )
        )

        result = await provider.get(KIND_ADDRESS, P2P_IP)

        assert result.status == "ready"
        assert result.attributes["address"] == "35.0.0.1"
        assert route.calls[0].request.headers["Authorization"] == "Bearer test-token"

    @respx.mock
    @pytest.mark.asyncio
    async def test_reserving_address_is_pending(self, provider):
        respx.get(f"{GLOBAL}/riscvnet-ingress-static-ip").mock(
            return_value=httpx.Response(200, json={"status": "RESERVING"})
        )
        result = await provider.get(KIND_GLOBAL_ADDRESS, INGRESS_IP)
        assert result.status == "pending"

    @respx.mock
    @pytest.mark.asyncio
    async def test_create_when_absent(self, provider):
        respx.get(f"{REGIONAL}/riscvnet-p2p-static-ip").mock(return_value=httpx.Response(404))
        create = respx.post(REGIONAL).mock(
            return_value=httpx.Response(200, json={"name": "operation-1"})
        )

        result = await provider.create_or_update(KIND_ADDRESS, P2P_IP, {"addressType": "EXTERNAL"})

        assert result.status == "pending"
        assert json.loads(create.calls[0].request.content) == {
            "addressType": "EXTERNAL",
            "name": "riscvnet-p2p-static-ip",
        }

    @respx.mock
    @pytest.mark.asyncio
    async def test_existing_address_not_recreated(self, provider):
        respx.get(f"{GLOBAL}/riscvnet-ingress-static-ip").mock(
            return_value=httpx.Response(200, json={"address": "35.0.0.2", "status": "IN_USE"})
        )

        result = await provider.create_or_update(KIND_GLOBAL_ADDRESS, INGRESS_IP, {})

        assert result.status == "ready"
        assert len(respx.calls) == 1

    @pytest.mark.asyncio
    async def test_regional_address_requires_scope(self, provider):
        with pytest.raises(PermanentAPIError, match="no region scope"):
            await provider.get(KIND_ADDRESS, ResourceKey(KIND_ADDRESS, "orphan"))


class TestClusters:
    """Tests for GKE cluster and node pool upserts."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_create_cluster(self, provider):
        respx.get(f"{CLUSTERS}/riscvnet-cluster").mock(return_value=httpx.Response(404))
        create = respx.post(CLUSTERS).mock(
            return_value=httpx.Response(200, json={"name": "operation-2"})
        )

        result = await provider.create_or_update(KIND_CLUSTER, CLUSTER, {"initialNodeCount": 1})

        assert result.attributes == {"operation": "operation-2"}
        assert json.loads(create.calls[0].request.content) == {
            "cluster": {"initialNodeCount": 1, "name": "riscvnet-cluster"}
        }

    @respx.mock
    @pytest.mark.asyncio
    async def test_provisioning_cluster_is_pending(self, provider):
        respx.get(f"{CLUSTERS}/riscvnet-cluster").mock(
            return_value=httpx.Response(200, json={"status": "PROVISIONING"})
        )
        assert (await provider.get(KIND_CLUSTER, CLUSTER)).status == "pending"

    @respx.mock
    @pytest.mark.asyncio
    async def test_create_node_pool_drops_cluster_field(self, provider):
        respx.get(f"{POOLS}/riscvnet-node-pool").mock(return_value=httpx.Response(404))
        create = respx.post(POOLS).mock(return_value=httpx.Response(200, json={"name": "op"}))

        await provider.create_or_update(
            KIND_NODE_POOL, POOL, {"cluster": "riscvnet-cluster", "initialNodeCount": 3}
        )

        assert json.loads(create.calls[0].request.content) == {
            "nodePool": {"initialNodeCount": 3, "name": "riscvnet-node-pool"}
        }

    @respx.mock
    @pytest.mark.asyncio
    async def test_node_pool_resized(self, provider):
        respx.get(f"{POOLS}/riscvnet-node-pool").mock(
            return_value=httpx.Response(200, json={"status": "RUNNING", "initialNodeCount": 3})
        )
        resize = respx.post(f"{POOLS}/riscvnet-node-pool:setSize").mock(
            return_value=httpx.Response(200, json={"name": "op"})
        )

        result = await provider.create_or_update(KIND_NODE_POOL, POOL, {"initialNodeCount": 5})

        assert result.status == "pending"
        assert json.loads(resize.calls[0].request.content) == {"nodeCount": 5}

    @respx.mock
    @pytest.mark.asyncio
    async def test_node_pool_unchanged(self, provider):
        respx.get(f"{POOLS}/riscvnet-node-pool").mock(
            return_value=httpx.Response(200, json={"status": "RUNNING", "initialNodeCount": 3})
        )

        result = await provider.create_or_update(KIND_NODE_POOL, POOL, {"initialNodeCount": 3})

        assert result.status == "ready"
        assert len(respx.calls) == 1

    @respx.mock
    @pytest.mark.asyncio
    async def test_absent_node_pool_deleted(self, provider):
        respx.get(f"{POOLS}/default-pool").mock(
            return_value=httpx.Response(200, json={"name": "default-pool", "status": "RUNNING"})
        )
        delete = respx.delete(f"{POOLS}/default-pool").mock(
            return_value=httpx.Response(200, json={"name": "operation-3"})
        )

        result = await provider.create_or_update(
            KIND_NODE_POOL, DEFAULT_POOL, {"cluster": "riscvnet-cluster", "absent": True}
        )

        assert result.status == "pending"
        assert result.attributes == {"operation": "operation-3"}
        assert delete.called

    @respx.mock
    @pytest.mark.asyncio
    async def test_absent_node_pool_already_gone(self, provider):
        respx.get(f"{POOLS}/default-pool").mock(return_value=httpx.Response(404))

        result = await provider.create_or_update(
            KIND_NODE_POOL, DEFAULT_POOL, {"cluster": "riscvnet-cluster", "absent": True}
        )

        assert result.status == "ready"
        assert len(respx.calls) == 1

    @pytest.mark.asyncio
    async def test_node_pool_scope_must_name_cluster(self, provider):
        with pytest.raises(PermanentAPIError, match="scope"):
            await provider.get(KIND_NODE_POOL, ResourceKey(KIND_NODE_POOL, "pool", "europe-west2"))


class TestErrorClassification:
    """HTTP failures map onto the error taxonomy."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_503_is_transient(self, provider):
        respx.get(f"{CLUSTERS}/riscvnet-cluster").mock(return_value=httpx.Response(503))
        with pytest.raises(TransientAPIError):
            await provider.get(KIND_CLUSTER, CLUSTER)

    @respx.mock
    @pytest.mark.asyncio
    async def test_429_is_transient(self, provider):
        respx.get(f"{CLUSTERS}/riscvnet-cluster").mock(return_value=httpx.Response(429))
        with pytest.raises(TransientAPIError):
            await provider.get(KIND_CLUSTER, CLUSTER)

    @respx.mock
    @pytest.mark.asyncio
    async def test_404_is_not_found(self, provider):
        respx.get(f"{CLUSTERS}/riscvnet-cluster").mock(return_value=httpx.Response(404))
        with pytest.raises(ResourceNotFound):
            await provider.get(KIND_CLUSTER, CLUSTER)

    @respx.mock
    @pytest.mark.asyncio
    async def test_400_is_permanent(self, provider):
        respx.get(f"{CLUSTERS}/riscvnet-cluster").mock(return_value=httpx.Response(404))
        respx.post(CLUSTERS).mock(
            return_value=httpx.Response(400, json={"error": {"message": "bad network"}})
        )
        with pytest.raises(PermanentAPIError, match="HTTP 400"):
            await provider.create_or_update(KIND_CLUSTER, CLUSTER, {})

    @respx.mock
    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, provider):
        respx.get(f"{CLUSTERS}/riscvnet-cluster").mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(TransientAPIError):
            await provider.get(KIND_CLUSTER, CLUSTER)


class TestCloudDNS:
    """Tests for record set upserts."""

    NAME = "rpc.riscvnet.jstz.info."

    @respx.mock
    @pytest.mark.asyncio
    async def test_create(self, dns):
        respx.get(f"{RRSETS}/{self.NAME}/A").mock(return_value=httpx.Response(404))
        create = respx.post(RRSETS).mock(return_value=httpx.Response(200, json={}))

        result = await dns.upsert_record("jstz-info", self.NAME, "A", 300, ["35.0.0.2"])

        assert result.attributes["rrdatas"] == ["35.0.0.2"]
        assert json.loads(create.calls[0].request.content) == {
            "name": self.NAME,
            "type": "A",
            "ttl": 300,
            "rrdatas": ["35.0.0.2"],
        }

    @respx.mock
    @pytest.mark.asyncio
    async def test_patch_on_change(self, dns):
        respx.get(f"{RRSETS}/{self.NAME}/A").mock(
            return_value=httpx.Response(200, json={"ttl": 300, "rrdatas": ["35.0.0.9"]})
        )
        patch = respx.patch(f"{RRSETS}/{self.NAME}/A").mock(
            return_value=httpx.Response(200, json={"ttl": 300, "rrdatas": ["35.0.0.2"]})
        )

        await dns.upsert_record("jstz-info", self.NAME, "A", 300, ["35.0.0.2"])

        assert patch.called

    @respx.mock
    @pytest.mark.asyncio
    async def test_no_op_when_equal(self, dns):
        respx.get(f"{RRSETS}/{self.NAME}/A").mock(
            return_value=httpx.Response(200, json={"ttl": 300, "rrdatas": ["35.0.0.2"]})
        )

        await dns.upsert_record("jstz-info", self.NAME, "A", 300, ["35.0.0.2"])

        assert len(respx.calls) == 1
