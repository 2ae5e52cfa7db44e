"""Tests for orchestration/engine.py.

Scenarios run against FakeCloud through the real CloudResourceHandler.
"""

import pytest
from fakes import FakeCloud

from netprov.core.errors import ConfigurationError, PermanentAPIError
from netprov.graph.models import NodeStatus
from netprov.network.stack import Stack
from netprov.orchestration import EnginePolicy, HandlerRegistry, Reconciler
from netprov.orchestration.handlers import CloudResourceHandler
from netprov.providers.gcp import KIND_ADDRESS, KIND_CLUSTER, KIND_NODE_POOL

REGION = "europe-west2"

FAST = EnginePolicy(
    node_timeout=5.0,
    poll_interval=0.01,
    max_concurrency=4,
    retry_max_attempts=3,
    retry_backoff_multiplier=0.0,
    retry_backoff_min=0.0,
    retry_backoff_max=0.0,
)


@pytest.fixture
def cloud():
    cloud = FakeCloud()
    cloud.computed["a"] = {"address": "10.0.0.1"}
    return cloud


def reconciler(cloud, policy=FAST) -> Reconciler:
    registry = HandlerRegistry()
    registry.register(CloudResourceHandler(cloud))
    return Reconciler(registry, policy)


def a_then_b(stack: Stack):
    a = stack.resource(KIND_ADDRESS, "a", scope=REGION)
    b = stack.resource(
        KIND_CLUSTER, "b", {"endpointAddress": a.attr("address")}, scope=REGION
    )
    return a, b


class TestValueThreading:
    """Outputs of one resource flow into the spec of the next."""

    @pytest.mark.asyncio
    async def test_address_substituted_into_dependent(self, cloud):
        stack = Stack("test")
        a, b = a_then_b(stack)

        result = await reconciler(cloud).run(stack.build())

        assert result.success
        assert result.statuses == {a.key: NodeStatus.READY, b.key: NodeStatus.READY}
        assert cloud.create_calls == [a.key, b.key]
        assert cloud.submitted_specs[b.key] == {"endpointAddress": "10.0.0.1"}
        assert cloud.submit_attempts == {"a": 1, "b": 1}

    @pytest.mark.asyncio
    async def test_handle_values_resolve_after_run(self, cloud):
        stack = Stack("test")
        a, _b = a_then_b(stack)
        address = a.attr("address")

        await reconciler(cloud).run(stack.build())

        assert address.value == "10.0.0.1"

    @pytest.mark.asyncio
    async def test_lifecycle_events_in_order(self, cloud):
        stack = Stack("test")
        a, _b = a_then_b(stack)

        result = await reconciler(cloud).run(stack.build())

        a_events = [(e.previous, e.status) for e in result.events if e.key == a.key]
        assert a_events == [
            (NodeStatus.PENDING, NodeStatus.SUBMITTED),
            (NodeStatus.SUBMITTED, NodeStatus.RECONCILING),
            (NodeStatus.RECONCILING, NodeStatus.READY),
        ]

    @pytest.mark.asyncio
    async def test_polls_until_ready(self, cloud):
        cloud.pending_reads["a"] = 3
        stack = Stack("test")
        a, b = a_then_b(stack)

        result = await reconciler(cloud).run(stack.build())

        assert result.success
        assert cloud.pending_reads["a"] == 0


class TestPartialFailure:
    """A failed node prunes its dependents; other branches continue."""

    @pytest.mark.asyncio
    async def test_failed_dependency_skips_dependent(self, cloud):
        cloud.failures["a"] = PermanentAPIError("quota exceeded")
        stack = Stack("test")
        a, b = a_then_b(stack)

        result = await reconciler(cloud).run(stack.build())

        assert result.status_of(a.key) is NodeStatus.FAILED
        assert result.status_of(b.key) is NodeStatus.SKIPPED
        assert "quota exceeded" in result.errors[a.key]
        assert "b" not in cloud.submit_attempts
        assert result.converged
        assert not result.success

    @pytest.mark.asyncio
    async def test_skip_cascades_transitively(self, cloud):
        cloud.failures["a"] = PermanentAPIError("quota exceeded")
        stack = Stack("test")
        a, b = a_then_b(stack)
        c = stack.resource(
            KIND_NODE_POOL, "c", {"cluster": b.attr("name")}, scope=f"{REGION}/b"
        )

        result = await reconciler(cloud).run(stack.build())

        assert result.status_of(c.key) is NodeStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_independent_branches_both_ready(self, cloud):
        stack = Stack("test")
        c = stack.resource(KIND_ADDRESS, "c", scope=REGION)
        d = stack.resource(KIND_ADDRESS, "d", scope=REGION)

        result = await reconciler(cloud).run(stack.build())

        assert result.status_of(c.key) is NodeStatus.READY
        assert result.status_of(d.key) is NodeStatus.READY

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_unrelated_branch(self, cloud):
        cloud.failures["a"] = PermanentAPIError("quota exceeded")
        stack = Stack("test")
        a, b = a_then_b(stack)
        c = stack.resource(KIND_ADDRESS, "c", scope=REGION)

        result = await reconciler(cloud).run(stack.build())

        assert result.status_of(c.key) is NodeStatus.READY
        assert result.counts() == {"failed": 1, "skipped": 1, "ready": 1}

    @pytest.mark.asyncio
    async def test_missing_attribute_fails_dependent(self, cloud):
        stack = Stack("test")
        a = stack.resource(KIND_ADDRESS, "a", scope=REGION)
        b = stack.resource(
            KIND_CLUSTER, "b", {"x": a.attr("status.loadBalancer.ingress.0.ip")}, scope=REGION
        )

        result = await reconciler(cloud).run(stack.build())

        assert result.status_of(a.key) is NodeStatus.READY
        assert result.status_of(b.key) is NodeStatus.FAILED
        assert "unresolved input" in result.errors[b.key]

    @pytest.mark.asyncio
    async def test_missing_handler_fails_node(self, cloud):
        stack = Stack("test")
        orphan = stack.resource("test:Unknown", "orphan")

        result = await reconciler(cloud).run(stack.build())

        assert result.status_of(orphan.key) is NodeStatus.FAILED
        assert "No handler" in result.errors[orphan.key]


class TestIdempotency:
    """Re-running converges without duplicate creations."""

    @pytest.mark.asyncio
    async def test_rerun_creates_nothing(self, cloud):
        first = Stack("test")
        a_then_b(first)
        await reconciler(cloud).run(first.build())
        assert len(cloud.create_calls) == 2

        second = Stack("test")
        a_then_b(second)
        result = await reconciler(cloud).run(second.build())

        assert result.success
        assert len(cloud.create_calls) == 2
        assert cloud.update_calls == []

    @pytest.mark.asyncio
    async def test_graph_runs_once(self, cloud):
        stack = Stack("test")
        a_then_b(stack)
        graph = stack.build()
        first = await reconciler(cloud).run(graph)
        assert first.success

        with pytest.raises(ConfigurationError, match="already been run"):
            await reconciler(cloud).run(graph)

        assert cloud.submit_attempts == {"a": 1, "b": 1}

    @pytest.mark.asyncio
    async def test_ignored_paths_do_not_trigger_update(self, cloud):
        stack = Stack("test")
        pool = stack.resource(
            KIND_NODE_POOL,
            "pool",
            {"initialNodeCount": 3, "config": {"machineType": "n1-standard-4"}},
            scope=f"{REGION}/cluster",
            ignore_changes=["config"],
        )
        cloud.resources[pool.key] = {
            "name": "pool",
            "initialNodeCount": 3,
            "config": {"machineType": "e2-medium"},
        }

        result = await reconciler(cloud).run(stack.build())

        assert result.success
        assert "pool" not in cloud.submit_attempts

    @pytest.mark.asyncio
    async def test_drift_outside_ignored_paths_is_updated(self, cloud):
        stack = Stack("test")
        pool = stack.resource(
            KIND_NODE_POOL,
            "pool",
            {"initialNodeCount": 5, "config": {"machineType": "n1-standard-4"}},
            scope=f"{REGION}/cluster",
            ignore_changes=["config"],
        )
        cloud.resources[pool.key] = {"name": "pool", "initialNodeCount": 3}

        await reconciler(cloud).run(stack.build())

        assert cloud.update_calls == [pool.key]
        assert cloud.resources[pool.key]["initialNodeCount"] == 5


class TestRetriesAndTimeouts:
    """Transient errors are retried; slow nodes time out."""

    @pytest.mark.asyncio
    async def test_transient_errors_retried(self, cloud):
        cloud.transient["a"] = 2
        stack = Stack("test")
        a, b = a_then_b(stack)

        result = await reconciler(cloud).run(stack.build())

        assert result.success
        assert cloud.submit_attempts["a"] == 3
        assert cloud.create_calls.count(a.key) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, cloud):
        cloud.transient["a"] = 10
        stack = Stack("test")
        a, b = a_then_b(stack)

        result = await reconciler(cloud).run(stack.build())

        assert result.status_of(a.key) is NodeStatus.FAILED
        assert "gave up after 3 attempts" in result.errors[a.key]
        assert cloud.submit_attempts["a"] == 3
        assert result.status_of(b.key) is NodeStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_node_timeout(self, cloud):
        cloud.pending_reads["a"] = 10_000
        stack = Stack("test")
        a = stack.resource(KIND_ADDRESS, "a", scope=REGION, timeout=0.1)
        c = stack.resource(KIND_ADDRESS, "c", scope=REGION)

        result = await reconciler(cloud).run(stack.build())

        assert result.status_of(a.key) is NodeStatus.FAILED
        assert "did not become ready within" in result.errors[a.key]
        assert result.status_of(c.key) is NodeStatus.READY

    @pytest.mark.asyncio
    async def test_handler_timeout_error_is_not_a_deadline(self, cloud):
        cloud.failures["a"] = TimeoutError("socket read timed out")
        stack = Stack("test")
        a = stack.resource(KIND_ADDRESS, "a", scope=REGION)

        result = await reconciler(cloud).run(stack.build())

        assert result.status_of(a.key) is NodeStatus.FAILED
        assert "socket read timed out" in result.errors[a.key]
        assert "did not become ready within" not in result.errors[a.key]
        assert cloud.submit_attempts["a"] == 1

    @pytest.mark.asyncio
    async def test_single_slot_concurrency_still_converges(self, cloud):
        policy = EnginePolicy(
            poll_interval=0.01,
            max_concurrency=1,
            retry_backoff_multiplier=0.0,
            retry_backoff_min=0.0,
            retry_backoff_max=0.0,
        )
        stack = Stack("test")
        a_then_b(stack)
        stack.resource(KIND_ADDRESS, "c", scope=REGION)

        result = await reconciler(cloud, policy).run(stack.build())

        assert result.success
