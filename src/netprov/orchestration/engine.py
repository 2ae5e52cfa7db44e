"""Reconciler: drives resource nodes to convergence in dependency order.

Every node runs as its own task. A task waits on the ``ready`` values of its
dependencies, materializes its attributes, then submits through the handler
registered for its kind and polls until the external system reports a stable
state. A failed node fails its ``ready`` value, which makes every transitive
dependent record itself as skipped without being submitted; unrelated
branches keep going.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from netprov.config.settings import Settings
from netprov.core.errors import (
    NetprovError,
    ResourceCreationError,
    ResourceTimeoutError,
    TransientAPIError,
)
from netprov.deferred import materialize, wait_all
from netprov.graph.models import NodeStatus, ResourceGraph, ResourceNode
from netprov.logging import bind_context
from netprov.orchestration.handlers import matches
from netprov.orchestration.registry import HandlerContext, HandlerRegistry, ResourceHandler
from netprov.orchestration.results import RunResult
from netprov.orchestration.status import StatusTable
from netprov.providers.base import ApiResult

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class EnginePolicy:
    """Timeout, polling, concurrency and retry tunables."""

    node_timeout: float = 1200.0
    poll_interval: float = 5.0
    max_concurrency: int = 8
    retry_max_attempts: int = 5
    retry_backoff_multiplier: float = 2.0
    retry_backoff_min: float = 1.0
    retry_backoff_max: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "EnginePolicy":
        return cls(
            node_timeout=settings.node_timeout_seconds,
            poll_interval=settings.poll_interval_seconds,
            max_concurrency=settings.max_concurrency,
            retry_max_attempts=settings.retry_max_attempts,
            retry_backoff_multiplier=settings.retry_backoff_multiplier,
            retry_backoff_min=settings.retry_backoff_min,
            retry_backoff_max=settings.retry_backoff_max,
        )


class Reconciler:
    """Runs every node of a graph to a terminal status."""

    def __init__(self, registry: HandlerRegistry, policy: EnginePolicy | None = None) -> None:
        self._registry = registry
        self._policy = policy or EnginePolicy()

    async def run(self, graph: ResourceGraph) -> RunResult:
        """Drive the graph to a fixed point and return the per-node status map."""
        started = time.monotonic()
        graph.claim(started)
        table = StatusTable(graph.order)
        semaphore = asyncio.Semaphore(self._policy.max_concurrency)

        logger.info("run_started", nodes=len(graph))
        tasks = [
            asyncio.create_task(self._drive(graph, node, table, semaphore), name=str(node.key))
            for node in graph
        ]
        await asyncio.gather(*tasks)

        result = RunResult.from_table(graph, table, time.monotonic() - started)
        logger.info("run_finished", success=result.success, **result.counts())
        return result

    async def _drive(
        self,
        graph: ResourceGraph,
        node: ResourceNode,
        table: StatusTable,
        semaphore: asyncio.Semaphore,
    ) -> None:
        log = bind_context(resource=str(node.key))

        for dep_key in sorted(node.dependencies, key=lambda k: graph.node(k).index):
            try:
                await graph.node(dep_key).ready
            except Exception:
                message = f"dependency {dep_key} did not become ready"
                table.transition(node.key, NodeStatus.PENDING, NodeStatus.SKIPPED, error=message)
                node.ready.fail(ResourceCreationError(f"{node.key} skipped: {message}"))
                log.warning("node_skipped", dependency=str(dep_key))
                return

        handler = self._registry.get(node.key.kind)
        if handler is None:
            self._fail(node, table, ResourceCreationError(f"No handler for kind {node.key.kind}"), log)
            return

        timeout = node.spec.timeout or self._policy.node_timeout
        async with semaphore:
            try:
                async with asyncio.timeout(timeout) as deadline:
                    observed = await self._reconcile(node, handler, table, log)
            except TimeoutError as exc:
                if deadline.expired():
                    error: Exception = ResourceTimeoutError(
                        f"{node.key} did not become ready within {timeout:g}s",
                        {"status": table.get(node.key).value},
                    )
                else:
                    # Raised by the handler itself, not by the node deadline
                    error = ResourceCreationError(f"{node.key}: {str(exc) or type(exc).__name__}")
                self._fail(node, table, error, log)
                return
            except TransientAPIError as exc:
                error = ResourceCreationError(
                    f"{node.key}: gave up after {self._policy.retry_max_attempts} attempts: "
                    f"{exc.message}"
                )
                self._fail(node, table, error, log)
                return
            except NetprovError as exc:
                self._fail(node, table, ResourceCreationError(f"{node.key}: {exc.message}"), log)
                return
            except Exception as exc:
                self._fail(node, table, ResourceCreationError(f"{node.key}: {exc}"), log)
                return

        node.ready.resolve(observed.attributes)

    async def _reconcile(
        self,
        node: ResourceNode,
        handler: ResourceHandler,
        table: StatusTable,
        log: Any,
    ) -> ApiResult:
        ctx = await self._context(node)

        existing = await self._retrying(lambda: handler.read(ctx), log)
        table.transition(node.key, NodeStatus.PENDING, NodeStatus.SUBMITTED)
        if existing is not None and handler.is_ready(ctx, existing) and matches(ctx, existing):
            log.info("node_unchanged")
            result = existing
        else:
            result = await self._retrying(lambda: handler.submit(ctx), log)
            log.info("node_submitted", created=existing is None)

        table.transition(node.key, NodeStatus.SUBMITTED, NodeStatus.RECONCILING)
        while not handler.is_ready(ctx, result):
            await asyncio.sleep(self._policy.poll_interval)
            observed = await self._retrying(lambda: handler.read(ctx), log)
            if observed is not None:
                result = observed

        table.transition(node.key, NodeStatus.RECONCILING, NodeStatus.READY)
        log.info("node_ready")
        return result

    async def _context(self, node: ResourceNode) -> HandlerContext:
        """Wait for every embedded value, then substitute them into the spec."""
        embedded = node.spec.embedded_values()
        for outcome in await wait_all(embedded):
            if isinstance(outcome, BaseException):
                raise ResourceCreationError(f"unresolved input: {outcome}") from outcome
        return HandlerContext(
            key=node.key,
            attributes=materialize(node.spec.attributes),
            provider=materialize(node.spec.provider),
            ignore_changes=list(node.spec.ignore_changes),
        )

    async def _retrying(self, operation: Callable[[], Awaitable[T]], log: Any) -> T:
        policy = self._policy

        def _before_sleep(state: Any) -> None:
            log.warning(
                "transient_api_error",
                attempt=state.attempt_number,
                error=str(state.outcome.exception()),
            )

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientAPIError),
            stop=stop_after_attempt(policy.retry_max_attempts),
            wait=wait_exponential(
                multiplier=policy.retry_backoff_multiplier,
                min=policy.retry_backoff_min,
                max=policy.retry_backoff_max,
            ),
            before_sleep=_before_sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await operation()
        return result

    @staticmethod
    def _fail(node: ResourceNode, table: StatusTable, error: Exception, log: Any) -> None:
        table.finish(node.key, NodeStatus.FAILED, error=str(error))
        if not node.ready.done():
            node.ready.fail(error)
        log.error("node_failed", error=str(error))
