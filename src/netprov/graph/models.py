"""
Resource graph models.

Data models for declared resources, their identity keys and lifecycle
status, and the immutable graph produced by the builder.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from netprov.core.errors import ConfigurationError
from netprov.deferred import DeferredValue, iter_deferred


@dataclass(frozen=True, order=True)
class ResourceKey:
    """Stable identity of a resource: kind, name and optional scope.

    The scope is a namespace for cluster objects or a region for regional
    cloud resources; global resources have no scope.
    """

    kind: str
    name: str
    scope: str | None = None

    def __str__(self) -> str:
        if self.scope:
            return f"{self.kind}:{self.scope}/{self.name}"
        return f"{self.kind}:{self.name}"


class NodeStatus(StrEnum):
    """Lifecycle of a resource node within one run."""

    PENDING = "pending"  # Graph-built, not yet submitted
    SUBMITTED = "submitted"  # Create/update call issued
    RECONCILING = "reconciling"  # Waiting for a stable, queryable state
    READY = "ready"
    FAILED = "failed"
    SKIPPED = "skipped"  # Never submitted because a dependency failed

    @property
    def terminal(self) -> bool:
        return self in (NodeStatus.READY, NodeStatus.FAILED, NodeStatus.SKIPPED)


@dataclass
class ResourceSpec:
    """Declarative description of one external resource."""

    key: ResourceKey
    attributes: dict[str, Any] = field(default_factory=dict)
    depends_on: list[ResourceKey] = field(default_factory=list)
    provider: Any = None  # provider configuration, may be a DeferredValue
    timeout: float | None = None
    ignore_changes: list[str] = field(default_factory=list)

    def embedded_values(self) -> list[DeferredValue[Any]]:
        """Every DeferredValue embedded in attributes or provider config."""
        values = list(iter_deferred(self.attributes))
        values.extend(iter_deferred(self.provider))
        return values

    def implicit_dependencies(self) -> set[ResourceKey]:
        """Keys whose Ready transition an embedded value waits for."""
        keys: set[ResourceKey] = set()
        for value in self.embedded_values():
            keys |= value.producers
        return keys


@dataclass(frozen=True)
class DependencyEdge:
    """``target`` must not be submitted until ``source`` is Ready."""

    source: ResourceKey
    target: ResourceKey
    implicit: bool = False


@dataclass
class ResourceNode:
    """A spec plus its run-scoped state.

    ``ready`` resolves with the observed attributes once the node is Ready
    and fails when the node fails or is skipped. It settles once, so a node
    takes part in a single run.
    """

    spec: ResourceSpec
    dependencies: frozenset[ResourceKey]
    index: int
    ready: DeferredValue[dict[str, Any]] = field(init=False)

    def __post_init__(self) -> None:
        self.ready = DeferredValue(producers={self.spec.key}, label=str(self.spec.key))

    @property
    def key(self) -> ResourceKey:
        return self.spec.key


@dataclass(frozen=True)
class ResourceGraph:
    """Validated DAG of resource nodes in topological order.

    The structure is immutable; the nodes carry single-use ``ready`` values,
    so a graph can be run once. Declare the stack again to run again.
    """

    nodes: dict[ResourceKey, ResourceNode]
    order: tuple[ResourceKey, ...]
    edges: tuple[DependencyEdge, ...]
    _runs: list[float] = field(default_factory=list, init=False, repr=False, compare=False)

    def __len__(self) -> int:
        return len(self.order)

    def __iter__(self):
        return (self.nodes[key] for key in self.order)

    def node(self, key: ResourceKey) -> ResourceNode:
        return self.nodes[key]

    def dependencies(self, key: ResourceKey) -> frozenset[ResourceKey]:
        return self.nodes[key].dependencies

    def direct_dependents(self, key: ResourceKey) -> list[ResourceKey]:
        return [k for k in self.order if key in self.nodes[k].dependencies]

    def dependents(self, key: ResourceKey) -> list[ResourceKey]:
        """Transitive dependents of ``key`` in topological order."""
        found: set[ResourceKey] = set()
        frontier = [key]
        while frontier:
            current = frontier.pop()
            for dependent in self.direct_dependents(current):
                if dependent not in found:
                    found.add(dependent)
                    frontier.append(dependent)
        return [k for k in self.order if k in found]

    def claim(self, started: float) -> None:
        """Mark the graph as taken by a run; a second claim is refused."""
        if self._runs:
            raise ConfigurationError(
                "Resource graph has already been run; build a new graph to run again",
                {"nodes": len(self.order)},
            )
        self._runs.append(started)
