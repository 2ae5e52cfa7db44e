"""
Resource graph builder and dependency resolver.

Collects declared ResourceSpecs, registers explicit and implicit edges at
declaration time, validates the result is acyclic and produces a
deterministic topological order (ties broken by declaration order).
"""

from __future__ import annotations

import heapq

import structlog

from netprov.core.errors import ConfigurationError, DependencyCycleError
from netprov.graph.models import (
    DependencyEdge,
    ResourceGraph,
    ResourceKey,
    ResourceNode,
    ResourceSpec,
)

logger = structlog.get_logger()


class ResourceGraphBuilder:
    """Accumulates resource declarations and builds a validated DAG."""

    def __init__(self) -> None:
        self._specs: dict[ResourceKey, ResourceSpec] = {}
        self._edges: list[DependencyEdge] = []

    def __contains__(self, key: ResourceKey) -> bool:
        return key in self._specs

    @property
    def specs(self) -> list[ResourceSpec]:
        return list(self._specs.values())

    def add(self, spec: ResourceSpec) -> ResourceSpec:
        """Register a spec and the edges it declares or embeds."""
        if spec.key in self._specs:
            raise ConfigurationError(f"Duplicate resource declaration: {spec.key}")
        self._specs[spec.key] = spec

        for source in spec.depends_on:
            self._edges.append(DependencyEdge(source=source, target=spec.key))
        for source in sorted(spec.implicit_dependencies()):
            self._edges.append(DependencyEdge(source=source, target=spec.key, implicit=True))
        return spec

    def build(self) -> ResourceGraph:
        """Validate edges and return the graph in topological order."""
        index = {key: i for i, key in enumerate(self._specs)}
        dependencies: dict[ResourceKey, set[ResourceKey]] = {key: set() for key in self._specs}

        for edge in self._edges:
            if edge.source not in index:
                raise ConfigurationError(
                    f"{edge.target} depends on undeclared resource {edge.source}",
                    {"resource": str(edge.target), "dependency": str(edge.source)},
                )
            if edge.source == edge.target:
                raise DependencyCycleError([str(edge.source), str(edge.target)])
            dependencies[edge.target].add(edge.source)

        order = _topological_order(index, dependencies)

        nodes = {
            key: ResourceNode(
                spec=self._specs[key],
                dependencies=frozenset(dependencies[key]),
                index=index[key],
            )
            for key in self._specs
        }
        unique_edges = tuple(dict.fromkeys(self._edges))
        logger.debug("graph_built", nodes=len(nodes), edges=len(unique_edges))
        return ResourceGraph(nodes=nodes, order=tuple(order), edges=unique_edges)


def _topological_order(
    index: dict[ResourceKey, int],
    dependencies: dict[ResourceKey, set[ResourceKey]],
) -> list[ResourceKey]:
    """Kahn's algorithm over a heap keyed by declaration index."""
    remaining = {key: len(deps) for key, deps in dependencies.items()}
    dependents: dict[ResourceKey, list[ResourceKey]] = {key: [] for key in dependencies}
    for key, deps in dependencies.items():
        for dep in deps:
            dependents[dep].append(key)

    ready = [(index[key], key) for key, count in remaining.items() if count == 0]
    heapq.heapify(ready)
    order: list[ResourceKey] = []

    while ready:
        _, key = heapq.heappop(ready)
        order.append(key)
        for dependent in dependents[key]:
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(ready, (index[dependent], dependent))

    if len(order) != len(dependencies):
        blocked = {key for key, count in remaining.items() if count > 0}
        raise DependencyCycleError(_find_cycle(blocked, dependencies, index))
    return order


def _find_cycle(
    blocked: set[ResourceKey],
    dependencies: dict[ResourceKey, set[ResourceKey]],
    index: dict[ResourceKey, int],
) -> list[str]:
    """Walk dependency edges among blocked nodes until a node repeats."""
    start = min(blocked, key=index.__getitem__)
    path: list[ResourceKey] = []
    seen: dict[ResourceKey, int] = {}
    current = start
    while current not in seen:
        seen[current] = len(path)
        path.append(current)
        candidates = sorted(
            (dep for dep in dependencies[current] if dep in blocked), key=index.__getitem__
        )
        current = candidates[0]
    cycle = path[seen[current] :] + [current]
    return [str(key) for key in cycle]
