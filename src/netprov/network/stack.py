"""
Stack: the declaration surface of a deployment program.

A program declares resources on a Stack and wires them together through
``Resource.attr(path)``, which yields a DeferredValue resolving from the
resource's observed attributes once it is Ready. Embedding such a value in
another resource's attributes (or provider) registers the dependency edge at
declaration time.
"""

from __future__ import annotations

from typing import Any, Iterable

import structlog

from netprov.config.document import get_path
from netprov.deferred import DeferredState, DeferredValue
from netprov.graph.builder import ResourceGraphBuilder
from netprov.graph.models import ResourceGraph, ResourceKey, ResourceSpec
from netprov.outputs import OutputExporter

logger = structlog.get_logger()


class Resource:
    """Handle to a declared resource."""

    def __init__(self, spec: ResourceSpec) -> None:
        self.spec = spec
        self.ready: DeferredValue[dict[str, Any]] = DeferredValue(
            producers={spec.key}, label=str(spec.key)
        )

    @property
    def key(self) -> ResourceKey:
        return self.spec.key

    def attr(self, path: str) -> DeferredValue[Any]:
        """Value at ``path`` of the observed attributes, once Ready.

        A path missing from the observed attributes fails the value, and
        with it any resource that embeds it.
        """
        return self.ready.apply(lambda attrs: get_path(attrs, path), label=f"{self.key}.{path}")

    def __repr__(self) -> str:
        return f"Resource({self.key})"


class Stack:
    """Collects resources and outputs for one deployment."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.outputs = OutputExporter()
        self._builder = ResourceGraphBuilder()
        self._resources: dict[ResourceKey, Resource] = {}
        self._graph: ResourceGraph | None = None

    def __len__(self) -> int:
        return len(self._resources)

    def __getitem__(self, key: ResourceKey) -> Resource:
        return self._resources[key]

    @property
    def resources(self) -> list[Resource]:
        return list(self._resources.values())

    def resource(
        self,
        kind: str,
        name: str,
        attributes: dict[str, Any] | None = None,
        *,
        scope: str | None = None,
        depends_on: Iterable[Resource | ResourceKey] = (),
        provider: Any = None,
        timeout: float | None = None,
        ignore_changes: Iterable[str] = (),
    ) -> Resource:
        """Declare a resource and return its handle."""
        if self._graph is not None:
            raise RuntimeError(f"Stack {self.name} is already built")
        spec = ResourceSpec(
            key=ResourceKey(kind=kind, name=name, scope=scope),
            attributes=attributes or {},
            depends_on=[d.key if isinstance(d, Resource) else d for d in depends_on],
            provider=provider,
            timeout=timeout,
            ignore_changes=list(ignore_changes),
        )
        self._builder.add(spec)
        handle = Resource(spec)
        self._resources[spec.key] = handle
        return handle

    def export(self, name: str, value: Any, *, secret: bool = False) -> None:
        self.outputs.declare(name, value, secret=secret)

    def build(self) -> ResourceGraph:
        """Build the graph once and bind each handle to its node."""
        if self._graph is None:
            graph = self._builder.build()
            for node in graph:
                node.ready.add_done_callback(_forward_to(self._resources[node.key].ready))
            self._graph = graph
            logger.info("stack_built", stack=self.name, resources=len(graph))
        return self._graph


def _forward_to(target: DeferredValue[Any]):
    def _settle(source: DeferredValue[Any]) -> None:
        if source.state is DeferredState.FAILED:
            target.fail(source.error)  # type: ignore[arg-type]
        else:
            target.resolve(source.value)

    return _settle
