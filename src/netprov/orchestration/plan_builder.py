"""Dry-run plan builder.

Renders the graph in submission order without calling any external API.
Values not known yet appear as ``<pending ...>`` markers and secrets as
``[secret]``, so a plan can be stored and diffed between runs.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

import yaml

from netprov.deferred import render
from netprov.graph.models import ResourceGraph
from netprov.orchestration.registry import HandlerRegistry


@dataclass
class PlanStep:
    resource: str
    action: str
    dependencies: List[str]
    attributes: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource": self.resource,
            "action": self.action,
            "dependencies": self.dependencies,
            "attributes": self.attributes,
        }


@dataclass
class PlanResult:
    """Result of planning (dry-run) a graph."""

    steps: List[PlanStep] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def total_resources(self) -> int:
        return len(self.steps)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    def to_yaml(self) -> str:
        return yaml.safe_dump(
            {"steps": [step.to_dict() for step in self.steps]},
            sort_keys=False,
            default_flow_style=False,
        )


class PlanBuilder:
    """Builds a plan by walking the graph in topological order."""

    def __init__(self, registry: HandlerRegistry) -> None:
        self._registry = registry

    def build(self, graph: ResourceGraph) -> PlanResult:
        result = PlanResult()

        if len(graph) == 0:
            result.warnings.append("No resources declared.")

        for node in graph:
            if self._registry.get(node.key.kind) is None:
                result.errors.append(f"No handler registered for kind {node.key.kind} ({node.key})")
            result.steps.append(
                PlanStep(
                    resource=str(node.key),
                    action="upsert",
                    dependencies=[
                        str(k) for k in sorted(node.dependencies, key=lambda k: graph.node(k).index)
                    ],
                    attributes=render(node.spec.attributes),
                )
            )
        return result
