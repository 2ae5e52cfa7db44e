"""Result types for provisioning runs."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from netprov.graph.models import NodeStatus, ResourceGraph, ResourceKey
from netprov.orchestration.status import StatusEvent, StatusTable


@dataclass
class NodeReport:
    """Terminal state of one resource node."""

    key: ResourceKey
    status: NodeStatus
    dependencies: List[ResourceKey] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource": str(self.key),
            "status": self.status.value,
            "dependencies": [str(k) for k in self.dependencies],
            "error": self.error,
        }


@dataclass
class RunResult:
    """Per-node status map of one reconciler run."""

    nodes: Dict[ResourceKey, NodeReport] = field(default_factory=dict)
    events: Tuple[StatusEvent, ...] = ()
    duration_seconds: float = 0.0

    @classmethod
    def from_table(
        cls, graph: ResourceGraph, table: StatusTable, duration: float
    ) -> "RunResult":
        errors = table.errors
        nodes = {
            key: NodeReport(
                key=key,
                status=table.get(key),
                dependencies=sorted(graph.dependencies(key)),
                error=errors.get(key),
            )
            for key in graph.order
        }
        return cls(nodes=nodes, events=table.events, duration_seconds=duration)

    @property
    def statuses(self) -> Dict[ResourceKey, NodeStatus]:
        return {key: report.status for key, report in self.nodes.items()}

    def status_of(self, key: ResourceKey) -> NodeStatus:
        return self.nodes[key].status

    def with_status(self, status: NodeStatus) -> List[ResourceKey]:
        return [key for key, report in self.nodes.items() if report.status is status]

    @property
    def errors(self) -> Dict[ResourceKey, str]:
        return {key: r.error for key, r in self.nodes.items() if r.error is not None}

    @property
    def converged(self) -> bool:
        """Every node reached a terminal status."""
        return all(r.status.terminal for r in self.nodes.values())

    @property
    def success(self) -> bool:
        """Whether every node is Ready."""
        return all(r.status is NodeStatus.READY for r in self.nodes.values())

    def counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for report in self.nodes.values():
            counts[report.status.value] = counts.get(report.status.value, 0) + 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "duration_seconds": round(self.duration_seconds, 3),
            "counts": self.counts(),
            "resources": [report.to_dict() for report in self.nodes.values()],
        }
