"""Resource graph: declarations, identity keys and dependency resolution."""

from netprov.graph.builder import ResourceGraphBuilder
from netprov.graph.models import (
    DependencyEdge,
    NodeStatus,
    ResourceGraph,
    ResourceKey,
    ResourceNode,
    ResourceSpec,
)

__all__ = [
    "DependencyEdge",
    "NodeStatus",
    "ResourceGraph",
    "ResourceGraphBuilder",
    "ResourceKey",
    "ResourceNode",
    "ResourceSpec",
]
