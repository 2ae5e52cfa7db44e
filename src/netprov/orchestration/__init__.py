"""Orchestration package: dependency-ordered reconciliation of resources."""

from netprov.orchestration.engine import EnginePolicy, Reconciler
from netprov.orchestration.handlers import register_default_handlers
from netprov.orchestration.plan_builder import PlanBuilder, PlanResult
from netprov.orchestration.registry import (
    HandlerContext,
    HandlerRegistry,
    ResourceHandler,
)
from netprov.orchestration.results import NodeReport, RunResult
from netprov.orchestration.status import StatusTable

__all__ = [
    "EnginePolicy",
    "HandlerContext",
    "HandlerRegistry",
    "NodeReport",
    "PlanBuilder",
    "PlanResult",
    "Reconciler",
    "ResourceHandler",
    "RunResult",
    "StatusTable",
    "register_default_handlers",
]
