"""Resource handler protocol and registry for orchestration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from netprov.graph.models import ResourceKey
from netprov.providers.base import ApiResult


@dataclass
class HandlerContext:
    """Fully-resolved inputs for one handler call."""

    key: ResourceKey
    attributes: Dict[str, Any]
    provider: Any = None
    ignore_changes: List[str] = field(default_factory=list)


@runtime_checkable
class ResourceHandler(Protocol):
    """Adapter mapping resource kinds onto an external API."""

    @property
    def kinds(self) -> tuple[str, ...]:
        """Resource kinds handled (e.g. 'gcp:compute/Address')."""
        ...

    async def read(self, ctx: HandlerContext) -> Optional[ApiResult]:
        """Current external state, or None when the resource does not exist."""
        ...

    async def submit(self, ctx: HandlerContext) -> ApiResult:
        """Create or update the resource (upsert by identity key)."""
        ...

    def is_ready(self, ctx: HandlerContext, result: ApiResult) -> bool:
        """Whether the reported state is stable and queryable."""
        ...


class HandlerRegistry:
    """In-memory registry of handlers keyed by resource kind."""

    def __init__(self) -> None:
        self._handlers: Dict[str, ResourceHandler] = {}

    def register(self, handler: ResourceHandler) -> None:
        """Register a handler for every kind it declares."""
        for kind in handler.kinds:
            self._handlers[kind] = handler

    def get(self, kind: str) -> Optional[ResourceHandler]:
        return self._handlers.get(kind)

    def list(self) -> List[str]:
        """List all registered kinds."""
        return list(self._handlers.keys())
