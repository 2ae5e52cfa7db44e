"""Node status table with per-node compare-and-set transitions.

The reconciler is the only writer. Every accepted transition is appended to
an event log that is never rewritten; readers (reports, exporter) take
snapshots.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Iterable

from netprov.graph.models import NodeStatus, ResourceKey

_ALLOWED: dict[NodeStatus, frozenset[NodeStatus]] = {
    NodeStatus.PENDING: frozenset({NodeStatus.SUBMITTED, NodeStatus.FAILED, NodeStatus.SKIPPED}),
    NodeStatus.SUBMITTED: frozenset({NodeStatus.RECONCILING, NodeStatus.FAILED}),
    NodeStatus.RECONCILING: frozenset({NodeStatus.READY, NodeStatus.FAILED}),
    NodeStatus.READY: frozenset(),
    NodeStatus.FAILED: frozenset(),
    NodeStatus.SKIPPED: frozenset(),
}


class InvalidTransition(RuntimeError):
    """A transition not permitted by the node lifecycle."""


@dataclass(frozen=True)
class StatusEvent:
    key: ResourceKey
    previous: NodeStatus
    status: NodeStatus
    at: float
    error: str | None = None


class StatusTable:
    def __init__(self, keys: Iterable[ResourceKey]) -> None:
        self._status: dict[ResourceKey, NodeStatus] = {key: NodeStatus.PENDING for key in keys}
        self._errors: dict[ResourceKey, str] = {}
        self._events: list[StatusEvent] = []

    def get(self, key: ResourceKey) -> NodeStatus:
        return self._status[key]

    def transition(
        self,
        key: ResourceKey,
        expected: NodeStatus,
        new: NodeStatus,
        *,
        error: str | None = None,
    ) -> bool:
        """Move ``key`` from ``expected`` to ``new``.

        Returns False without changing anything when the current status is not
        ``expected``. Raises InvalidTransition for moves the lifecycle forbids.
        """
        current = self._status[key]
        if current is not expected:
            return False
        if new not in _ALLOWED[current]:
            raise InvalidTransition(f"{key}: {current} -> {new} is not a valid transition")
        self._status[key] = new
        if error is not None:
            self._errors[key] = error
        self._events.append(
            StatusEvent(key=key, previous=current, status=new, at=time.monotonic(), error=error)
        )
        return True

    def finish(self, key: ResourceKey, new: NodeStatus, *, error: str | None = None) -> bool:
        """Move a non-terminal node to a terminal status from wherever it is."""
        current = self._status[key]
        if current.terminal:
            return False
        return self.transition(key, current, new, error=error)

    def snapshot(self) -> dict[ResourceKey, NodeStatus]:
        return dict(self._status)

    @property
    def errors(self) -> dict[ResourceKey, str]:
        return dict(self._errors)

    @property
    def events(self) -> tuple[StatusEvent, ...]:
        return tuple(self._events)

    def converged(self) -> bool:
        return all(status.terminal for status in self._status.values())
