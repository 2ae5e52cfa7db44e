"""
Deferred values: placeholders for data known only after an upstream operation.

A DeferredValue is created immediately (for example when a resource is
declared) and settles exactly once, either resolved with a value or failed
with an exception. Readers attach continuations with ``add_done_callback`` or
simply ``await`` it from a coroutine; settling never blocks the producer.

Every DeferredValue records the set of resource keys whose Ready transition it
waits for (``producers``). The graph builder uses that set to register the
implicit edges of any resource specification that embeds the value, so edges
are known before execution instead of being discovered at call time.

Combinators:

- ``value.apply(fn)`` derives a new DeferredValue from a single input
- ``DeferredValue.all(a, b, ...)`` waits for every input and yields a list
- ``DeferredValue.of(x)`` wraps an already-known value
"""

from __future__ import annotations

import asyncio
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Callable, Generator, Generic, Iterable, Iterator, TypeVar

import structlog

if TYPE_CHECKING:
    from netprov.graph.models import ResourceKey

logger = structlog.get_logger()

T = TypeVar("T")
U = TypeVar("U")

SECRET_PLACEHOLDER = "[secret]"


class DeferredState(StrEnum):
    PENDING = "pending"
    RESOLVED = "resolved"
    FAILED = "failed"


class DeferredValueError(RuntimeError):
    """Raised on reading an unsettled value or settling a value twice."""


class DeferredValue(Generic[T]):
    """A single-assignment value with continuations."""

    __slots__ = ("_state", "_value", "_error", "_callbacks", "producers", "label", "secret")

    def __init__(
        self,
        *,
        producers: Iterable[ResourceKey] = (),
        label: str | None = None,
        secret: bool = False,
    ) -> None:
        self._state = DeferredState.PENDING
        self._value: T | None = None
        self._error: BaseException | None = None
        self._callbacks: list[Callable[[DeferredValue[T]], None]] = []
        self.producers: frozenset[ResourceKey] = frozenset(producers)
        self.label = label or "value"
        self.secret = secret

    @classmethod
    def of(cls, value: T, *, label: str | None = None, secret: bool = False) -> DeferredValue[T]:
        """Return an already-resolved value."""
        deferred: DeferredValue[T] = cls(label=label, secret=secret)
        deferred.resolve(value)
        return deferred

    @staticmethod
    def all(*values: Any, label: str | None = None) -> DeferredValue[list[Any]]:
        """Wait for every input; resolve with their values in order.

        Plain (non-deferred) inputs are passed through unchanged. The first
        failing input fails the result.
        """
        deferred_inputs = [v for v in values if isinstance(v, DeferredValue)]
        producers: set[ResourceKey] = set()
        for v in deferred_inputs:
            producers |= v.producers
        combined: DeferredValue[list[Any]] = DeferredValue(
            producers=producers,
            label=label or f"all({', '.join(v.label for v in deferred_inputs)})",
            secret=any(v.secret for v in deferred_inputs),
        )

        def _check(_settled: DeferredValue[Any]) -> None:
            if combined.done():
                return
            for v in deferred_inputs:
                if v.state is DeferredState.FAILED:
                    combined.fail(v.error)  # type: ignore[arg-type]
                    return
            if all(v.done() for v in deferred_inputs):
                combined.resolve([v.value if isinstance(v, DeferredValue) else v for v in values])

        if not deferred_inputs:
            combined.resolve(list(values))
        for v in deferred_inputs:
            v.add_done_callback(_check)
        return combined

    @property
    def state(self) -> DeferredState:
        return self._state

    def done(self) -> bool:
        return self._state is not DeferredState.PENDING

    @property
    def value(self) -> T:
        if self._state is DeferredState.PENDING:
            raise DeferredValueError(f"{self.label} is not resolved yet")
        if self._state is DeferredState.FAILED:
            raise self._error  # type: ignore[misc]
        return self._value  # type: ignore[return-value]

    @property
    def error(self) -> BaseException | None:
        return self._error

    def resolve(self, value: T) -> None:
        if self.done():
            raise DeferredValueError(f"{self.label} already settled ({self._state})")
        self._value = value
        self._state = DeferredState.RESOLVED
        self._run_callbacks()

    def fail(self, error: BaseException) -> None:
        if self.done():
            raise DeferredValueError(f"{self.label} already settled ({self._state})")
        self._error = error
        self._state = DeferredState.FAILED
        self._run_callbacks()

    def add_done_callback(self, callback: Callable[[DeferredValue[T]], None]) -> None:
        """Attach a continuation; runs immediately when already settled."""
        if self.done():
            callback(self)
        else:
            self._callbacks.append(callback)

    def _run_callbacks(self) -> None:
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                logger.exception("deferred_callback_failed", label=self.label)

    def apply(self, fn: Callable[[T], U], *, label: str | None = None) -> DeferredValue[U]:
        """Derive a value by transforming this one once it resolves.

        ``fn`` may itself return a DeferredValue, in which case the result
        follows it. Its producers are only known once ``fn`` runs, after the
        graph is built, so it must wait on nothing beyond this value's own
        producers; otherwise the result fails instead of racing an edge the
        graph never registered.
        """
        derived: DeferredValue[U] = DeferredValue(
            producers=self.producers, label=label or self.label, secret=self.secret
        )

        def _settle_from(source: DeferredValue[Any]) -> None:
            if source.state is DeferredState.FAILED:
                derived.fail(source.error)  # type: ignore[arg-type]
            else:
                derived.resolve(source.value)

        def _transform(source: DeferredValue[T]) -> None:
            if source.state is DeferredState.FAILED:
                derived.fail(source.error)  # type: ignore[arg-type]
                return
            try:
                result = fn(source.value)
            except Exception as exc:
                derived.fail(exc)
                return
            if isinstance(result, DeferredValue):
                unregistered = result.producers - derived.producers
                if unregistered:
                    derived.fail(
                        DeferredValueError(
                            f"{derived.label} follows a value produced by "
                            f"{', '.join(sorted(str(k) for k in unregistered))}, "
                            "which it does not declare as a producer"
                        )
                    )
                    return
                result.add_done_callback(_settle_from)
            else:
                derived.resolve(result)

        self.add_done_callback(_transform)
        return derived

    def __await__(self) -> Generator[Any, None, T]:
        if not self.done():
            future = asyncio.get_running_loop().create_future()

            def _wake(source: DeferredValue[T]) -> None:
                if future.done():
                    return
                if source.state is DeferredState.FAILED:
                    future.set_exception(source.error)  # type: ignore[arg-type]
                else:
                    future.set_result(source.value)

            self.add_done_callback(_wake)
            return (yield from future.__await__())
        return self.value

    def __bool__(self) -> bool:
        raise DeferredValueError(
            f"{self.label} has no truth value; await it or use apply()"
        )

    def __repr__(self) -> str:
        if self._state is DeferredState.RESOLVED:
            shown = SECRET_PLACEHOLDER if self.secret else repr(self._value)
            return f"<DeferredValue {self.label} resolved={shown}>"
        return f"<DeferredValue {self.label} {self._state}>"


def iter_deferred(document: Any) -> Iterator[DeferredValue[Any]]:
    """Yield every DeferredValue embedded in a nested dict/list document."""
    if isinstance(document, DeferredValue):
        yield document
    elif isinstance(document, dict):
        for value in document.values():
            yield from iter_deferred(value)
    elif isinstance(document, (list, tuple)):
        for item in document:
            yield from iter_deferred(item)


def materialize(document: Any) -> Any:
    """Return a copy of ``document`` with every DeferredValue replaced by its value.

    Raises DeferredValueError when any embedded value is still pending, so a
    caller can never submit a document containing unresolved placeholders.
    """
    if isinstance(document, DeferredValue):
        return materialize(document.value)
    if isinstance(document, dict):
        return {k: materialize(v) for k, v in document.items()}
    if isinstance(document, list):
        return [materialize(v) for v in document]
    if isinstance(document, tuple):
        return tuple(materialize(v) for v in document)
    return document


def render(document: Any) -> Any:
    """Render a document for display: pending values as markers, secrets masked."""
    if isinstance(document, DeferredValue):
        if document.secret:
            return SECRET_PLACEHOLDER
        if document.state is DeferredState.RESOLVED:
            return render(document.value)
        if document.state is DeferredState.FAILED:
            return f"<failed {document.label}>"
        return f"<pending {document.label}>"
    if isinstance(document, dict):
        return {k: render(v) for k, v in document.items()}
    if isinstance(document, (list, tuple)):
        return [render(v) for v in document]
    return document


async def wait_all(values: Iterable[DeferredValue[Any]]) -> list[Any]:
    """Await every value, collecting results or exceptions in order."""
    return list(await asyncio.gather(*values, return_exceptions=True))
