"""
Error taxonomy for provisioning runs.

Two classes of failure exist:

- Run-level errors (ConfigurationError, DependencyCycleError) abort the whole
  run before any external resource call is made.
- Node-level errors (ResourceCreationError and its subclasses) are recorded
  against a single resource node and never abort independent branches.

Provider clients classify raw API failures into TransientAPIError (retried
with backoff), PermanentAPIError and ResourceNotFound.

Exit Codes:
- 0: Success (every node Ready)
- 1: Partial (run converged with failed or skipped nodes)
- 10: Configuration error
- 11: Resource creation error
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Process exit codes for the netprov entry point."""

    SUCCESS = 0
    PARTIAL = 1
    CONFIG_ERROR = 10
    RESOURCE_ERROR = 11
    UNKNOWN_ERROR = 127


class NetprovError(Exception):
    """Base exception carrying an exit code and structured details."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(NetprovError):
    """Malformed or missing template, stack setting or secret."""

    exit_code = ExitCode.CONFIG_ERROR


class DependencyCycleError(ConfigurationError):
    """The declared resources do not form a DAG."""

    def __init__(self, cycle: list[str]):
        self.cycle = list(cycle)
        super().__init__(
            f"Dependency cycle detected: {' -> '.join(self.cycle)}",
            {"cycle": self.cycle},
        )


class ResourceCreationError(NetprovError):
    """A single resource node could not be brought to Ready."""

    exit_code = ExitCode.RESOURCE_ERROR


class ResourceTimeoutError(ResourceCreationError):
    """A node did not reach Ready within its time budget."""


class TransientAPIError(NetprovError):
    """Retryable external API failure (throttling, 5xx, network)."""

    exit_code = ExitCode.RESOURCE_ERROR


class PermanentAPIError(NetprovError):
    """Non-retryable rejection from an external API."""

    exit_code = ExitCode.RESOURCE_ERROR


class ResourceNotFound(NetprovError):
    """The external system has no resource for the requested identity key."""

    exit_code = ExitCode.RESOURCE_ERROR


F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for entry-point functions mapping exceptions to exit codes.

    Usage:
        @main_with_error_handling()
        def up_command(args) -> int:
            ...
            return 0
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except NetprovError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=int(e.exit_code),
                        **e.details,
                    )
                from netprov.cli.ux import error as print_error

                print_error(format_error_message(e))
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=int(ExitCode.UNKNOWN_ERROR),
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: NetprovError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
