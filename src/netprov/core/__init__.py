"""Core definitions shared across netprov."""

from netprov.core.errors import (
    ConfigurationError,
    DependencyCycleError,
    ExitCode,
    NetprovError,
    PermanentAPIError,
    ResourceCreationError,
    ResourceNotFound,
    ResourceTimeoutError,
    TransientAPIError,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "NetprovError",
    "ConfigurationError",
    "DependencyCycleError",
    "ResourceCreationError",
    "ResourceTimeoutError",
    "TransientAPIError",
    "PermanentAPIError",
    "ResourceNotFound",
    "format_error_message",
    "main_with_error_handling",
]
