"""Core definitions shared by every Strata component."""

from strata.core.errors import (
    ConfigError,
    ConfigErrorReason,
    ExitCode,
    GraphError,
    GraphErrorReason,
    PlacementError,
    PlacementErrorReason,
    ProviderError,
    ProviderErrorKind,
    StrataError,
    format_error_message,
    is_transient,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "StrataError",
    "ConfigError",
    "ConfigErrorReason",
    "GraphError",
    "GraphErrorReason",
    "ProviderError",
    "ProviderErrorKind",
    "PlacementError",
    "PlacementErrorReason",
    "format_error_message",
    "is_transient",
    "main_with_error_handling",
]
