"""
Unified error taxonomy for Strata.

Every failure the engine can surface derives from StrataError, which carries
the exit code the CLI returns for it.

Exit Codes:
- 0: Success (all units succeeded)
- 1: Partial failure (some units failed or were skipped)
- 2: Aborted (run stopped before or during execution)
- 10: Configuration error
- 11: Provider error (external service failure)
- 12: Graph error (cycle or unresolved reference)
- 13: Placement error (no eligible targets)
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum, StrEnum
from typing import Any, Callable, Sequence, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    PARTIAL_FAILURE = 1
    ABORTED = 2
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    GRAPH_ERROR = 12
    PLACEMENT_ERROR = 13
    UNKNOWN_ERROR = 127


class StrataError(Exception):
    """Base exception for Strata errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigErrorReason(StrEnum):
    DUPLICATE_ID = "duplicate_id"
    UNKNOWN_KIND = "unknown_kind"
    SCHEMA_VIOLATION = "schema_violation"
    INVALID_SCALING_BOUNDS = "invalid_scaling_bounds"
    UNDEFINED_VARIABLE = "undefined_variable"
    INVALID_FILE = "invalid_file"


class ConfigError(StrataError):
    """Raised for bad declarations, before any graph is built."""

    exit_code = ExitCode.CONFIG_ERROR

    def __init__(
        self,
        reason: ConfigErrorReason,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.reason = reason


class GraphErrorReason(StrEnum):
    CYCLE_DETECTED = "cycle_detected"
    UNRESOLVED_REFERENCE = "unresolved_reference"


class GraphError(StrataError):
    """Raised when the dependency graph cannot be built.

    For cycles, ``path`` is a closed path such as ``("a", "b", "a")`` where
    each element depends on the next.
    """

    exit_code = ExitCode.GRAPH_ERROR

    def __init__(
        self,
        reason: GraphErrorReason,
        message: str,
        path: Sequence[str] = (),
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.reason = reason
        self.path = tuple(path)


class ProviderErrorKind(StrEnum):
    TRANSIENT = "transient"
    PERMISSION = "permission"
    QUOTA = "quota"
    NOT_FOUND = "not_found"
    REJECTED = "rejected"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"


class ProviderError(StrataError):
    """Raised when an external provider call fails."""

    exit_code = ExitCode.PROVIDER_ERROR

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.kind = kind

    @property
    def is_transient(self) -> bool:
        return self.kind == ProviderErrorKind.TRANSIENT


class PlacementErrorReason(StrEnum):
    NO_ELIGIBLE_TARGETS = "no_eligible_targets"


class PlacementError(StrataError):
    """Raised when an eligibility filter leaves nothing to place onto."""

    exit_code = ExitCode.PLACEMENT_ERROR

    def __init__(
        self,
        message: str,
        reason: PlacementErrorReason = PlacementErrorReason.NO_ELIGIBLE_TARGETS,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.reason = reason


def is_transient(exc: BaseException) -> bool:
    """Return True for errors worth retrying."""
    return isinstance(exc, ProviderError) and exc.is_transient


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI command functions that provides unified error handling.

    Exit codes:
        - StrataError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except StrataError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
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
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: StrataError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
