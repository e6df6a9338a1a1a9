"""Shared setup for the plan/apply/destroy commands."""

from __future__ import annotations

import asyncio
import signal
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from strata.catalog.loader import load_file
from strata.catalog.models import Catalog
from strata.config.settings import Settings, get_settings
from strata.orchestration.engine import TransitionCallback
from strata.orchestrator import Orchestrator

logger = structlog.get_logger()

T = TypeVar("T")


def resolve_settings(**overrides: Any) -> Settings:
    """Settings from the environment with CLI flags layered on top."""
    updates = {key: value for key, value in overrides.items() if value is not None}
    return get_settings().model_copy(update=updates)


def open_orchestrator(
    catalog_path: str,
    variables: dict[str, Any] | None,
    settings: Settings,
    on_transition: TransitionCallback | None = None,
) -> Orchestrator:
    """
    Load the catalog and wire state store and provider.

    Raises:
        ConfigError: when the catalog file or the state file is invalid
    """
    catalog: Catalog = load_file(catalog_path, variables)
    logger.debug("catalog_loaded", path=catalog_path, resources=len(catalog))
    return Orchestrator.from_settings(catalog, settings, on_transition=on_transition)


def run_cancellable(
    orchestrator: Orchestrator, operation: Callable[[], Awaitable[T]]
) -> T:
    """Run ``operation`` with SIGINT wired to a graceful cancel of the run."""

    async def _main() -> T:
        loop = asyncio.get_running_loop()
        installed = False
        try:
            loop.add_signal_handler(signal.SIGINT, orchestrator.cancel, "interrupted by SIGINT")
            installed = True
        except (NotImplementedError, RuntimeError):
            # No signal support here (Windows, or not on the main thread).
            logger.debug("sigint_handler_unavailable")
        try:
            return await operation()
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)

    return asyncio.run(_main())
