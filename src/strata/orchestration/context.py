"""Run-scoped context threaded through every resolver and engine call."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

from strata.catalog.models import Catalog
from strata.config.settings import Settings
from strata.core.retry import RetryPolicy, Sleep
from strata.discovery.resolver import DiscoveryResolver
from strata.providers.base import CloudProvider
from strata.state.store import StateStore

logger = structlog.get_logger()


class RunMode(StrEnum):
    PLAN = "plan"
    APPLY = "apply"
    DESTROY = "destroy"


def _run_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class RunContext:
    """Everything one engine invocation needs; discarded when the run ends."""

    mode: RunMode
    catalog: Catalog
    provider: CloudProvider
    state: StateStore
    settings: Settings
    resolver: DiscoveryResolver
    sleep: Sleep = asyncio.sleep
    run_id: str = field(default_factory=_run_id)
    outputs: dict[str, dict[str, Any]] = field(default_factory=dict)
    cancel_reason: str | None = None
    _cancelled: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @classmethod
    def create(
        cls,
        mode: RunMode,
        catalog: Catalog,
        provider: CloudProvider,
        state: StateStore,
        settings: Settings,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> "RunContext":
        """Build a context with a fresh discovery cache for this run."""
        resolver = DiscoveryResolver(
            provider,
            RetryPolicy(
                max_attempts=settings.discovery_max_attempts,
                base_seconds=settings.discovery_backoff_base_seconds,
                cap_seconds=settings.discovery_backoff_cap_seconds,
            ),
            sleep=sleep,
        )
        return cls(
            mode=mode,
            catalog=catalog,
            provider=provider,
            state=state,
            settings=settings,
            resolver=resolver,
            sleep=sleep,
        )

    @property
    def region(self) -> str:
        return self.settings.region

    @property
    def action_retry(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.settings.action_max_attempts,
            base_seconds=self.settings.action_backoff_base_seconds,
            cap_seconds=self.settings.action_backoff_cap_seconds,
        )

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self, reason: str) -> None:
        """Stop scheduling new units; units already running finish."""
        if self._cancelled.is_set():
            return
        self.cancel_reason = reason
        self._cancelled.set()
        logger.warning("run_cancelled", run_id=self.run_id, reason=reason)
