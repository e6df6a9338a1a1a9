"""Capped exponential backoff for provider calls."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from strata.core.errors import is_transient

logger = structlog.get_logger()

Sleep = Callable[[float], Awaitable[Any]]


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "provider_call_retrying",
        attempt=retry_state.attempt_number,
        wait=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
        error=str(exc),
    )


@dataclass(frozen=True)
class RetryPolicy:
    """Retry transient provider errors with capped exponential backoff.

    Waits ``base * 2**(n-1)`` seconds after the n-th failed attempt, never
    more than ``cap``, and gives up after ``max_attempts`` attempts in total.
    """

    max_attempts: int
    base_seconds: float = 1.0
    cap_seconds: float = 30.0

    def retrying(self, sleep: Sleep = asyncio.sleep) -> AsyncRetrying:
        return AsyncRetrying(
            sleep=sleep,
            retry=retry_if_exception(is_transient),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_seconds, max=self.cap_seconds),
            before_sleep=_log_retry,
            reraise=True,
        )

    async def run(
        self,
        func: Callable[[], Awaitable[Any]],
        *,
        sleep: Sleep = asyncio.sleep,
        on_attempt: Callable[[int], None] | None = None,
    ) -> Any:
        """Await ``func()`` until it succeeds, fails permanently or runs out of attempts."""
        async for attempt in self.retrying(sleep):
            with attempt:
                if on_attempt is not None:
                    on_attempt(attempt.retry_state.attempt_number)
                return await func()
        raise RuntimeError("retry loop exited without an outcome")  # pragma: no cover
