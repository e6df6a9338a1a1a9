"""
Discovery resolver.

Runs read-only inventory queries against the provider. Results are cached per
query signature for the lifetime of the resolver, which is one engine run.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from strata.catalog.models import DiscoveryQuery
from strata.core.errors import ProviderError, ProviderErrorKind
from strata.core.retry import RetryPolicy, Sleep
from strata.discovery.models import UNSUPPORTED_ZONES_QUERY, DiscoveryResult

if TYPE_CHECKING:
    from strata.providers.base import CloudProvider

logger = structlog.get_logger()

DEFAULT_DISCOVERY_RETRY = RetryPolicy(max_attempts=5, base_seconds=1.0, cap_seconds=30.0)


class DiscoveryResolver:
    """Resolve discovery queries with per-signature caching and locking."""

    def __init__(
        self,
        provider: "CloudProvider",
        retry_policy: RetryPolicy = DEFAULT_DISCOVERY_RETRY,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._retry = retry_policy
        self._sleep = sleep
        self._cache: dict[str, DiscoveryResult] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, signature: str) -> asyncio.Lock:
        return self._locks.setdefault(signature, asyncio.Lock())

    async def resolve(self, query: DiscoveryQuery) -> DiscoveryResult:
        """
        Return the items for ``query``, calling the provider at most once.

        Raises:
            ProviderError: UNAVAILABLE once transient failures exhaust the
                retries; non-transient errors are raised unchanged
        """
        signature = query.signature
        async with self._lock_for(signature):
            cached = self._cache.get(signature)
            if cached is not None:
                logger.debug("discovery_cache_hit", query=query.describe())
                return cached

            items = await self._fetch(query)
            result = DiscoveryResult(query=query, items=tuple(items))
            self._cache[signature] = result
            logger.info("discovery_resolved", query=query.describe(), items=len(result))
            return result

    async def unsupported_zones(self, target: str) -> frozenset[str]:
        """Zones the provider reports ``target`` cannot be placed in."""
        result = await self.resolve(
            DiscoveryQuery(kind=UNSUPPORTED_ZONES_QUERY, filters={"target": target})
        )
        return frozenset(str(item["zone"]) for item in result.items if "zone" in item)

    async def _fetch(self, query: DiscoveryQuery) -> list[dict]:
        try:
            return list(
                await self._retry.run(
                    lambda: self._provider.list(query.kind, dict(query.filters)),
                    sleep=self._sleep,
                )
            )
        except ProviderError as exc:
            if not exc.is_transient:
                raise
            logger.error("discovery_unavailable", query=query.describe(), error=exc.message)
            raise ProviderError(
                ProviderErrorKind.UNAVAILABLE,
                f"Discovery '{query.describe()}' unavailable after "
                f"{self._retry.max_attempts} attempts: {exc.message}",
                {"query": query.describe()},
            ) from exc
