"""
Placement eligibility filtering.

A single filter operation narrows discovered items (usually subnets) to the
ones whose availability zone a policy accepts. Two policies exist:

- StaticAllowList: keep items whose zone is in a caller-supplied set
- DynamicExclusion: drop items whose zone the provider reports as unsupported

The filter keeps input order and never returns an empty placement set.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Protocol, Sequence

from strata.catalog.models import PlacementMode, PlacementPolicyConfig
from strata.core.errors import PlacementError

DEFAULT_ZONE_KEY = "availability_zone"


class EligibilityPolicy(Protocol):
    """Decides whether a zone may receive a placement."""

    @property
    def description(self) -> str:
        ...

    def keeps(self, zone: str) -> bool:
        ...


@dataclass(frozen=True)
class StaticAllowList:
    zones: frozenset[str]

    @property
    def description(self) -> str:
        return f"allow-list {sorted(self.zones)}"

    def keeps(self, zone: str) -> bool:
        return zone in self.zones


@dataclass(frozen=True)
class DynamicExclusion:
    unsupported: frozenset[str]

    @property
    def description(self) -> str:
        return f"excluding unsupported {sorted(self.unsupported)}"

    def keeps(self, zone: str) -> bool:
        return zone not in self.unsupported


def filter_eligible(
    items: Sequence[dict[str, Any]],
    policy: EligibilityPolicy,
    *,
    zone_key: str = DEFAULT_ZONE_KEY,
) -> list[dict[str, Any]]:
    """
    Return the items the policy accepts, in input order.

    Items without a zone label are never eligible.

    Raises:
        PlacementError: when no item is eligible
    """
    eligible = [
        item
        for item in items
        if isinstance(item.get(zone_key), str) and policy.keeps(item[zone_key])
    ]
    if not eligible:
        zones = sorted({str(item.get(zone_key)) for item in items})
        raise PlacementError(
            f"No eligible placement targets ({policy.description}, discovered zones: {zones})",
            details={"discovered": len(items)},
        )
    return eligible


def build_policy(
    config: PlacementPolicyConfig,
    unsupported: Iterable[str] = (),
) -> EligibilityPolicy:
    """Select the policy variant a placement config asks for."""
    if config.mode == PlacementMode.STATIC:
        return StaticAllowList(zones=frozenset(config.zones))
    return DynamicExclusion(unsupported=frozenset(unsupported))
