"""Discovery: read-only inventory queries and placement eligibility."""

from strata.discovery.eligibility import (
    DynamicExclusion,
    EligibilityPolicy,
    StaticAllowList,
    build_policy,
    filter_eligible,
)
from strata.discovery.models import UNSUPPORTED_ZONES_QUERY, DiscoveryResult
from strata.discovery.resolver import DiscoveryResolver

__all__ = [
    "DiscoveryResolver",
    "DiscoveryResult",
    "DynamicExclusion",
    "EligibilityPolicy",
    "StaticAllowList",
    "UNSUPPORTED_ZONES_QUERY",
    "build_policy",
    "filter_eligible",
]
