"""Discovery result models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from strata.catalog.models import DiscoveryQuery

# Query kind the provider answers with the zones a placement target cannot use.
UNSUPPORTED_ZONES_QUERY = "unsupported-zones"


@dataclass(frozen=True)
class DiscoveryResult:
    """Ordered items returned for one query, as first seen in this run."""

    query: DiscoveryQuery
    items: tuple[dict[str, Any], ...] = ()
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __len__(self) -> int:
        return len(self.items)

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query.describe(),
            "items": list(self.items),
            "fetched_at": self.fetched_at.isoformat(),
        }
