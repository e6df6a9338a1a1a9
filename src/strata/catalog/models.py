"""
Resource catalog models.

A catalog is the validated, in-memory form of one set of declarations:
resource specs, their explicit dependencies, and the named placement
policies discovery queries may refer to.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Iterator

from strata.catalog.references import Reference, iter_references


class PlacementMode(StrEnum):
    STATIC = "static"
    DYNAMIC = "dynamic"


@dataclass(frozen=True)
class PlacementPolicyConfig:
    """Named placement policy as declared.

    ``static`` keeps items whose zone is in ``zones``; ``dynamic`` asks the
    provider which zones ``target`` does not support and drops those.
    """

    name: str
    mode: PlacementMode
    zones: tuple[str, ...] = ()
    target: str | None = None
    zone_key: str = "availability_zone"


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


@dataclass(frozen=True)
class DiscoveryQuery:
    """A read-only inventory request, e.g. subnets in one VPC."""

    kind: str
    filters: dict[str, Any] = field(default_factory=dict)

    @property
    def signature(self) -> str:
        return f"{self.kind}:{_canonical(self.filters)}"

    def describe(self) -> str:
        rendered = ",".join(f"{key}={self.filters[key]}" for key in sorted(self.filters))
        return f"{self.kind}[{rendered}]"


@dataclass(frozen=True)
class DiscoveryDeclaration:
    """Inline discovery value of a resource attribute."""

    query: DiscoveryQuery
    placement: str | None = None
    select: str | None = None

    @property
    def unit_id(self) -> str:
        unit_id = f"discovery.{self.query.describe()}"
        if self.placement:
            unit_id += f"@{self.placement}"
        if self.select:
            unit_id += f".{self.select}"
        return unit_id


@dataclass(frozen=True)
class ResourceSpec:
    """A declared unit of infrastructure."""

    id: str
    kind: str
    attributes: dict[str, Any] = field(default_factory=dict)
    explicit_dependencies: frozenset[str] = frozenset()

    def references(self) -> list[Reference]:
        return list(iter_references(self.attributes))

    def discoveries(self) -> list[DiscoveryDeclaration]:
        found: dict[str, DiscoveryDeclaration] = {}
        for declaration in _iter_discoveries(self.attributes):
            found.setdefault(declaration.unit_id, declaration)
        return list(found.values())


def _iter_discoveries(value: Any) -> Iterator[DiscoveryDeclaration]:
    if isinstance(value, DiscoveryDeclaration):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _iter_discoveries(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _iter_discoveries(item)


@dataclass
class Catalog:
    """Validated resource declarations for one engine invocation."""

    resources: dict[str, ResourceSpec] = field(default_factory=dict)
    placements: dict[str, PlacementPolicyConfig] = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)

    def get(self, resource_id: str) -> ResourceSpec | None:
        return self.resources.get(resource_id)

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self.resources

    def __iter__(self) -> Iterator[ResourceSpec]:
        return iter(self.resources.values())

    def __len__(self) -> int:
        return len(self.resources)
