"""Resource catalog: declarations, kinds and attribute references."""

from strata.catalog.kinds import KindSchema, get_kind, list_kinds, register_kind
from strata.catalog.loader import load, load_file, parse_variable_bindings
from strata.catalog.models import (
    Catalog,
    DiscoveryDeclaration,
    DiscoveryQuery,
    PlacementMode,
    PlacementPolicyConfig,
    ResourceSpec,
)
from strata.catalog.references import UNKNOWN, Reference, contains_unknown, resolve_value

__all__ = [
    "Catalog",
    "DiscoveryDeclaration",
    "DiscoveryQuery",
    "KindSchema",
    "PlacementMode",
    "PlacementPolicyConfig",
    "Reference",
    "ResourceSpec",
    "UNKNOWN",
    "contains_unknown",
    "get_kind",
    "list_kinds",
    "load",
    "load_file",
    "parse_variable_bindings",
    "register_kind",
    "resolve_value",
]
