"""
Declaration loading and validation.

Turns raw declarations (usually a YAML document) plus variable bindings into
a validated Catalog. Loading is pure: nothing here talks to a provider.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Mapping

import structlog
import yaml

from strata.catalog.kinds import get_kind, list_kinds
from strata.catalog.models import (
    Catalog,
    DiscoveryDeclaration,
    DiscoveryQuery,
    PlacementMode,
    PlacementPolicyConfig,
    ResourceSpec,
)
from strata.catalog.references import VARIABLE_PREFIX, substitute_variables
from strata.core.errors import ConfigError, ConfigErrorReason

logger = structlog.get_logger()

RESOURCE_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")

RESERVED_IDS = frozenset({VARIABLE_PREFIX, "discovery"})

DISCOVERY_KEYS = frozenset({"discover", "filters", "placement", "select"})


def _schema_error(message: str, **details: Any) -> ConfigError:
    return ConfigError(ConfigErrorReason.SCHEMA_VIOLATION, message, details)


def load(
    declarations: Mapping[str, Any],
    variables: Mapping[str, Any] | None = None,
) -> Catalog:
    """
    Validate declarations and build a Catalog.

    Args:
        declarations: Mapping with ``resources`` and optional ``variables``
            and ``placement`` sections
        variables: Bindings overriding the declared variable defaults

    Raises:
        ConfigError: on duplicate ids, unknown kinds, schema violations,
            invalid scaling bounds or undefined variables
    """
    if not isinstance(declarations, Mapping):
        raise ConfigError(ConfigErrorReason.INVALID_FILE, "Declarations must be a mapping")

    bindings: dict[str, Any] = dict(declarations.get("variables") or {})
    bindings.update(variables or {})

    try:
        resources_raw = substitute_variables(list(declarations.get("resources") or []), bindings)
        placement_raw = substitute_variables(dict(declarations.get("placement") or {}), bindings)
    except KeyError as exc:
        name = exc.args[0]
        raise ConfigError(
            ConfigErrorReason.UNDEFINED_VARIABLE,
            f"Variable '{name}' is not defined",
            {"variable": name},
        ) from exc
    except ValueError as exc:
        raise _schema_error(str(exc)) from exc

    placements = {
        name: _parse_placement(name, raw) for name, raw in placement_raw.items()
    }

    catalog = Catalog(placements=placements, variables=bindings)
    for index, raw in enumerate(resources_raw):
        spec = _parse_resource(index, raw, placements)
        if spec.id in catalog.resources:
            raise ConfigError(
                ConfigErrorReason.DUPLICATE_ID,
                f"Resource id '{spec.id}' is declared more than once",
                {"resource": spec.id},
            )
        catalog.resources[spec.id] = spec

    logger.debug("catalog_loaded", resources=len(catalog), placements=len(placements))
    return catalog


def load_file(path: str | Path, variables: Mapping[str, Any] | None = None) -> Catalog:
    """Load declarations from a YAML file."""
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        raise ConfigError(
            ConfigErrorReason.INVALID_FILE, f"Declarations file not found: {path}"
        ) from exc
    except yaml.YAMLError as exc:
        raise ConfigError(
            ConfigErrorReason.INVALID_FILE, f"Invalid YAML in {path}: {exc}"
        ) from exc
    return load(data, variables)


def parse_variable_bindings(pairs: list[str] | None) -> dict[str, Any]:
    """Parse ``name=value`` CLI bindings; values are read as YAML scalars."""
    bindings: dict[str, Any] = {}
    for pair in pairs or []:
        name, sep, raw = pair.partition("=")
        if not sep or not name:
            raise ConfigError(
                ConfigErrorReason.INVALID_FILE,
                f"Invalid variable binding '{pair}', expected name=value",
            )
        bindings[name.strip()] = yaml.safe_load(raw) if raw else ""
    return bindings


def _parse_placement(name: str, raw: Any) -> PlacementPolicyConfig:
    if not isinstance(raw, Mapping):
        raise _schema_error(f"Placement policy '{name}' must be a mapping", placement=name)
    try:
        mode = PlacementMode(raw.get("mode", "static"))
    except ValueError as exc:
        raise _schema_error(
            f"Placement policy '{name}' has unknown mode '{raw.get('mode')}'", placement=name
        ) from exc

    zone_key = raw.get("zone_key", "availability_zone")
    if mode == PlacementMode.STATIC:
        zones = raw.get("zones")
        if not isinstance(zones, list) or not all(isinstance(z, str) for z in zones):
            raise _schema_error(
                f"Static placement policy '{name}' requires a list of zones", placement=name
            )
        return PlacementPolicyConfig(name=name, mode=mode, zones=tuple(zones), zone_key=zone_key)

    target = raw.get("target")
    if not isinstance(target, str) or not target:
        raise _schema_error(
            f"Dynamic placement policy '{name}' requires a target", placement=name
        )
    return PlacementPolicyConfig(name=name, mode=mode, target=target, zone_key=zone_key)


def _parse_resource(
    index: int,
    raw: Any,
    placements: dict[str, PlacementPolicyConfig],
) -> ResourceSpec:
    if not isinstance(raw, Mapping):
        raise _schema_error(f"Resource #{index} must be a mapping", index=index)

    resource_id = raw.get("id")
    if not isinstance(resource_id, str) or not RESOURCE_ID_PATTERN.match(resource_id):
        raise _schema_error(f"Resource #{index} has an invalid id: {resource_id!r}", index=index)
    if resource_id in RESERVED_IDS:
        raise _schema_error(f"Resource id '{resource_id}' is reserved", resource=resource_id)

    kind = raw.get("kind")
    schema = get_kind(kind) if isinstance(kind, str) else None
    if schema is None:
        raise ConfigError(
            ConfigErrorReason.UNKNOWN_KIND,
            f"Resource '{resource_id}' has unknown kind '{kind}'",
            {"resource": resource_id, "kind": kind, "known_kinds": list_kinds()},
        )

    attributes_raw = raw.get("attributes") or {}
    if not isinstance(attributes_raw, Mapping):
        raise _schema_error(f"Attributes of '{resource_id}' must be a mapping", resource=resource_id)
    attributes = {
        name: _parse_value(resource_id, value, placements)
        for name, value in attributes_raw.items()
    }
    schema.validate(resource_id, attributes)

    depends_on = raw.get("depends_on") or []
    if not isinstance(depends_on, list) or not all(isinstance(d, str) for d in depends_on):
        raise _schema_error(
            f"depends_on of '{resource_id}' must be a list of resource ids", resource=resource_id
        )

    return ResourceSpec(
        id=resource_id,
        kind=kind,
        attributes=attributes,
        explicit_dependencies=frozenset(depends_on),
    )


def _parse_value(
    resource_id: str,
    value: Any,
    placements: dict[str, PlacementPolicyConfig],
) -> Any:
    if isinstance(value, Mapping):
        if "discover" in value:
            return _parse_discovery(resource_id, value, placements)
        return {key: _parse_value(resource_id, item, placements) for key, item in value.items()}
    if isinstance(value, list):
        return [_parse_value(resource_id, item, placements) for item in value]
    return value


def _parse_discovery(
    resource_id: str,
    raw: Mapping[str, Any],
    placements: dict[str, PlacementPolicyConfig],
) -> DiscoveryDeclaration:
    unknown = sorted(set(raw) - DISCOVERY_KEYS)
    if unknown:
        raise _schema_error(
            f"Discovery in '{resource_id}' has unknown keys: {', '.join(unknown)}",
            resource=resource_id,
        )
    kind = raw.get("discover")
    filters = raw.get("filters") or {}
    placement = raw.get("placement")
    select = raw.get("select")
    if not isinstance(kind, str) or not kind:
        raise _schema_error(f"Discovery in '{resource_id}' needs a query kind", resource=resource_id)
    if not isinstance(filters, Mapping):
        raise _schema_error(f"Discovery filters in '{resource_id}' must be a mapping", resource=resource_id)
    if placement is not None and placement not in placements:
        raise _schema_error(
            f"Discovery in '{resource_id}' uses undeclared placement policy '{placement}'",
            resource=resource_id,
            placement=placement,
        )
    if select is not None and not isinstance(select, str):
        raise _schema_error(f"Discovery select in '{resource_id}' must be a string", resource=resource_id)
    return DiscoveryDeclaration(
        query=DiscoveryQuery(kind=kind, filters=dict(filters)),
        placement=placement,
        select=select,
    )
