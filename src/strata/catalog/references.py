"""
Attribute interpolation.

Attribute values may embed ``${ID.ATTR}`` references to another resource's
outputs. A string consisting of exactly one reference resolves to the raw
output value; anything else is string interpolation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Iterator

REFERENCE_PATTERN = re.compile(r"\$\{([^}]+)\}")

VARIABLE_PREFIX = "var"


@dataclass(frozen=True)
class Reference:
    """Reference to an output attribute of another resource."""

    resource_id: str
    attribute: str

    @classmethod
    def parse(cls, expression: str) -> "Reference":
        resource_id, sep, attribute = expression.strip().partition(".")
        if not sep or not resource_id or not attribute:
            raise ValueError(f"Malformed reference '${{{expression}}}', expected ${{ID.ATTR}}")
        return cls(resource_id=resource_id, attribute=attribute)

    def __str__(self) -> str:
        return f"${{{self.resource_id}.{self.attribute}}}"


class _Unknown:
    """Placeholder for a value only known once its source resource exists."""

    _instance: "_Unknown | None" = None

    def __new__(cls) -> "_Unknown":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "(known after apply)"

    __str__ = __repr__


UNKNOWN = _Unknown()


def exact_reference(value: Any) -> Reference | None:
    """Return the reference if ``value`` is a string holding exactly one."""
    if not isinstance(value, str):
        return None
    match = REFERENCE_PATTERN.fullmatch(value)
    if match is None:
        return None
    return Reference.parse(match.group(1))


def iter_references(value: Any) -> Iterator[Reference]:
    """Yield every resource reference found in a (nested) attribute value."""
    from strata.catalog.models import DiscoveryDeclaration

    if isinstance(value, str):
        for match in REFERENCE_PATTERN.finditer(value):
            ref = Reference.parse(match.group(1))
            if ref.resource_id != VARIABLE_PREFIX:
                yield ref
    elif isinstance(value, DiscoveryDeclaration):
        yield from iter_references(value.query.filters)
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)


def substitute_variables(value: Any, variables: dict[str, Any]) -> Any:
    """Replace ``${var.NAME}`` occurrences. Raises KeyError on undefined names."""
    if isinstance(value, str):
        match = REFERENCE_PATTERN.fullmatch(value)
        if match is not None:
            ref = Reference.parse(match.group(1))
            if ref.resource_id == VARIABLE_PREFIX:
                return variables[ref.attribute]

        def _replace(m: re.Match[str]) -> str:
            ref = Reference.parse(m.group(1))
            if ref.resource_id != VARIABLE_PREFIX:
                return m.group(0)
            return str(variables[ref.attribute])

        return REFERENCE_PATTERN.sub(_replace, value)
    if isinstance(value, dict):
        return {key: substitute_variables(item, variables) for key, item in value.items()}
    if isinstance(value, list):
        return [substitute_variables(item, variables) for item in value]
    return value


def resolve_value(
    value: Any,
    lookup: Callable[[Reference], Any],
    discovery_lookup: Callable[[Any], Any] | None = None,
) -> Any:
    """Resolve references in ``value`` through ``lookup``.

    ``lookup`` may return UNKNOWN; interpolating UNKNOWN into a string makes
    the whole string UNKNOWN.
    """
    from strata.catalog.models import DiscoveryDeclaration

    if isinstance(value, str):
        ref = exact_reference(value)
        if ref is not None:
            return lookup(ref)
        parts: list[str] = []
        position = 0
        for match in REFERENCE_PATTERN.finditer(value):
            resolved = lookup(Reference.parse(match.group(1)))
            if resolved is UNKNOWN:
                return UNKNOWN
            parts.append(value[position : match.start()])
            parts.append(str(resolved))
            position = match.end()
        parts.append(value[position:])
        return "".join(parts)
    if isinstance(value, DiscoveryDeclaration):
        if discovery_lookup is None:
            return UNKNOWN
        return discovery_lookup(value)
    if isinstance(value, dict):
        return {key: resolve_value(item, lookup, discovery_lookup) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_value(item, lookup, discovery_lookup) for item in value]
    return value


def contains_unknown(value: Any) -> bool:
    if value is UNKNOWN:
        return True
    if isinstance(value, dict):
        return any(contains_unknown(item) for item in value.values())
    if isinstance(value, (list, tuple)):
        return any(contains_unknown(item) for item in value)
    return False
