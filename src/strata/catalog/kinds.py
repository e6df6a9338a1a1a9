"""
Resource kind schemas.

Each kind declares which attributes it accepts, which are required, which
force replacement when changed, and how the engine waits for readiness.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from strata.catalog.models import DiscoveryDeclaration
from strata.catalog.references import exact_reference
from strata.core.errors import ConfigError, ConfigErrorReason

Validator = Callable[[str, dict[str, Any]], None]

SCALING_KEYS = ("min_size", "desired_size", "max_size")


@dataclass(frozen=True)
class KindSchema:
    """Schema metadata describing a provider-managed resource kind."""

    name: str
    attributes: dict[str, tuple[type, ...]]
    required: frozenset[str]
    replace_on_change: frozenset[str] = frozenset()
    ready_status: str | None = None
    timeout_class: str = "default"
    validators: tuple[Validator, ...] = field(default=())

    def validate(self, resource_id: str, attributes: dict[str, Any]) -> None:
        unknown = sorted(set(attributes) - set(self.attributes))
        if unknown:
            raise ConfigError(
                ConfigErrorReason.SCHEMA_VIOLATION,
                f"Resource '{resource_id}' ({self.name}) has unknown attributes: {', '.join(unknown)}",
                {"resource": resource_id, "attributes": unknown},
            )
        missing = sorted(self.required - set(attributes))
        if missing:
            raise ConfigError(
                ConfigErrorReason.SCHEMA_VIOLATION,
                f"Resource '{resource_id}' ({self.name}) is missing required attributes: "
                f"{', '.join(missing)}",
                {"resource": resource_id, "attributes": missing},
            )
        for name, value in attributes.items():
            if is_deferred(value):
                continue
            expected = self.attributes[name]
            if isinstance(value, bool) and bool not in expected:
                valid = False
            else:
                valid = isinstance(value, expected)
            if not valid:
                names = " or ".join(t.__name__ for t in expected)
                raise ConfigError(
                    ConfigErrorReason.SCHEMA_VIOLATION,
                    f"Attribute '{name}' of '{resource_id}' must be {names}, "
                    f"got {type(value).__name__}",
                    {"resource": resource_id, "attribute": name},
                )
        for validator in self.validators:
            validator(resource_id, attributes)

    def requires_replacement(self, changed: set[str]) -> bool:
        return bool(changed & self.replace_on_change)


def is_deferred(value: Any) -> bool:
    """True when a value is only known after references or discovery resolve."""
    return isinstance(value, DiscoveryDeclaration) or exact_reference(value) is not None


def validate_scaling(resource_id: str, attributes: dict[str, Any]) -> None:
    scaling = attributes.get("scaling")
    if scaling is None or is_deferred(scaling):
        return
    unknown = sorted(set(scaling) - set(SCALING_KEYS))
    if unknown:
        raise ConfigError(
            ConfigErrorReason.SCHEMA_VIOLATION,
            f"Scaling config of '{resource_id}' has unknown keys: {', '.join(unknown)}",
            {"resource": resource_id},
        )
    missing = [key for key in SCALING_KEYS if key not in scaling]
    if missing:
        raise ConfigError(
            ConfigErrorReason.INVALID_SCALING_BOUNDS,
            f"Scaling config of '{resource_id}' requires {', '.join(missing)}",
            {"resource": resource_id},
        )
    values = [scaling[key] for key in SCALING_KEYS]
    if any(is_deferred(value) for value in values):
        return
    for key, value in zip(SCALING_KEYS, values):
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ConfigError(
                ConfigErrorReason.INVALID_SCALING_BOUNDS,
                f"Scaling '{key}' of '{resource_id}' must be a non-negative integer",
                {"resource": resource_id, "key": key, "value": value},
            )
    min_size, desired_size, max_size = values
    if not min_size <= desired_size <= max_size:
        raise ConfigError(
            ConfigErrorReason.INVALID_SCALING_BOUNDS,
            f"Scaling of '{resource_id}' must satisfy min <= desired <= max "
            f"(got {min_size} <= {desired_size} <= {max_size})",
            {"resource": resource_id},
        )


ROLE = KindSchema(
    name="role",
    attributes={"name": (str,), "service": (str,), "description": (str,), "tags": (dict,)},
    required=frozenset({"name", "service"}),
    replace_on_change=frozenset({"name", "service"}),
    timeout_class="iam",
)

POLICY_ATTACHMENT = KindSchema(
    name="policy-attachment",
    attributes={"role": (str,), "policy_arn": (str,)},
    required=frozenset({"role", "policy_arn"}),
    replace_on_change=frozenset({"role", "policy_arn"}),
    timeout_class="iam",
)

CLUSTER = KindSchema(
    name="cluster",
    attributes={
        "name": (str,),
        "role_arn": (str,),
        "subnet_ids": (list,),
        "version": (str,),
        "tags": (dict,),
    },
    required=frozenset({"name", "role_arn", "subnet_ids"}),
    replace_on_change=frozenset({"name", "role_arn", "subnet_ids"}),
    ready_status="ACTIVE",
    timeout_class="cluster",
)

NODE_GROUP = KindSchema(
    name="node-group",
    attributes={
        "cluster": (str,),
        "name": (str,),
        "node_role_arn": (str,),
        "subnet_ids": (list,),
        "scaling": (dict,),
        "instance_types": (list,),
        "tags": (dict,),
    },
    required=frozenset({"cluster", "name", "node_role_arn", "subnet_ids", "scaling"}),
    replace_on_change=frozenset(
        {"cluster", "name", "node_role_arn", "subnet_ids", "instance_types"}
    ),
    ready_status="ACTIVE",
    timeout_class="cluster",
    validators=(validate_scaling,),
)

_KINDS: dict[str, KindSchema] = {}


def register_kind(schema: KindSchema) -> None:
    if not schema.name:
        raise ValueError("Kind name is required")
    _KINDS[schema.name] = schema


def get_kind(name: str) -> KindSchema | None:
    return _KINDS.get(name)


def list_kinds() -> list[str]:
    return sorted(_KINDS)


for _schema in (ROLE, POLICY_ATTACHMENT, CLUSTER, NODE_GROUP):
    register_kind(_schema)
