"""Desired vs. current state comparison."""

from __future__ import annotations

from typing import Any, Mapping

from strata.catalog.kinds import get_kind
from strata.catalog.references import contains_unknown
from strata.state.models import (
    ChangeAction,
    DesiredResource,
    PlanDiff,
    ResourceChange,
    StateRecord,
)


def changed_attributes(desired: Mapping[str, Any], stored: Mapping[str, Any]) -> set[str]:
    """Names whose desired value differs from the stored one; unknowns always differ."""
    changed = set()
    for name in set(desired) | set(stored):
        if name not in desired or name not in stored:
            changed.add(name)
        elif contains_unknown(desired[name]) or desired[name] != stored[name]:
            changed.add(name)
    return changed


def diff(
    desired: Mapping[str, DesiredResource],
    current: Mapping[str, StateRecord],
) -> PlanDiff:
    """
    Classify every resource as create, update, replace, destroy or unchanged.

    A stored resource whose changes touch a replace-on-change attribute, whose
    kind changed, or which is tainted is replaced rather than updated.
    """
    plan = PlanDiff()

    for resource_id, resource in desired.items():
        record = current.get(resource_id)
        if record is None:
            plan.changes[resource_id] = ResourceChange(
                id=resource_id,
                kind=resource.kind,
                action=ChangeAction.CREATE,
                changed=tuple(sorted(resource.attributes)),
                after=resource.attributes,
            )
            continue

        changed = changed_attributes(resource.attributes, record.attributes)
        schema = get_kind(resource.kind)
        if record.tainted or record.kind != resource.kind:
            action = ChangeAction.REPLACE
        elif not changed:
            action = ChangeAction.UNCHANGED
        elif schema is not None and schema.requires_replacement(changed):
            action = ChangeAction.REPLACE
        else:
            action = ChangeAction.UPDATE

        plan.changes[resource_id] = ResourceChange(
            id=resource_id,
            kind=resource.kind,
            action=action,
            changed=tuple(sorted(changed)),
            before=record.attributes,
            after=resource.attributes,
        )

    for resource_id, record in current.items():
        if resource_id not in desired:
            plan.changes[resource_id] = ResourceChange(
                id=resource_id,
                kind=record.kind,
                action=ChangeAction.DESTROY,
                before=record.attributes,
            )

    return plan
