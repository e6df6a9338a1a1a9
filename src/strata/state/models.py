"""State records and plan diffs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class StateRecord:
    """Last-known-good view of one created resource."""

    id: str
    kind: str
    provider_id: str
    attributes: dict[str, Any] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)
    dependencies: list[str] = field(default_factory=list)
    tainted: bool = False
    updated_at: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "provider_id": self.provider_id,
            "attributes": self.attributes,
            "outputs": self.outputs,
            "dependencies": sorted(self.dependencies),
            "tainted": self.tainted,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, resource_id: str, data: dict[str, Any]) -> "StateRecord":
        return cls(
            id=resource_id,
            kind=data["kind"],
            provider_id=data["provider_id"],
            attributes=dict(data.get("attributes", {})),
            outputs=dict(data.get("outputs", {})),
            dependencies=list(data.get("dependencies", [])),
            tainted=bool(data.get("tainted", False)),
            updated_at=data.get("updated_at") or _now(),
        )


class ChangeAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DESTROY = "destroy"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class DesiredResource:
    """Resolved desired state of one catalog resource."""

    id: str
    kind: str
    attributes: dict[str, Any]


@dataclass(frozen=True)
class ResourceChange:
    """Represents a single change detected during planning."""

    id: str
    kind: str
    action: ChangeAction
    changed: tuple[str, ...] = ()
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None


@dataclass
class PlanDiff:
    """Desired vs. current state, one change per resource id."""

    changes: dict[str, ResourceChange] = field(default_factory=dict)

    def _ids(self, *actions: ChangeAction) -> list[str]:
        return sorted(c.id for c in self.changes.values() if c.action in actions)

    @property
    def create(self) -> list[str]:
        """Resources to create, replacements included."""
        return self._ids(ChangeAction.CREATE, ChangeAction.REPLACE)

    @property
    def update(self) -> list[str]:
        return self._ids(ChangeAction.UPDATE)

    @property
    def destroy(self) -> list[str]:
        """Resources to destroy, replacements included."""
        return self._ids(ChangeAction.DESTROY, ChangeAction.REPLACE)

    @property
    def unchanged(self) -> list[str]:
        return self._ids(ChangeAction.UNCHANGED)

    @property
    def replace(self) -> list[str]:
        return self._ids(ChangeAction.REPLACE)

    @property
    def has_changes(self) -> bool:
        return any(c.action != ChangeAction.UNCHANGED for c in self.changes.values())

    def action_for(self, resource_id: str) -> ChangeAction:
        """Raises KeyError for ids the diff does not cover."""
        return self.changes[resource_id].action

    def to_dict(self) -> dict[str, Any]:
        return {
            "create": self.create,
            "update": self.update,
            "destroy": self.destroy,
            "unchanged": self.unchanged,
            "replace": self.replace,
        }
