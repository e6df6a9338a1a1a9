"""State store: persisted records of created resources and plan diffs."""

from strata.state.diff import changed_attributes, diff
from strata.state.models import (
    ChangeAction,
    DesiredResource,
    PlanDiff,
    ResourceChange,
    StateRecord,
)
from strata.state.store import DEFAULT_STATE_PATH, StateStore

__all__ = [
    "ChangeAction",
    "DEFAULT_STATE_PATH",
    "DesiredResource",
    "PlanDiff",
    "ResourceChange",
    "StateRecord",
    "StateStore",
    "changed_attributes",
    "diff",
]
