"""Result types for engine runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from strata.core.errors import ExitCode, StrataError
from strata.graph.models import UnitState
from strata.state.models import ChangeAction, DesiredResource, PlanDiff


class RunOutcome(StrEnum):
    ALL_SUCCEEDED = "all_succeeded"
    PARTIAL_FAILURE = "partial_failure"
    ABORTED = "aborted"


@dataclass
class UnitReport:
    """What happened to one execution unit during a run."""

    unit_id: str
    state: UnitState = UnitState.PENDING
    action: ChangeAction | None = None
    attempts: int = 0
    error: str | None = None
    error_kind: str | None = None
    skipped_because: str | None = None
    outputs: dict[str, Any] = field(default_factory=dict)

    def fail(self, exc: BaseException) -> None:
        self.state = UnitState.FAILED
        self.error = getattr(exc, "message", None) or str(exc) or type(exc).__name__
        kind = getattr(exc, "kind", None) or getattr(exc, "reason", None)
        self.error_kind = str(kind) if kind is not None else type(exc).__name__

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "state": str(self.state),
            "action": str(self.action) if self.action else None,
            "attempts": self.attempts,
        }
        if self.error:
            data["error"] = self.error
            data["error_kind"] = self.error_kind
        if self.skipped_because:
            data["skipped_because"] = self.skipped_because
        return data


def _exit_code(outcome: RunOutcome, error: StrataError | None) -> int:
    if outcome == RunOutcome.ALL_SUCCEEDED:
        return ExitCode.SUCCESS
    if outcome == RunOutcome.PARTIAL_FAILURE:
        return ExitCode.PARTIAL_FAILURE
    if error is not None:
        return error.exit_code
    return ExitCode.ABORTED


@dataclass
class RunResult:
    """Aggregated outcome of an apply or destroy run."""

    mode: str
    outcome: RunOutcome
    units: dict[str, UnitReport] = field(default_factory=dict)
    reason: str | None = None
    error: StrataError | None = None
    run_id: str | None = None

    def _with_state(self, state: UnitState) -> list[str]:
        return sorted(uid for uid, report in self.units.items() if report.state == state)

    @property
    def succeeded(self) -> list[str]:
        return self._with_state(UnitState.SUCCEEDED)

    @property
    def failed(self) -> list[str]:
        return self._with_state(UnitState.FAILED)

    @property
    def skipped(self) -> list[str]:
        return self._with_state(UnitState.SKIPPED)

    @property
    def not_started(self) -> list[str]:
        return self._with_state(UnitState.PENDING)

    @property
    def success(self) -> bool:
        return self.outcome == RunOutcome.ALL_SUCCEEDED

    @property
    def exit_code(self) -> int:
        return _exit_code(self.outcome, self.error)

    @classmethod
    def aborted(
        cls, mode: str, error: StrataError, run_id: str | None = None
    ) -> "RunResult":
        """Result of a run stopped by a fatal error before or during execution."""
        return cls(mode=mode, outcome=RunOutcome.ABORTED, reason=error.message, error=error, run_id=run_id)

    def merge(self, other: "RunResult") -> None:
        """Fold a follow-up run (orphan teardown) into this one."""
        self.units.update(other.units)
        if other.outcome == RunOutcome.ABORTED:
            self.outcome = RunOutcome.ABORTED
            self.reason = other.reason
            self.error = other.error
        elif other.outcome == RunOutcome.PARTIAL_FAILURE and self.outcome == RunOutcome.ALL_SUCCEEDED:
            self.outcome = RunOutcome.PARTIAL_FAILURE

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "mode": self.mode,
            "outcome": str(self.outcome),
            "reason": self.reason,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "units": {uid: report.to_dict() for uid, report in sorted(self.units.items())},
        }


@dataclass
class PlanResult:
    """Result of planning: the diff plus the desired state it was computed from."""

    outcome: RunOutcome
    diff: PlanDiff | None = None
    desired: dict[str, DesiredResource] = field(default_factory=dict)
    discovery: dict[str, dict[str, Any]] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    error: StrataError | None = None
    run_id: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome == RunOutcome.ALL_SUCCEEDED

    @property
    def exit_code(self) -> int:
        return _exit_code(self.outcome, self.error)

    @classmethod
    def aborted(cls, error: StrataError, run_id: str | None = None) -> "PlanResult":
        return cls(outcome=RunOutcome.ABORTED, errors=[error.message], error=error, run_id=run_id)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "run_id": self.run_id,
            "outcome": str(self.outcome),
            "errors": self.errors,
        }
        if self.diff is not None:
            data["diff"] = self.diff.to_dict()
            data["changes"] = {
                rid: {"kind": change.kind, "action": str(change.action), "changed": list(change.changed)}
                for rid, change in sorted(self.diff.changes.items())
            }
        return data


class ResultCollector:
    """Aggregates unit reports while the engine walks the graph."""

    def __init__(self, mode: str, unit_ids: list[str], run_id: str | None = None) -> None:
        self._mode = mode
        self._run_id = run_id
        self._reports = {uid: UnitReport(unit_id=uid) for uid in unit_ids}

    def report(self, unit_id: str) -> UnitReport:
        return self._reports[unit_id]

    def state_of(self, unit_id: str) -> UnitState:
        return self._reports[unit_id].state

    def finalize(self, *, error: StrataError | None = None, cancel_reason: str | None = None) -> RunResult:
        """Decide the run outcome from the unit states."""
        if error is not None:
            outcome, reason = RunOutcome.ABORTED, error.message
        elif cancel_reason is not None:
            outcome, reason = RunOutcome.ABORTED, cancel_reason
        elif any(r.state in (UnitState.FAILED, UnitState.SKIPPED) for r in self._reports.values()):
            outcome, reason = RunOutcome.PARTIAL_FAILURE, None
        else:
            outcome, reason = RunOutcome.ALL_SUCCEEDED, None
        return RunResult(
            mode=self._mode,
            outcome=outcome,
            units=self._reports,
            reason=reason,
            error=error,
            run_id=self._run_id,
        )
