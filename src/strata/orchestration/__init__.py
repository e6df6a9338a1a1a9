"""Graph execution: run context, unit actions, engine and results."""

from strata.orchestration.actions import UnitActions
from strata.orchestration.context import RunContext, RunMode
from strata.orchestration.engine import ExecutionEngine, TransitionCallback
from strata.orchestration.results import (
    PlanResult,
    ResultCollector,
    RunOutcome,
    RunResult,
    UnitReport,
)

__all__ = [
    "ExecutionEngine",
    "PlanResult",
    "ResultCollector",
    "RunContext",
    "RunMode",
    "RunOutcome",
    "RunResult",
    "TransitionCallback",
    "UnitActions",
    "UnitReport",
]
