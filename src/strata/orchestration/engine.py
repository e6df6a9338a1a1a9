"""
Execution engine.

Walks a graph with a bounded pool of asyncio tasks. A unit starts only once
every unit it depends on has succeeded; a failed unit marks all of its
not-yet-started transitive dependents as skipped. Destroy runs use the same
walk over the reversed teardown graph.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import structlog

from strata.core.errors import PlacementError
from strata.graph.models import ExecutionUnit, Graph, UnitState
from strata.orchestration.context import RunContext
from strata.orchestration.results import ResultCollector, RunResult, UnitReport

logger = structlog.get_logger()

UnitHandler = Callable[[ExecutionUnit, UnitReport], Awaitable[dict[str, Any]]]
TransitionCallback = Callable[[str, UnitState, UnitReport], None]


class ExecutionEngine:
    """Runs unit handlers over a graph in dependency order."""

    def __init__(
        self,
        ctx: RunContext,
        on_transition: TransitionCallback | None = None,
        *,
        workers: int | None = None,
        discovery_first: bool | None = None,
    ) -> None:
        self._ctx = ctx
        self._on_transition = on_transition
        self._workers = max(1, workers if workers is not None else ctx.settings.workers)
        self._discovery_first = (
            ctx.settings.discovery_first if discovery_first is None else discovery_first
        )

    async def run(self, graph: Graph, handler: UnitHandler) -> RunResult:
        """
        Execute ``handler`` for every unit of ``graph``.

        Units are started in deterministic (sorted) order among those ready.
        A PlacementError from any unit aborts the run: nothing new is
        scheduled and units already running are allowed to finish.
        """
        collector = ResultCollector(str(self._ctx.mode), sorted(graph.units), self._ctx.run_id)
        running: dict[asyncio.Task[dict[str, Any]], str] = {}
        abort_error: PlacementError | None = None

        while True:
            if abort_error is None and not self._ctx.cancelled:
                for unit_id in self._schedulable(graph, collector, running):
                    if len(running) >= self._workers:
                        break
                    report = collector.report(unit_id)
                    self._transition(report, UnitState.RUNNING)
                    task = asyncio.create_task(handler(graph.units[unit_id], report))
                    running[task] = unit_id

            if not running:
                break

            done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
            for task in sorted(done, key=lambda t: running[t]):
                unit_id = running.pop(task)
                report = collector.report(unit_id)
                exc = task.exception()
                if exc is None:
                    report.outputs = task.result()
                    self._ctx.outputs[unit_id] = report.outputs
                    self._transition(report, UnitState.SUCCEEDED)
                    continue

                report.fail(exc)
                self._transition(report, UnitState.FAILED)
                if not isinstance(exc, PlacementError):
                    logger.debug("unit_error", unit=unit_id, exc_info=exc)
                self._skip_dependents(graph, collector, unit_id)
                if isinstance(exc, PlacementError) and abort_error is None:
                    abort_error = exc
                    self._ctx.cancel(exc.message)

        if abort_error is not None:
            return collector.finalize(error=abort_error)
        return collector.finalize(cancel_reason=self._ctx.cancel_reason)

    def _schedulable(
        self,
        graph: Graph,
        collector: ResultCollector,
        running: dict[asyncio.Task[dict[str, Any]], str],
    ) -> list[str]:
        ready = [
            unit_id
            for unit_id in sorted(graph.units)
            if collector.state_of(unit_id) == UnitState.PENDING
            and all(
                collector.state_of(dep) == UnitState.SUCCEEDED
                for dep in graph.dependencies(unit_id)
            )
        ]
        if not self._discovery_first:
            return ready

        # Hold resource units back while any discovery can still fail placement.
        discovery_pending = any(graph.units[u].is_discovery for u in ready) or any(
            graph.units[u].is_discovery for u in running.values()
        )
        if discovery_pending:
            return [unit_id for unit_id in ready if graph.units[unit_id].is_discovery]
        return ready

    def _skip_dependents(self, graph: Graph, collector: ResultCollector, failed_id: str) -> None:
        for dependent in graph.transitive_dependents(failed_id):
            report = collector.report(dependent)
            if report.state == UnitState.PENDING:
                report.skipped_because = failed_id
                self._transition(report, UnitState.SKIPPED)

    def _transition(self, report: UnitReport, state: UnitState) -> None:
        report.state = state
        log = logger.warning if state == UnitState.FAILED else logger.info
        log(
            "unit_state_changed",
            unit=report.unit_id,
            state=str(state),
            action=str(report.action) if report.action else None,
            attempts=report.attempts,
            error=report.error,
            skipped_because=report.skipped_because,
        )
        if self._on_transition is not None:
            self._on_transition(report.unit_id, state, report)
