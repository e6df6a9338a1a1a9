"""
Orchestrator facade.

Entry point for the three top-level operations. Each call builds a fresh run
context (run id, discovery cache, cancel flag) and a fresh graph, so nothing
leaks between runs:

- plan(): resolve discovery read-only and diff desired against stored state
- apply(): tear down replaced resources and their dependents, walk the graph
  creating and updating, then destroy orphans
- destroy(): tear down everything in state in reverse dependency order
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from strata.catalog.models import Catalog, DiscoveryDeclaration
from strata.catalog.references import UNKNOWN, Reference, contains_unknown, resolve_value
from strata.config.settings import Settings, get_settings
from strata.core.errors import GraphError, PlacementError, ProviderError
from strata.core.retry import Sleep
from strata.graph.builder import GraphBuilder
from strata.graph.models import Graph
from strata.logging import bind_context, clear_context
from strata.orchestration.actions import UnitActions, discovery_value
from strata.orchestration.context import RunContext, RunMode
from strata.orchestration.engine import ExecutionEngine, TransitionCallback
from strata.orchestration.results import PlanResult, RunOutcome, RunResult
from strata.providers import create_provider
from strata.providers.base import CloudProvider
from strata.state.diff import diff
from strata.state.models import ChangeAction, DesiredResource
from strata.state.store import StateStore

logger = structlog.get_logger()


class Orchestrator:
    """Plans, applies and destroys one catalog against one state store."""

    def __init__(
        self,
        catalog: Catalog,
        state_store: StateStore,
        provider: CloudProvider,
        settings: Settings | None = None,
        *,
        on_transition: TransitionCallback | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.catalog = catalog
        self.state = state_store
        self.provider = provider
        self.settings = settings or get_settings()
        self.on_transition = on_transition
        self._sleep = sleep
        self._builder = GraphBuilder()
        self._active: RunContext | None = None

    @classmethod
    def from_settings(cls, catalog: Catalog, settings: Settings, **kwargs: Any) -> "Orchestrator":
        """Wire the state store and provider named by ``settings``."""
        provider = create_provider(
            settings.provider,
            region=settings.region,
            inventory_path=settings.inventory_path,
        )
        return cls(catalog, StateStore.open(settings.state_path), provider, settings, **kwargs)

    def _context(self, mode: RunMode) -> RunContext:
        ctx = RunContext.create(
            mode, self.catalog, self.provider, self.state, self.settings, sleep=self._sleep
        )
        clear_context()
        bind_context(run_id=ctx.run_id, mode=str(mode), region=ctx.region)
        self._active = ctx
        return ctx

    def cancel(self, reason: str = "cancelled by user") -> None:
        """Cancel the run in progress, if any."""
        if self._active is not None:
            self._active.cancel(reason)

    async def plan(self) -> PlanResult:
        """Compute the diff between the catalog and stored state without side effects."""
        ctx = self._context(RunMode.PLAN)
        try:
            graph = self._builder.build(self.catalog)
        except GraphError as exc:
            logger.error("plan_aborted", reason=exc.message)
            return PlanResult.aborted(exc, ctx.run_id)

        planner = _Planner(ctx, graph)
        try:
            await planner.run()
        except (PlacementError, ProviderError) as exc:
            logger.error("plan_aborted", reason=exc.message)
            return PlanResult.aborted(exc, ctx.run_id)

        plan_diff = self.state.diff(planner.desired)
        logger.info("plan_computed", **{k: len(v) for k, v in plan_diff.to_dict().items()})
        return PlanResult(
            outcome=RunOutcome.ALL_SUCCEEDED,
            diff=plan_diff,
            desired=planner.desired,
            discovery=planner.discovery,
            run_id=ctx.run_id,
        )

    async def apply(self) -> RunResult:
        """
        Converge provider state to the catalog.

        Resources the diff replaces are torn down first, together with every
        recorded resource depending on them, in reverse dependency order. The
        walk then recreates them alongside the rest of the catalog, and
        orphans are destroyed once the walk has fully succeeded.
        """
        ctx = self._context(RunMode.APPLY)
        try:
            graph = self._builder.build(self.catalog)
        except GraphError as exc:
            logger.error("apply_aborted", reason=exc.message)
            return RunResult.aborted(str(RunMode.APPLY), exc, ctx.run_id)

        try:
            replaced = await self._replacements(ctx, graph)
        except (PlacementError, ProviderError) as exc:
            logger.error("apply_aborted", reason=exc.message)
            return RunResult.aborted(str(RunMode.APPLY), exc, ctx.run_id)

        engine = ExecutionEngine(ctx, self.on_transition)
        if replaced:
            teardown = self._replacement_teardown(replaced)
            logger.info("tearing_down_replacements", resources=sorted(teardown.units))
            cleared = await engine.run(teardown, UnitActions(ctx, teardown).destroy_unit)
            if cleared.outcome != RunOutcome.ALL_SUCCEEDED:
                logger.error("apply_aborted", reason="replacement teardown failed")
                return cleared
            for unit_id in teardown.units:
                ctx.outputs.pop(unit_id, None)
            replaced = frozenset(teardown.units)

        result = await engine.run(graph, UnitActions(ctx, graph, replaced).apply_unit)
        logger.info("apply_walk_finished", outcome=str(result.outcome))

        orphans = {rid: rec for rid, rec in self.state.records().items() if rid not in self.catalog}
        if orphans and result.outcome == RunOutcome.ALL_SUCCEEDED:
            teardown = self._builder.build_teardown(orphans).reversed()
            logger.info("destroying_orphans", resources=sorted(orphans))
            result.merge(await engine.run(teardown, UnitActions(ctx, teardown).destroy_unit))
        return result

    async def _replacements(self, ctx: RunContext, graph: Graph) -> frozenset[str]:
        """Ids of recorded resources whose desired change is a replacement."""
        if not self.state.records():
            return frozenset()
        planner = _Planner(ctx, graph)
        await planner.run()
        return frozenset(
            rid for rid, action in planner.planned.items() if action == ChangeAction.REPLACE
        )

    def _replacement_teardown(self, replaced: frozenset[str]) -> Graph:
        existing = self._builder.build_teardown(self.state.records(), self.catalog)
        doomed = set(replaced)
        for resource_id in replaced:
            doomed.update(existing.transitive_dependents(resource_id))
        return existing.subgraph(doomed).reversed()

    async def destroy(self) -> RunResult:
        """Tear down every resource recorded in state."""
        ctx = self._context(RunMode.DESTROY)
        try:
            graph = self._builder.build_teardown(self.state.records(), self.catalog).reversed()
        except GraphError as exc:
            logger.error("destroy_aborted", reason=exc.message)
            return RunResult.aborted(str(RunMode.DESTROY), exc, ctx.run_id)

        engine = ExecutionEngine(ctx, self.on_transition)
        result = await engine.run(graph, UnitActions(ctx, graph).destroy_unit)
        logger.info("destroy_finished", outcome=str(result.outcome))
        return result


class _Planner:
    """Read-only walk computing desired state in topological order."""

    def __init__(self, ctx: RunContext, graph: Graph) -> None:
        self.ctx = ctx
        self.graph = graph
        self.actions = UnitActions(ctx, graph)
        self.desired: dict[str, DesiredResource] = {}
        self.planned: dict[str, ChangeAction] = {}
        self.discovery: dict[str, dict[str, Any]] = {}

    async def run(self) -> None:
        for unit_id in self.graph.topological_order():
            unit = self.graph.units[unit_id]
            if unit.is_discovery:
                await self._discover(unit_id)
                continue
            spec = unit.require_resource()
            attributes = resolve_value(spec.attributes, self._lookup, self._lookup_discovery)
            desired = DesiredResource(id=spec.id, kind=spec.kind, attributes=attributes)
            record = self.ctx.state.get(spec.id)
            current = {spec.id: record} if record is not None else {}
            self.desired[spec.id] = desired
            self.planned[spec.id] = diff({spec.id: desired}, current).action_for(spec.id)

    async def _discover(self, unit_id: str) -> None:
        unit = self.graph.units[unit_id]
        declaration = unit.require_discovery()
        filters = resolve_value(declaration.query.filters, self._lookup)
        if contains_unknown(filters):
            # Filters on a resource that does not exist yet; known after apply.
            logger.debug("plan_discovery_deferred", unit=unit_id)
            return
        self.discovery[unit_id] = await self.actions.evaluate_discovery(
            declaration, filters, unit.prefetched
        )

    def _lookup(self, ref: Reference) -> Any:
        action = self.planned.get(ref.resource_id)
        if action in (ChangeAction.CREATE, ChangeAction.REPLACE):
            return UNKNOWN
        record = self.ctx.state.get(ref.resource_id)
        if record is None:
            return UNKNOWN
        desired = self.desired.get(ref.resource_id)
        if action == ChangeAction.UPDATE and desired is not None and ref.attribute in desired.attributes:
            return desired.attributes[ref.attribute]
        return record.outputs.get(ref.attribute, UNKNOWN)

    def _lookup_discovery(self, declaration: DiscoveryDeclaration) -> Any:
        outputs = self.discovery.get(declaration.unit_id)
        if outputs is None:
            return UNKNOWN
        return discovery_value(outputs)
