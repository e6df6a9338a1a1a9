"""Tests for the execution engine and per-unit actions."""

import asyncio

import pytest
from strata.catalog import load
from strata.core.errors import ExitCode, ProviderError, ProviderErrorKind
from strata.graph import GraphBuilder, UnitState
from strata.orchestration import ExecutionEngine, RunContext, RunMode, RunOutcome, UnitActions
from strata.providers.memory import MemoryProvider

CONTROL_PLANE_SUBNETS = "discovery.subnets[vpc-id=vpc-1]@control-plane.id"
WORKER_SUBNETS = "discovery.subnets[vpc-id=vpc-1]@workers.id"


def _context(catalog, provider, state_store, settings, sleeps):
    return RunContext.create(
        RunMode.APPLY, catalog, provider, state_store, settings, sleep=sleeps
    )


async def _apply(eks_declarations, provider, state_store, settings, sleeps, **engine_kwargs):
    catalog = load(eks_declarations)
    ctx = _context(catalog, provider, state_store, settings, sleeps)
    graph = GraphBuilder().build(catalog)
    engine = ExecutionEngine(ctx, **engine_kwargs)
    return await engine.run(graph, UnitActions(ctx, graph).apply_unit)


class TestApplyWalk:
    """End-to-end apply walks against the memory provider."""

    @pytest.mark.asyncio
    async def test_all_units_succeed(self, eks_declarations, provider, state_store, settings, sleeps):
        result = await _apply(eks_declarations, provider, state_store, settings, sleeps)

        assert result.outcome == RunOutcome.ALL_SUCCEEDED
        assert result.exit_code == ExitCode.SUCCESS
        assert len(result.succeeded) == 10
        assert len(state_store) == 8

        cluster = state_store.get("cluster")
        assert cluster.attributes["subnet_ids"] == ["subnet-a", "subnet-b", "subnet-c"]
        assert cluster.attributes["role_arn"] == state_store.get("cluster-role").outputs["arn"]
        assert cluster.dependencies == ["cluster-policy", "cluster-role"]

        nodes = state_store.get("nodes")
        assert nodes.attributes["subnet_ids"] == ["subnet-a", "subnet-b", "subnet-c"]
        assert nodes.attributes["cluster"] == "demo"
        assert nodes.attributes["scaling"]["desired_size"] == 2

    @pytest.mark.asyncio
    async def test_discovery_runs_once_per_query(
        self, eks_declarations, provider, state_store, settings, sleeps
    ):
        await _apply(eks_declarations, provider, state_store, settings, sleeps)

        # Two units share one query signature.
        assert provider.count("list", "subnets") == 1
        assert provider.count("list", "unsupported-zones") == 1

    @pytest.mark.asyncio
    async def test_failure_skips_transitive_dependents(
        self, eks_declarations, provider, state_store, settings, sleeps
    ):
        provider.inject_failures(
            "create", "cluster", ProviderError(ProviderErrorKind.PERMISSION, "not allowed")
        )

        result = await _apply(eks_declarations, provider, state_store, settings, sleeps)

        assert result.outcome == RunOutcome.PARTIAL_FAILURE
        assert result.exit_code == ExitCode.PARTIAL_FAILURE
        assert result.failed == ["cluster"]
        assert result.skipped == ["nodes"]
        assert result.units["nodes"].skipped_because == "cluster"
        assert result.units["cluster"].error_kind == "permission"
        assert result.units["cluster"].attempts == 1
        for unit_id in ("node-role", "worker-policy", "cni-policy", "registry-policy"):
            assert result.units[unit_id].state == UnitState.SUCCEEDED
        assert provider.count("create", "node-group") == 0
        assert "cluster" not in state_store

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(
        self, eks_declarations, provider, state_store, settings, sleeps
    ):
        provider.inject_failures(
            "create",
            "cluster",
            ProviderError(ProviderErrorKind.TRANSIENT, "throttled"),
            ProviderError(ProviderErrorKind.TRANSIENT, "throttled"),
        )

        result = await _apply(eks_declarations, provider, state_store, settings, sleeps)

        assert result.outcome == RunOutcome.ALL_SUCCEEDED
        assert result.units["cluster"].state == UnitState.SUCCEEDED
        assert result.units["cluster"].attempts == 3
        assert provider.count("create", "cluster") == 3
        assert sleeps.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_transient_failures_exhaust_retries(
        self, eks_declarations, provider, state_store, settings, sleeps
    ):
        provider.inject_failures(
            "create",
            "node-group",
            *[ProviderError(ProviderErrorKind.TRANSIENT, "throttled") for _ in range(4)],
        )

        result = await _apply(eks_declarations, provider, state_store, settings, sleeps)

        assert result.failed == ["nodes"]
        assert result.units["nodes"].attempts == 4
        assert result.units["nodes"].error_kind == "transient"

    @pytest.mark.asyncio
    async def test_no_eligible_zones_aborts_before_creating(
        self, eks_declarations, inventory, state_store, settings, sleeps
    ):
        inventory["subnets"] = [s for s in inventory["subnets"] if s["availability_zone"] == "us-east-1e"]
        provider = MemoryProvider(inventory)

        result = await _apply(eks_declarations, provider, state_store, settings, sleeps)

        assert result.outcome == RunOutcome.ABORTED
        assert result.exit_code == ExitCode.PLACEMENT_ERROR
        assert "No eligible placement targets" in result.reason
        assert provider.count("create") == 0
        assert len(state_store) == 0
        assert result.units["cluster"].state in (UnitState.SKIPPED, UnitState.PENDING)

    @pytest.mark.asyncio
    async def test_waits_for_ready_status(self, eks_declarations, inventory, state_store, settings, sleeps):
        provider = MemoryProvider(inventory, pending_reads=2)

        result = await _apply(eks_declarations, provider, state_store, settings, sleeps)

        assert result.outcome == RunOutcome.ALL_SUCCEEDED
        assert state_store.get("cluster").outputs["status"] == "ACTIVE"
        assert state_store.get("nodes").outputs["status"] == "ACTIVE"
        assert sleeps.delays == [1.0] * 4

    @pytest.mark.asyncio
    async def test_never_ready_is_tainted(self, eks_declarations, inventory, state_store, settings, sleeps):
        provider = MemoryProvider(inventory, pending_reads=100)

        result = await _apply(eks_declarations, provider, state_store, settings, sleeps)

        assert result.failed == ["cluster"]
        assert result.units["cluster"].error_kind == "timeout"
        assert result.skipped == ["nodes"]
        assert state_store.get("cluster").tainted
        # cluster timeout is 10s at a 1s poll interval
        assert sleeps.delays == [1.0] * 10

    @pytest.mark.asyncio
    async def test_tainted_resource_is_replaced(
        self, eks_declarations, inventory, state_store, settings, sleeps
    ):
        provider = MemoryProvider(inventory, pending_reads=100)
        await _apply(eks_declarations, provider, state_store, settings, sleeps)
        tainted_id = state_store.get("cluster").provider_id

        provider.pending_reads = 0
        result = await _apply(eks_declarations, provider, state_store, settings, sleeps)

        assert result.outcome == RunOutcome.ALL_SUCCEEDED
        assert str(result.units["cluster"].action) == "replace"
        assert str(result.units["nodes"].action) == "create"
        assert str(result.units["cluster-role"].action) == "unchanged"
        assert tainted_id not in provider.resources()
        assert not state_store.get("cluster").tainted

    @pytest.mark.asyncio
    async def test_replace_refused_while_dependents_exist(
        self, eks_declarations, provider, state_store, settings, sleeps
    ):
        await _apply(eks_declarations, provider, state_store, settings, sleeps)
        cluster = next(r for r in eks_declarations["resources"] if r["id"] == "cluster")
        cluster["attributes"]["name"] = "other"

        result = await _apply(eks_declarations, provider, state_store, settings, sleeps)

        assert result.units["cluster"].state == UnitState.FAILED
        assert result.units["cluster"].error_kind == "rejected"
        assert "nodes" in result.units["cluster"].error
        assert result.units["nodes"].state == UnitState.SKIPPED
        assert provider.count("delete") == 0

    @pytest.mark.asyncio
    async def test_failure_status_is_rejected(self, eks_declarations, provider, state_store, settings, sleeps):
        catalog = load(eks_declarations)
        ctx = _context(catalog, provider, state_store, settings, sleeps)
        graph = GraphBuilder().build(catalog)
        actions = UnitActions(ctx, graph)
        provider_id = await provider.create("cluster", {"name": "demo"})
        provider._resources[provider_id]["outputs"]["status"] = "FAILED"

        with pytest.raises(ProviderError) as exc_info:
            await actions.wait_until_ready("cluster", provider_id)

        assert exc_info.value.kind == ProviderErrorKind.REJECTED

    @pytest.mark.asyncio
    async def test_not_yet_visible_keeps_polling(self, eks_declarations, provider, state_store, settings, sleeps):
        catalog = load(eks_declarations)
        ctx = _context(catalog, provider, state_store, settings, sleeps)
        actions = UnitActions(ctx, GraphBuilder().build(catalog))
        provider_id = await provider.create("role", {"name": "r"})
        provider.inject_failures(
            "read", "role", ProviderError(ProviderErrorKind.NOT_FOUND, "eventual consistency")
        )

        observed = await actions.wait_until_ready("role", provider_id)

        assert observed["name"] == "r"
        assert sleeps.delays == [1.0]


class TestScheduling:
    """Tests for ordering, concurrency limits and cancellation."""

    async def _run_with(self, eks_declarations, provider, state_store, settings, sleeps, handler, **kwargs):
        catalog = load(eks_declarations)
        ctx = _context(catalog, provider, state_store, settings, sleeps)
        graph = GraphBuilder().build(catalog)
        engine = ExecutionEngine(ctx, **kwargs)
        return ctx, graph, await engine.run(graph, handler)

    @pytest.mark.asyncio
    async def test_dependencies_finish_before_dependents(
        self, eks_declarations, provider, state_store, settings, sleeps
    ):
        finished = []

        async def handler(unit, report):
            await asyncio.sleep(0)
            finished.append(unit.id)
            return {}

        _, graph, result = await self._run_with(
            eks_declarations, provider, state_store, settings, sleeps, handler
        )

        assert result.success
        for dependent, dependency in graph.edges:
            assert finished.index(dependency) < finished.index(dependent)

    @pytest.mark.asyncio
    async def test_discovery_first(self, eks_declarations, provider, state_store, settings, sleeps):
        started = []

        async def handler(unit, report):
            started.append(unit.id)
            return {}

        await self._run_with(
            eks_declarations, provider, state_store, settings, sleeps, handler, workers=1
        )

        assert started[:2] == [CONTROL_PLANE_SUBNETS, WORKER_SUBNETS]

    @pytest.mark.asyncio
    async def test_sorted_start_without_discovery_first(
        self, eks_declarations, provider, state_store, settings, sleeps
    ):
        started = []

        async def handler(unit, report):
            started.append(unit.id)
            return {}

        await self._run_with(
            eks_declarations,
            provider,
            state_store,
            settings,
            sleeps,
            handler,
            workers=1,
            discovery_first=False,
        )

        assert started[0] == "cluster-role"

    @pytest.mark.parametrize("workers", [1, 3])
    @pytest.mark.asyncio
    async def test_worker_limit(self, workers, eks_declarations, provider, state_store, settings, sleeps):
        active = 0
        peak = 0

        async def handler(unit, report):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return {}

        _, _, result = await self._run_with(
            eks_declarations,
            provider,
            state_store,
            settings,
            sleeps,
            handler,
            workers=workers,
            discovery_first=False,
        )

        assert result.success
        assert peak == workers

    @pytest.mark.asyncio
    async def test_unexpected_exception_fails_unit(
        self, eks_declarations, provider, state_store, settings, sleeps
    ):
        async def handler(unit, report):
            if unit.id == "node-role":
                raise RuntimeError("boom")
            return {}

        _, _, result = await self._run_with(
            eks_declarations, provider, state_store, settings, sleeps, handler
        )

        assert result.failed == ["node-role"]
        assert result.units["node-role"].error_kind == "RuntimeError"
        assert result.skipped == ["cni-policy", "nodes", "registry-policy", "worker-policy"]
        assert result.units["cluster"].state == UnitState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_cancel_stops_scheduling(self, eks_declarations, provider, state_store, settings, sleeps):
        started = []
        holder = {}

        async def handler(unit, report):
            started.append(unit.id)
            if unit.id == "cluster-role":
                holder["ctx"].cancel("interrupted")
            return {}

        catalog = load(eks_declarations)
        ctx = _context(catalog, provider, state_store, settings, sleeps)
        holder["ctx"] = ctx
        graph = GraphBuilder().build(catalog)
        result = await ExecutionEngine(ctx, workers=1, discovery_first=False).run(graph, handler)

        assert started == ["cluster-role"]
        assert result.outcome == RunOutcome.ABORTED
        assert result.reason == "interrupted"
        assert result.exit_code == ExitCode.ABORTED
        assert result.succeeded == ["cluster-role"]
        assert "nodes" in result.not_started

    @pytest.mark.asyncio
    async def test_transitions_are_reported(self, eks_declarations, provider, state_store, settings, sleeps):
        transitions = []

        async def handler(unit, report):
            return {}

        await self._run_with(
            eks_declarations,
            provider,
            state_store,
            settings,
            sleeps,
            handler,
            on_transition=lambda unit_id, state, report: transitions.append((unit_id, state)),
        )

        assert transitions.count(("cluster", UnitState.RUNNING)) == 1
        assert transitions.index(("cluster", UnitState.RUNNING)) < transitions.index(
            ("cluster", UnitState.SUCCEEDED)
        )
        assert len(transitions) == 20
