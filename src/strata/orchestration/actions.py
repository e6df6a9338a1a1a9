"""
Per-unit actions.

Each handler does the provider work for one execution unit and returns the
unit's outputs. Discovery units resolve their query and apply the placement
policy; resource units create, update, replace or destroy through the
provider, wait for readiness, and write through to the state store.
"""

from __future__ import annotations

from typing import Any

import structlog

from strata.catalog.kinds import KindSchema, get_kind
from strata.catalog.models import DiscoveryDeclaration, DiscoveryQuery
from strata.catalog.references import Reference, resolve_value
from strata.core.errors import (
    ConfigError,
    ConfigErrorReason,
    ProviderError,
    ProviderErrorKind,
)
from strata.discovery.eligibility import build_policy, filter_eligible
from strata.discovery.models import DiscoveryResult
from strata.graph.models import ExecutionUnit, Graph, UnitKind
from strata.orchestration.context import RunContext
from strata.orchestration.results import UnitReport
from strata.state.diff import diff
from strata.state.models import ChangeAction, DesiredResource, StateRecord

logger = structlog.get_logger()

FAILURE_STATUSES = frozenset({"FAILED", "CREATE_FAILED", "DEGRADED"})


def discovery_outputs(
    declaration: DiscoveryDeclaration, items: list[dict[str, Any]], zone_key: str
) -> dict[str, Any]:
    """Outputs a discovery unit exposes to the attributes that use it."""
    outputs: dict[str, Any] = {
        "items": items,
        "ids": [item["id"] for item in items if "id" in item],
        "zones": [item.get(zone_key) for item in items],
    }
    if declaration.select:
        outputs["value"] = [item.get(declaration.select) for item in items]
    return outputs


def discovery_value(outputs: dict[str, Any]) -> Any:
    """What a referencing attribute receives from a discovery unit."""
    return outputs["value"] if "value" in outputs else outputs["items"]


class UnitActions:
    """Provider-facing work for the units of one graph."""

    def __init__(
        self, ctx: RunContext, graph: Graph, replaced: frozenset[str] = frozenset()
    ) -> None:
        self.ctx = ctx
        self.graph = graph
        self.replaced = replaced

    # Reference resolution

    def lookup(self, ref: Reference) -> Any:
        outputs = self.ctx.outputs.get(ref.resource_id)
        if outputs is None:
            record = self.ctx.state.get(ref.resource_id)
            outputs = record.outputs if record is not None else None
        if outputs is None:
            raise ConfigError(
                ConfigErrorReason.SCHEMA_VIOLATION,
                f"Reference {ref} used before '{ref.resource_id}' exists",
                {"reference": str(ref)},
            )
        if ref.attribute not in outputs:
            raise ConfigError(
                ConfigErrorReason.SCHEMA_VIOLATION,
                f"Resource '{ref.resource_id}' has no output '{ref.attribute}'",
                {"reference": str(ref)},
            )
        return outputs[ref.attribute]

    def lookup_discovery(self, declaration: DiscoveryDeclaration) -> Any:
        return discovery_value(self.ctx.outputs[declaration.unit_id])

    def resolve_attributes(self, attributes: dict[str, Any]) -> dict[str, Any]:
        return resolve_value(attributes, self.lookup, self.lookup_discovery)

    def resource_dependencies(self, unit_id: str) -> list[str]:
        return [
            dep
            for dep in self.graph.dependencies(unit_id)
            if self.graph.units[dep].kind == UnitKind.RESOURCE
        ]

    # Discovery

    async def discover(self, unit: ExecutionUnit, report: UnitReport) -> dict[str, Any]:
        declaration = unit.require_discovery()
        report.attempts = 1
        filters = resolve_value(declaration.query.filters, self.lookup)
        return await self.evaluate_discovery(declaration, filters, unit.prefetched)

    async def evaluate_discovery(
        self,
        declaration: DiscoveryDeclaration,
        filters: dict[str, Any],
        prefetched: DiscoveryResult | None = None,
    ) -> dict[str, Any]:
        """Run the query with resolved ``filters`` and apply its placement policy."""
        if prefetched is not None:
            result = prefetched
        else:
            query = DiscoveryQuery(kind=declaration.query.kind, filters=filters)
            result = await self.ctx.resolver.resolve(query)

        items = [dict(item) for item in result.items]
        zone_key = "availability_zone"
        if declaration.placement:
            config = self.ctx.catalog.placements[declaration.placement]
            zone_key = config.zone_key
            unsupported: frozenset[str] = frozenset()
            if config.target is not None:
                unsupported = await self.ctx.resolver.unsupported_zones(config.target)
            items = filter_eligible(items, build_policy(config, unsupported), zone_key=zone_key)
            logger.info(
                "placement_filtered",
                unit=declaration.unit_id,
                placement=declaration.placement,
                discovered=len(result),
                eligible=len(items),
            )
        return discovery_outputs(declaration, items, zone_key)

    # Apply

    async def apply_unit(self, unit: ExecutionUnit, report: UnitReport) -> dict[str, Any]:
        if unit.is_discovery:
            return await self.discover(unit, report)

        spec = unit.require_resource()
        attributes = self.resolve_attributes(spec.attributes)
        desired = DesiredResource(id=spec.id, kind=spec.kind, attributes=attributes)
        dependencies = self.resource_dependencies(unit.id)
        record = self.ctx.state.get(spec.id)

        if record is None:
            # Torn down ahead of the walk when it was replaced.
            report.action = (
                ChangeAction.REPLACE if spec.id in self.replaced else ChangeAction.CREATE
            )
            return await self._create(desired, report, dependencies)

        report.action = diff({spec.id: desired}, {spec.id: record}).action_for(spec.id)

        if report.action == ChangeAction.UNCHANGED:
            return dict(record.outputs)

        if report.action == ChangeAction.UPDATE:
            await self._call(
                report, lambda: self.ctx.provider.update(record.provider_id, spec.kind, attributes)
            )
            return await self._settle(desired, record.provider_id, dependencies)

        live = self.live_dependents(spec.id)
        if live:
            raise ProviderError(
                ProviderErrorKind.REJECTED,
                f"Cannot replace '{spec.id}' while {', '.join(live)} still depend on it",
                {"resource": spec.id, "dependents": live},
            )
        await self._delete(record, report)
        await self.ctx.state.remove(spec.id)
        return await self._create(desired, report, dependencies)

    def live_dependents(self, resource_id: str) -> list[str]:
        """Recorded resources whose records name ``resource_id`` as a dependency."""
        return sorted(
            record_id
            for record_id, record in self.ctx.state.records().items()
            if resource_id in record.dependencies
        )

    async def _create(
        self, desired: DesiredResource, report: UnitReport, dependencies: list[str]
    ) -> dict[str, Any]:
        provider_id = await self._call(
            report, lambda: self.ctx.provider.create(desired.kind, desired.attributes)
        )
        logger.info("resource_created", resource=desired.id, provider_id=provider_id)
        return await self._settle(desired, provider_id, dependencies)

    async def _settle(
        self, desired: DesiredResource, provider_id: str, dependencies: list[str]
    ) -> dict[str, Any]:
        """Wait for readiness and persist the record, tainted when never ready."""
        try:
            observed = await self.wait_until_ready(desired.kind, provider_id)
        except ProviderError:
            await self.ctx.state.put(
                desired.id,
                StateRecord(
                    id=desired.id,
                    kind=desired.kind,
                    provider_id=provider_id,
                    attributes=desired.attributes,
                    outputs={**desired.attributes, "id": provider_id},
                    dependencies=dependencies,
                    tainted=True,
                ),
            )
            logger.warning("resource_tainted", resource=desired.id, provider_id=provider_id)
            raise

        outputs = {**desired.attributes, **observed, "id": provider_id}
        await self.ctx.state.put(
            desired.id,
            StateRecord(
                id=desired.id,
                kind=desired.kind,
                provider_id=provider_id,
                attributes=desired.attributes,
                outputs=outputs,
                dependencies=dependencies,
            ),
        )
        return outputs

    async def wait_until_ready(self, kind: str, provider_id: str) -> dict[str, Any]:
        """
        Poll ``read`` until the resource is visible and, for kinds with a
        ready status, reports it.

        Raises:
            ProviderError: REJECTED on a failure status, TIMEOUT when the
                kind's timeout elapses first
        """
        schema = get_kind(kind)
        interval = self.ctx.settings.poll_interval_seconds
        timeout = self.ctx.settings.timeout_for(schema.timeout_class if schema else "default")
        waited = 0.0
        while True:
            observed = await self._read_if_visible(provider_id)
            if observed is not None:
                status = observed.get("status")
                if _is_ready(schema, status):
                    return observed
                if status in FAILURE_STATUSES:
                    raise ProviderError(
                        ProviderErrorKind.REJECTED,
                        f"{provider_id} entered status {status}",
                        {"provider_id": provider_id, "status": status},
                    )
            if waited >= timeout:
                raise ProviderError(
                    ProviderErrorKind.TIMEOUT,
                    f"{provider_id} not ready after {timeout:g}s",
                    {"provider_id": provider_id},
                )
            logger.debug("resource_polling", provider_id=provider_id, waited=waited)
            await self.ctx.sleep(interval)
            waited += interval

    async def _read_if_visible(self, provider_id: str) -> dict[str, Any] | None:
        try:
            return await self.ctx.provider.read(provider_id)
        except ProviderError as exc:
            if exc.kind in (ProviderErrorKind.NOT_FOUND, ProviderErrorKind.TRANSIENT):
                return None
            raise

    # Destroy

    async def destroy_unit(self, unit: ExecutionUnit, report: UnitReport) -> dict[str, Any]:
        record = self.ctx.state.get(unit.id)
        report.action = ChangeAction.DESTROY
        if record is None:
            return {}
        await self._delete(record, report)
        await self.ctx.state.remove(unit.id)
        logger.info("resource_destroyed", resource=unit.id, provider_id=record.provider_id)
        return {}

    async def _delete(self, record: StateRecord, report: UnitReport) -> None:
        try:
            await self._call(report, lambda: self.ctx.provider.delete(record.provider_id))
        except ProviderError as exc:
            if exc.kind != ProviderErrorKind.NOT_FOUND:
                raise
            logger.info("resource_already_gone", resource=record.id, provider_id=record.provider_id)
            return
        schema = get_kind(record.kind)
        if schema is not None and schema.ready_status:
            await self.wait_until_gone(schema, record.provider_id)

    async def wait_until_gone(self, schema: KindSchema, provider_id: str) -> None:
        interval = self.ctx.settings.poll_interval_seconds
        timeout = self.ctx.settings.timeout_for(schema.timeout_class)
        waited = 0.0
        while True:
            try:
                await self.ctx.provider.read(provider_id)
            except ProviderError as exc:
                if exc.kind == ProviderErrorKind.NOT_FOUND:
                    return
                if exc.kind != ProviderErrorKind.TRANSIENT:
                    raise
            if waited >= timeout:
                raise ProviderError(
                    ProviderErrorKind.TIMEOUT,
                    f"{provider_id} still present after {timeout:g}s",
                    {"provider_id": provider_id},
                )
            await self.ctx.sleep(interval)
            waited += interval

    async def _call(self, report: UnitReport, func: Any) -> Any:
        def on_attempt(number: int) -> None:
            report.attempts = number

        return await self.ctx.action_retry.run(func, sleep=self.ctx.sleep, on_attempt=on_attempt)


def _is_ready(schema: KindSchema | None, status: Any) -> bool:
    if schema is None or schema.ready_status is None:
        return True
    return status == schema.ready_status
