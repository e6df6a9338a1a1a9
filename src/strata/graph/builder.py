"""
Dependency graph builder.

Builds the execution graph for one engine invocation from the catalog:
one unit per resource, one per distinct inline discovery query, and an edge
for every attribute reference, explicit dependency and discovery use.
Cycle detection runs before the graph is handed to the engine.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Mapping

import structlog

from strata.catalog.models import Catalog
from strata.catalog.references import iter_references
from strata.core.errors import GraphError, GraphErrorReason
from strata.discovery.models import DiscoveryResult
from strata.graph.models import ExecutionUnit, Graph, UnitKind

if TYPE_CHECKING:
    from strata.state.models import StateRecord

logger = structlog.get_logger()


def _unresolved(source: str, target: str, via: str) -> GraphError:
    return GraphError(
        GraphErrorReason.UNRESOLVED_REFERENCE,
        f"'{source}' {via} '{target}', which is not declared in the catalog",
        path=(source, target),
        details={"unit": source, "target": target},
    )


def _check_acyclic(graph: Graph) -> None:
    cycle = graph.find_cycle()
    if cycle is not None:
        raise GraphError(
            GraphErrorReason.CYCLE_DETECTED,
            f"Dependency cycle detected: {' -> '.join(cycle)}",
            path=cycle,
        )


class GraphBuilder:
    """Builds acyclic execution graphs from a catalog or from persisted state."""

    def build(
        self,
        catalog: Catalog,
        discovery_results: Mapping[str, DiscoveryResult] | None = None,
    ) -> Graph:
        """
        Build the create/update graph.

        Args:
            catalog: Validated resource declarations
            discovery_results: Results already known for some queries, keyed by
                query signature; matching discovery units reuse them

        Raises:
            GraphError: on unresolved references or dependency cycles
        """
        graph = Graph()
        discovery_results = discovery_results or {}

        for spec in catalog:
            graph.add_unit(ExecutionUnit.for_resource(spec))
        for spec in catalog:
            for declaration in spec.discoveries():
                unit = ExecutionUnit.for_discovery(declaration)
                unit.prefetched = discovery_results.get(declaration.query.signature)
                graph.add_unit(unit)

        for spec in catalog:
            for ref in spec.references():
                if ref.resource_id not in catalog:
                    raise _unresolved(spec.id, ref.resource_id, f"references {ref} of")
                graph.add_edge(spec.id, ref.resource_id)
            for dependency in sorted(spec.explicit_dependencies):
                if dependency not in catalog:
                    raise _unresolved(spec.id, dependency, "depends on")
                graph.add_edge(spec.id, dependency)
            for declaration in spec.discoveries():
                graph.add_edge(spec.id, declaration.unit_id)
                for ref in iter_references(declaration.query.filters):
                    if ref.resource_id not in catalog:
                        raise _unresolved(declaration.unit_id, ref.resource_id, "filters on")
                    graph.add_edge(declaration.unit_id, ref.resource_id)

        _check_acyclic(graph)
        logger.debug("graph_built", units=len(graph), edges=len(graph.edges))
        return graph

    def build_teardown(
        self,
        records: Mapping[str, "StateRecord"],
        catalog: Catalog | None = None,
    ) -> Graph:
        """
        Build the graph of existing resources for teardown.

        Only resources with a state record take part: anything never created
        has nothing to tear down. Edges come from the dependencies recorded at
        apply time, plus those the catalog declares between existing resources.
        Run the result through ``Graph.reversed()`` to get teardown order.
        """
        graph = Graph()
        for resource_id in sorted(records):
            record = records[resource_id]
            spec = catalog.get(resource_id) if catalog is not None else None
            graph.add_unit(
                ExecutionUnit(
                    id=resource_id,
                    kind=UnitKind.RESOURCE,
                    resource_kind=record.kind,
                    resource=spec,
                )
            )

        for resource_id in sorted(records):
            dependencies = set(records[resource_id].dependencies)
            spec = catalog.get(resource_id) if catalog is not None else None
            if spec is not None:
                dependencies |= {ref.resource_id for ref in spec.references()}
                dependencies |= set(spec.explicit_dependencies)
            for dependency in sorted(dependencies):
                if dependency in records and dependency != resource_id:
                    graph.add_edge(resource_id, dependency)

        _check_acyclic(graph)
        return graph
