"""Tests for the dependency graph and its builder."""

import pytest
from hypothesis import given
from hypothesis import strategies as st
from strata.catalog import load
from strata.catalog.models import DiscoveryQuery
from strata.core.errors import GraphError, GraphErrorReason
from strata.discovery.models import DiscoveryResult
from strata.graph import ExecutionUnit, Graph, GraphBuilder, UnitKind
from strata.state.models import StateRecord


def _role(resource_id, depends_on=(), refs=()):
    attributes = {"name": resource_id, "service": "eks.amazonaws.com"}
    if refs:
        attributes["description"] = " ".join(f"${{{ref}.arn}}" for ref in refs)
    return {
        "id": resource_id,
        "kind": "role",
        "depends_on": list(depends_on),
        "attributes": attributes,
    }


@st.composite
def dag_declarations(draw):
    """Random acyclic catalogs: resource i only depends on resources < i."""
    size = draw(st.integers(min_value=1, max_value=12))
    resources = []
    for i in range(size):
        earlier = [f"r{j}" for j in range(i)]
        deps = draw(st.lists(st.sampled_from(earlier), unique=True)) if earlier else []
        refs = draw(st.lists(st.sampled_from(earlier), unique=True, max_size=2)) if earlier else []
        resources.append(_role(f"r{i}", deps, refs))
    return {"resources": resources}


@st.composite
def cyclic_declarations(draw):
    """An acyclic catalog plus one back edge closing a cycle."""
    declarations = draw(dag_declarations())
    resources = declarations["resources"]
    size = len(resources)
    low = draw(st.integers(min_value=0, max_value=size - 1))
    high = draw(st.integers(min_value=low, max_value=size - 1))
    # Chain high -> ... -> low exists after forcing high to depend on low
    # through every index in between; the back edge low -> high closes it.
    for i in range(low + 1, high + 1):
        if f"r{i - 1}" not in resources[i]["depends_on"]:
            resources[i]["depends_on"].append(f"r{i - 1}")
    resources[low]["depends_on"].append(f"r{high}")
    return declarations


def _edges(graph):
    return set(graph.edges)


class TestGraphProperties:
    """Ordering and cycle properties over random catalogs."""

    @given(dag_declarations())
    def test_acyclic_catalog_yields_valid_order(self, declarations):
        graph = GraphBuilder().build(load(declarations))
        order = graph.topological_order()
        position = {unit_id: i for i, unit_id in enumerate(order)}

        assert sorted(order) == sorted(graph.units)
        for dependent, dependency in graph.edges:
            assert position[dependency] < position[dependent]

    @given(dag_declarations())
    def test_reversed_graph_orders_dependents_first(self, declarations):
        graph = GraphBuilder().build(load(declarations))
        position = {unit_id: i for i, unit_id in enumerate(graph.reversed().topological_order())}
        for dependent, dependency in graph.edges:
            assert position[dependent] < position[dependency]

    @given(cyclic_declarations())
    def test_cycle_is_reported_with_a_real_path(self, declarations):
        catalog = load(declarations)
        with pytest.raises(GraphError) as exc_info:
            GraphBuilder().build(catalog)

        error = exc_info.value
        assert error.reason == GraphErrorReason.CYCLE_DETECTED
        path = error.path
        assert len(path) >= 2
        assert path[0] == path[-1]
        for dependent, dependency in zip(path, path[1:]):
            spec = catalog.get(dependent)
            referenced = {ref.resource_id for ref in spec.references()}
            assert dependency in spec.explicit_dependencies | referenced


class TestGraphBuilder:
    """Tests for GraphBuilder.build()."""

    def test_eks_scenario_order(self, eks_declarations):
        graph = GraphBuilder().build(load(eks_declarations))
        order = graph.topological_order()
        position = {unit_id: i for i, unit_id in enumerate(order)}

        assert position["cluster-role"] < position["cluster-policy"] < position["cluster"] < position["nodes"]
        for policy in ("worker-policy", "cni-policy", "registry-policy"):
            assert position[policy] < position["nodes"]

    def test_discovery_is_a_unit_with_no_dependencies(self, eks_declarations):
        graph = GraphBuilder().build(load(eks_declarations))
        discovery_id = "discovery.subnets[vpc-id=vpc-1]@control-plane.id"

        assert graph.units[discovery_id].kind == UnitKind.DISCOVERY
        assert graph.dependencies(discovery_id) == ()
        assert discovery_id in graph.dependencies("cluster")
        # Free to run in the first wave alongside the roles.
        assert graph.dependencies("cluster-role") == ()

    def test_edges_from_references_and_explicit_dependencies(self, eks_declarations):
        graph = GraphBuilder().build(load(eks_declarations))

        assert ("cluster", "cluster-role") in _edges(graph)
        assert ("cluster", "cluster-policy") in _edges(graph)
        assert ("nodes", "cluster") in _edges(graph)

    def test_identical_discovery_shares_one_unit(self):
        discovery = {"discover": "subnets", "filters": {"vpc-id": "vpc-1"}, "select": "id"}
        declarations = {
            "resources": [
                {"id": "c1", "kind": "cluster", "attributes": {"name": "a", "role_arn": "x", "subnet_ids": discovery}},
                {"id": "c2", "kind": "cluster", "attributes": {"name": "b", "role_arn": "x", "subnet_ids": discovery}},
            ]
        }
        graph = GraphBuilder().build(load(declarations))

        assert sum(1 for unit in graph if unit.kind == UnitKind.DISCOVERY) == 1

    def test_discovery_filters_create_edges(self):
        declarations = {
            "resources": [
                _role("vpc-owner"),
                {
                    "id": "c",
                    "kind": "cluster",
                    "attributes": {
                        "name": "c",
                        "role_arn": "x",
                        "subnet_ids": {"discover": "subnets", "filters": {"vpc-id": "${vpc-owner.arn}"}},
                    },
                },
            ]
        }
        graph = GraphBuilder().build(load(declarations))
        discovery_id = "discovery.subnets[vpc-id=${vpc-owner.arn}]"

        assert graph.dependencies(discovery_id) == ("vpc-owner",)

    def test_unresolved_reference(self):
        with pytest.raises(GraphError) as exc_info:
            GraphBuilder().build(load({"resources": [_role("a", refs=["ghost"])]}))
        assert exc_info.value.reason == GraphErrorReason.UNRESOLVED_REFERENCE
        assert exc_info.value.path == ("a", "ghost")

    def test_unresolved_explicit_dependency(self):
        with pytest.raises(GraphError) as exc_info:
            GraphBuilder().build(load({"resources": [_role("a", depends_on=["ghost"])]}))
        assert exc_info.value.reason == GraphErrorReason.UNRESOLVED_REFERENCE

    def test_self_dependency_is_a_cycle(self):
        with pytest.raises(GraphError) as exc_info:
            GraphBuilder().build(load({"resources": [_role("a", depends_on=["a"])]}))
        assert exc_info.value.path == ("a", "a")

    def test_prefetched_discovery_results_are_attached(self, eks_declarations):
        query = DiscoveryQuery("subnets", {"vpc-id": "vpc-1"})
        result = DiscoveryResult(query=query, items=({"id": "s", "availability_zone": "us-east-1a"},))
        graph = GraphBuilder().build(load(eks_declarations), {query.signature: result})

        assert graph.units["discovery.subnets[vpc-id=vpc-1]@workers.id"].prefetched is result


class TestTeardownGraph:
    """Tests for GraphBuilder.build_teardown()."""

    def _record(self, resource_id, dependencies=()):
        return StateRecord(id=resource_id, kind="role", provider_id=f"p-{resource_id}", dependencies=list(dependencies))

    def test_only_existing_resources_take_part(self, eks_declarations):
        records = {
            "cluster-role": self._record("cluster-role"),
            "cluster-policy": self._record("cluster-policy", ["cluster-role"]),
        }
        graph = GraphBuilder().build_teardown(records, load(eks_declarations))

        assert sorted(graph.units) == ["cluster-policy", "cluster-role"]
        assert graph.reversed().topological_order() == ["cluster-policy", "cluster-role"]

    def test_recorded_dependencies_without_catalog(self):
        records = {
            "a": self._record("a"),
            "b": self._record("b", ["a"]),
            "c": self._record("c", ["b", "gone"]),
        }
        teardown = GraphBuilder().build_teardown(records).reversed()

        assert teardown.topological_order() == ["c", "b", "a"]


class TestGraph:
    """Tests for Graph primitives."""

    def _chain(self):
        graph = Graph()
        for unit_id in ("a", "b", "c", "d"):
            graph.add_unit(ExecutionUnit(id=unit_id, kind=UnitKind.RESOURCE))
        graph.add_edge("b", "a")
        graph.add_edge("c", "b")
        return graph

    def test_transitive_dependents(self):
        graph = self._chain()
        assert graph.transitive_dependents("a") == ("b", "c")
        assert graph.transitive_dependents("d") == ()

    def test_find_cycle_none_for_dag(self):
        assert self._chain().find_cycle() is None

    def test_topological_order_ties_by_id(self):
        assert self._chain().topological_order() == ["a", "b", "c", "d"]

    def test_unknown_unit(self):
        with pytest.raises(KeyError):
            self._chain().add_edge("a", "zzz")

    def test_subgraph(self):
        sub = self._chain().subgraph({"b", "c"})
        assert sub.edges == [("c", "b")]

    def test_unit_without_declaration_is_rejected(self):
        unit = ExecutionUnit(id="a", kind=UnitKind.RESOURCE)
        with pytest.raises(ValueError, match="no resource declaration"):
            unit.require_resource()
        with pytest.raises(ValueError, match="no discovery declaration"):
            unit.require_discovery()
