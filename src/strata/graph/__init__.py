"""Execution graph: units, edges, ordering and cycle detection."""

from strata.graph.builder import GraphBuilder
from strata.graph.models import ExecutionUnit, Graph, UnitKind, UnitState

__all__ = ["ExecutionUnit", "Graph", "GraphBuilder", "UnitKind", "UnitState"]
