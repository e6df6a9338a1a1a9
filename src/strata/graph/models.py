"""
Execution graph.

Nodes are execution units; an edge ``dependent -> dependency`` means the
dependent may only run once the dependency has succeeded. Traversals are
deterministic: ties are broken by unit id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from heapq import heapify, heappop, heappush
from typing import Iterator

from strata.catalog.models import DiscoveryDeclaration, ResourceSpec
from strata.discovery.models import DiscoveryResult


class UnitKind(StrEnum):
    RESOURCE = "resource"
    DISCOVERY = "discovery"


class UnitState(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ExecutionUnit:
    """Graph node wrapping one resource or one discovery query."""

    id: str
    kind: UnitKind
    resource_kind: str | None = None
    resource: ResourceSpec | None = None
    discovery: DiscoveryDeclaration | None = None
    prefetched: DiscoveryResult | None = None

    @property
    def is_discovery(self) -> bool:
        return self.kind == UnitKind.DISCOVERY

    def require_resource(self) -> ResourceSpec:
        if self.resource is None:
            raise ValueError(f"Unit '{self.id}' carries no resource declaration")
        return self.resource

    def require_discovery(self) -> DiscoveryDeclaration:
        if self.discovery is None:
            raise ValueError(f"Unit '{self.id}' carries no discovery declaration")
        return self.discovery

    @classmethod
    def for_resource(cls, spec: ResourceSpec) -> "ExecutionUnit":
        return cls(id=spec.id, kind=UnitKind.RESOURCE, resource_kind=spec.kind, resource=spec)

    @classmethod
    def for_discovery(cls, declaration: DiscoveryDeclaration) -> "ExecutionUnit":
        return cls(id=declaration.unit_id, kind=UnitKind.DISCOVERY, discovery=declaration)


@dataclass
class Graph:
    """Directed graph of execution units."""

    units: dict[str, ExecutionUnit] = field(default_factory=dict)
    _dependencies: dict[str, set[str]] = field(default_factory=dict, repr=False)
    _dependents: dict[str, set[str]] = field(default_factory=dict, repr=False)

    def add_unit(self, unit: ExecutionUnit) -> None:
        if unit.id in self.units:
            return
        self.units[unit.id] = unit
        self._dependencies[unit.id] = set()
        self._dependents[unit.id] = set()

    def add_edge(self, dependent: str, dependency: str) -> None:
        """Record that ``dependent`` needs ``dependency`` first."""
        self._assert_unit_exists(dependent)
        self._assert_unit_exists(dependency)
        self._dependencies[dependent].add(dependency)
        self._dependents[dependency].add(dependent)

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self.units

    def __iter__(self) -> Iterator[ExecutionUnit]:
        return iter(self.units.values())

    def __len__(self) -> int:
        return len(self.units)

    @property
    def edges(self) -> list[tuple[str, str]]:
        """All ``(dependent, dependency)`` pairs in deterministic order."""
        return [
            (dependent, dependency)
            for dependent in sorted(self.units)
            for dependency in sorted(self._dependencies[dependent])
        ]

    def dependencies(self, unit_id: str) -> tuple[str, ...]:
        self._assert_unit_exists(unit_id)
        return tuple(sorted(self._dependencies[unit_id]))

    def dependents(self, unit_id: str) -> tuple[str, ...]:
        self._assert_unit_exists(unit_id)
        return tuple(sorted(self._dependents[unit_id]))

    def transitive_dependents(self, unit_id: str) -> tuple[str, ...]:
        """Every unit that directly or indirectly depends on ``unit_id``."""
        self._assert_unit_exists(unit_id)
        visited: set[str] = set()
        pending = list(self._dependents[unit_id])
        while pending:
            node = pending.pop()
            if node in visited:
                continue
            visited.add(node)
            pending.extend(n for n in self._dependents[node] if n not in visited)
        return tuple(sorted(visited))

    def find_cycle(self) -> tuple[str, ...] | None:
        """
        Depth-first search with tri-colour marking.

        Returns the first cycle found as a closed path, e.g. ``("a", "b", "a")``
        where each unit depends on the next, or None when the graph is acyclic.
        """
        white, grey, black = 0, 1, 2
        colour: dict[str, int] = {unit_id: white for unit_id in self.units}

        for start in sorted(self.units):
            if colour[start] != white:
                continue
            colour[start] = grey
            stack: list[str] = [start]
            frames: list[tuple[str, Iterator[str]]] = [
                (start, iter(sorted(self._dependencies[start])))
            ]
            while frames:
                node, children = frames[-1]
                child = next(children, None)
                if child is None:
                    frames.pop()
                    stack.pop()
                    colour[node] = black
                    continue
                if colour[child] == grey:
                    return tuple(stack[stack.index(child) :] + [child])
                if colour[child] == white:
                    colour[child] = grey
                    stack.append(child)
                    frames.append((child, iter(sorted(self._dependencies[child]))))
        return None

    def topological_order(self) -> list[str]:
        """Dependencies before dependents; raises ValueError on a cycle."""
        indegree = {unit_id: len(deps) for unit_id, deps in self._dependencies.items()}
        ready = [unit_id for unit_id, degree in indegree.items() if degree == 0]
        heapify(ready)

        order: list[str] = []
        while ready:
            node = heappop(ready)
            order.append(node)
            for dependent in sorted(self._dependents[node]):
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    heappush(ready, dependent)

        if len(order) != len(self.units):
            raise ValueError("Graph contains a cycle")
        return order

    def reversed(self) -> "Graph":
        """Same units with every edge flipped, as used for teardown."""
        flipped = Graph()
        for unit in self.units.values():
            flipped.add_unit(unit)
        for dependent, dependency in self.edges:
            flipped.add_edge(dependency, dependent)
        return flipped

    def subgraph(self, unit_ids: set[str]) -> "Graph":
        """Restriction of the graph to ``unit_ids``."""
        sub = Graph()
        for unit_id in sorted(unit_ids):
            sub.add_unit(self.units[unit_id])
        for dependent, dependency in self.edges:
            if dependent in unit_ids and dependency in unit_ids:
                sub.add_edge(dependent, dependency)
        return sub

    def _assert_unit_exists(self, unit_id: str) -> None:
        if unit_id not in self.units:
            raise KeyError(f"Unknown unit: {unit_id}")
