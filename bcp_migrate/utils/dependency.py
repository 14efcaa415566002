"""Dependency analysis for table migration order."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar, Union

from bcp_migrate.exceptions import ConfigurationError, DependencyError
from bcp_migrate.models.table_metadata import DependencyEdge, TableDescriptor, TableRef
from bcp_migrate.utils.logger import StructuredLogger

TableLike = TypeVar("TableLike", TableDescriptor, TableRef)

_UNVISITED, _IN_PROGRESS, _DONE = 0, 1, 2


def _ref(table: Union[TableDescriptor, TableRef]) -> TableRef:
    return table.ref if isinstance(table, TableDescriptor) else table


@dataclass
class DependencyResolution:
    """Processing order; referenced tables always precede their dependents."""

    order: List
    levels: List[List] = field(default_factory=list)
    broken_edges: List[DependencyEdge] = field(default_factory=list)


class DependencyAnalyzer:
    """Analyze foreign key dependencies between tables."""

    def __init__(self, logger: Optional[StructuredLogger] = None):
        self.logger = logger

    async def analyze_dependencies(self, metadata) -> List[DependencyEdge]:
        """
        Load foreign key dependencies.

        Args:
            metadata: Metadata provider for the database to inspect

        Returns:
            One edge per (dependent, referenced) table pair
        """
        edges = await metadata.list_table_dependencies()
        return self.collapse_edges(edges)

    @staticmethod
    def collapse_edges(edges: Iterable[DependencyEdge]) -> List[DependencyEdge]:
        """Collapse multiple foreign keys between the same tables into one edge."""
        seen: Dict[Tuple[TableRef, TableRef], DependencyEdge] = {}
        for edge in edges:
            seen.setdefault(edge.pair, edge)
        return [seen[pair] for pair in sorted(seen)]

    def resolve(
        self, tables: Sequence[TableLike], edges: Iterable[DependencyEdge]
    ) -> DependencyResolution:
        """
        Compute a processing order for the selected tables.

        Any edge closing a cycle is broken (one edge per detected cycle: the
        edge from the last table visited in the cycle back to the first) and
        logged, then a plain topological sort runs on the remaining edges.
        Breaking is a heuristic and does not minimize the number of broken
        edges when cycles overlap.

        Args:
            tables: Tables selected for migration
            edges: Dependency edges; edges leaving the selection are ignored

        Returns:
            Dependency resolution with order, levels and broken edges

        Raises:
            ConfigurationError: If no tables are given or a table is repeated
        """
        if not tables:
            raise ConfigurationError("No tables selected for migration")

        refs = [_ref(t) for t in tables]
        duplicates = sorted(str(r) for r, n in Counter(refs).items() if n > 1)
        if duplicates:
            raise ConfigurationError(
                f"Duplicate tables selected for migration: {', '.join(duplicates)}"
            )

        # Index tables in sorted order so the result never depends on input order
        items = sorted(tables, key=_ref)
        index = {_ref(t): i for i, t in enumerate(items)}
        adjacency = self._build_adjacency(index, edges)

        back_edges = self._find_back_edges(adjacency)
        broken: List[DependencyEdge] = []
        for node, target in back_edges:
            adjacency[node].remove(target)
            edge = DependencyEdge(_ref(items[node]), _ref(items[target]))
            broken.append(edge)
            if self.logger:
                self.logger.warning(
                    f"Dependency cycle detected, breaking edge {edge}",
                    dependent=str(edge.dependent),
                    referenced=str(edge.referenced),
                )

        level_indexes = self._topological_levels(adjacency)
        levels = [[items[i] for i in level] for level in level_indexes]
        order = [table for level in levels for table in level]
        return DependencyResolution(order=order, levels=levels, broken_edges=broken)

    @staticmethod
    def _build_adjacency(
        index: Dict[TableRef, int], edges: Iterable[DependencyEdge]
    ) -> List[List[int]]:
        depends_on: List[set] = [set() for _ in index]
        for edge in edges:
            dependent = index.get(edge.dependent)
            referenced = index.get(edge.referenced)
            if dependent is None or referenced is None or dependent == referenced:
                continue
            depends_on[dependent].add(referenced)
        return [sorted(targets) for targets in depends_on]

    @staticmethod
    def _find_back_edges(adjacency: List[List[int]]) -> List[Tuple[int, int]]:
        """Iterative depth-first search returning the edges that close cycles."""
        state = [_UNVISITED] * len(adjacency)
        back_edges: List[Tuple[int, int]] = []

        for root in range(len(adjacency)):
            if state[root] != _UNVISITED:
                continue
            state[root] = _IN_PROGRESS
            stack: List[Tuple[int, int]] = [(root, 0)]
            while stack:
                node, position = stack[-1]
                neighbors = adjacency[node]
                if position >= len(neighbors):
                    state[node] = _DONE
                    stack.pop()
                    continue
                stack[-1] = (node, position + 1)
                target = neighbors[position]
                if state[target] == _UNVISITED:
                    state[target] = _IN_PROGRESS
                    stack.append((target, 0))
                elif state[target] == _IN_PROGRESS:
                    back_edges.append((node, target))

        return back_edges

    @staticmethod
    def _topological_levels(adjacency: List[List[int]]) -> List[List[int]]:
        """Kahn's algorithm; each level only depends on earlier levels."""
        remaining = [len(targets) for targets in adjacency]
        dependents: List[List[int]] = [[] for _ in adjacency]
        for node, targets in enumerate(adjacency):
            for target in targets:
                dependents[target].append(node)

        levels: List[List[int]] = []
        ready = [node for node, count in enumerate(remaining) if count == 0]
        placed = 0
        while ready:
            levels.append(ready)
            placed += len(ready)
            next_ready: List[int] = []
            for node in ready:
                for dependent in dependents[node]:
                    remaining[dependent] -= 1
                    if remaining[dependent] == 0:
                        next_ready.append(dependent)
            ready = sorted(next_ready)

        if placed != len(adjacency):
            raise DependencyError("Dependency graph still contains a cycle")
        return levels

    def get_self_referencing_tables(
        self, edges: Iterable[DependencyEdge]
    ) -> List[TableRef]:
        """
        Identify tables with self-referencing foreign keys.

        Args:
            edges: Dependency edges

        Returns:
            Tables that reference themselves
        """
        return sorted({e.dependent for e in edges if e.dependent == e.referenced})
