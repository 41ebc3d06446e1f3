from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set, Tuple, Union

from .models import (
    DependentCounts,
    DependentsInfo,
    PoolChild,
    PoolParent,
    Project,
    RowNumber,
)
from .resource_groups import ProjectSource, ResourceGroups, ensure_groups
from .sizing import pool_budget_months, remaining_duration

logger = logging.getLogger(__name__)

TIER_HIGH = 1
TIER_REST = 2


def _norm(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def priority_tier(project: Project) -> int:
    """Tier 1 for P0 or committed work, tier 2 for the rest."""
    is_p0 = _norm(project.priority or "P0") == "p0"
    is_committed = "committed" in _norm(project.commitment)
    return TIER_HIGH if (is_p0 or is_committed) else TIER_REST


class DependencyGraph:
    """Projects indexed by row with dependency edges resolved once.

    Edges into a pool child are redirected to the pool parent, edges to rows
    outside the list are dropped, and self edges never survive.
    """

    def __init__(self, source: ProjectSource, capacity_pct: float = 100.0) -> None:
        self.groups: ResourceGroups = ensure_groups(source)
        self.capacity_pct = capacity_pct
        self.projects: Dict[RowNumber, Project] = {p.row_number: p for p in self.groups.projects}
        self.order: Tuple[RowNumber, ...] = tuple(p.row_number for p in self.groups.projects)
        self.child_to_parent: Dict[RowNumber, RowNumber] = {}
        self.children: Dict[RowNumber, List[Project]] = {}
        for project in self.groups.projects:
            parent_row = self.groups.parent_of(project.row_number)
            if parent_row is not None and parent_row in self.projects:
                self.child_to_parent[project.row_number] = parent_row
                self.children.setdefault(parent_row, []).append(project)
        self.dangling: Dict[RowNumber, Tuple[RowNumber, ...]] = {}
        self._edges: Dict[RowNumber, Tuple[RowNumber, ...]] = {}
        self._pool_edges: Dict[RowNumber, Tuple[RowNumber, ...]] = {}
        self._build_edges()
        self.dependents: Dict[RowNumber, DependentsInfo] = self._build_dependents()
        self._tiers: Dict[RowNumber, int] = self._build_tiers()
        self._durations: Dict[RowNumber, int] = {}

    def resolve(self, row: RowNumber) -> RowNumber:
        return self.child_to_parent.get(row, row)

    def pool_rows(self, parent_row: RowNumber) -> Set[RowNumber]:
        rows = {parent_row}
        rows.update(child.row_number for child in self.children.get(parent_row, []))
        return rows

    def _build_edges(self) -> None:
        for row in self.order:
            project = self.projects[row]
            missing = tuple(sorted(dep for dep in project.dependency_rows if dep not in self.projects))
            if missing:
                self.dangling[row] = missing
                logger.warning("row %s depends on unknown rows %s; ignoring them", row, list(missing))
        for row in self.order:
            if row in self.child_to_parent:
                continue
            members = [self.projects[row]] + self.children.get(row, [])
            own_pool = self.pool_rows(row) if row in self.children else {row}
            targets: List[RowNumber] = []
            for member in members:
                for dep in sorted(member.dependency_rows):
                    if dep not in self.projects or dep in own_pool:
                        continue
                    resolved = self.resolve(dep)
                    if resolved == row or resolved in targets:
                        continue
                    targets.append(resolved)
            self._edges[row] = tuple(targets)
        for parent_row in self.children:
            members = self.pool_rows(parent_row)
            for member_row in members:
                member = self.projects[member_row]
                self._pool_edges[member_row] = tuple(
                    sorted(dep for dep in member.dependency_rows if dep in members)
                )

    def _build_dependents(self) -> Dict[RowNumber, DependentsInfo]:
        dev: Dict[RowNumber, List[RowNumber]] = {row: [] for row in self.order}
        rel: Dict[RowNumber, List[RowNumber]] = {row: [] for row in self.order}
        plain: Dict[RowNumber, List[RowNumber]] = {row: [] for row in self.order}
        for row in self.order:
            project = self.projects[row]
            for dep in sorted(project.dependency_rows):
                if dep not in self.projects:
                    continue
                target = self.resolve(dep)
                if target == row:
                    continue
                kind = project.dependency_kind(dep)
                bucket = dev if kind == "dev-blocker" else rel if kind == "rel-blocker" else plain
                if row not in bucket[target]:
                    bucket[target].append(row)
        return {
            row: DependentsInfo(
                dev_blocker_for=tuple(dev[row]),
                rel_blocker_for=tuple(rel[row]),
                plain_dep_for=tuple(plain[row]),
            )
            for row in self.order
        }

    def _build_tiers(self) -> Dict[RowNumber, int]:
        tiers: Dict[RowNumber, int] = {}
        for row in self.order:
            if row not in self.child_to_parent:
                tiers[row] = priority_tier(self.projects[row])
        for child_row, parent_row in self.child_to_parent.items():
            tiers[child_row] = tiers.get(parent_row, TIER_REST)
        return tiers

    def main_rows(self) -> List[RowNumber]:
        return [row for row in self.order if row not in self.child_to_parent]

    def is_pool_parent(self, row: RowNumber) -> bool:
        return row in self.children and isinstance(self.groups.tag(row), PoolParent)

    def is_pool_child(self, row: RowNumber) -> bool:
        return row in self.child_to_parent and isinstance(self.groups.tag(row), PoolChild)

    def dependencies_of(self, row: RowNumber) -> Tuple[RowNumber, ...]:
        """Redirected dependency targets of an outer node (pool parent includes its children's)."""
        return self._edges.get(self.resolve(row), ())

    def gating_dependencies(self, row: RowNumber) -> Tuple[RowNumber, ...]:
        """Targets that must be placed first; in-progress work only waits on in-progress work."""
        deps = self.dependencies_of(row)
        if self.projects[row].in_progress:
            return tuple(dep for dep in deps if self.projects[dep].in_progress)
        return deps

    def pool_dependencies(self, row: RowNumber) -> Tuple[RowNumber, ...]:
        return self._pool_edges.get(row, ())

    def tier(self, row: RowNumber) -> int:
        return self._tiers.get(row, TIER_REST)

    def duration(self, row: RowNumber) -> int:
        if row not in self._durations:
            if self.is_pool_parent(row):
                tag = self.groups.tag(row)
                months = max(1, pool_budget_months(tag.pool, self.capacity_pct))
            else:
                months = remaining_duration(self.projects[row], self.capacity_pct)
            self._durations[row] = months
        return self._durations[row]

    def counts(self) -> DependentCounts:
        return DependentCounts(
            dev_blocker={row: len(info.dev_blocker_for) for row, info in self.dependents.items()},
            rel_blocker={row: len(info.rel_blocker_for) for row, info in self.dependents.items()},
            plain={row: len(info.plain_dep_for) for row, info in self.dependents.items()},
        )

    def total_dependents(self, row: RowNumber) -> int:
        info = self.dependents.get(row)
        return info.total if info else 0


GraphSource = Union[DependencyGraph, ProjectSource]


def build_graph(source: GraphSource, capacity_pct: float = 100.0) -> DependencyGraph:
    if isinstance(source, DependencyGraph):
        return source
    return DependencyGraph(source, capacity_pct)


def compute_dependent_counts(source: GraphSource) -> DependentCounts:
    """How many projects list each row as dev-blocker, rel-blocker or plain dependency."""
    return build_graph(source).counts()


def dependents_by_project(source: GraphSource) -> Dict[RowNumber, DependentsInfo]:
    return dict(build_graph(source).dependents)


def tag_priority_tiers(source: GraphSource) -> Dict[RowNumber, int]:
    graph = build_graph(source)
    return {row: graph.tier(row) for row in graph.order}
