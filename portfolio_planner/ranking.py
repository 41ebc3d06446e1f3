from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .dependencies import DependencyGraph, GraphSource, build_graph
from .models import DependentCounts, GroupTag, PoolChild, PoolParent, Project, RowNumber

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankResult:
    order: Tuple[Project, ...]
    flushed_rows: Tuple[RowNumber, ...] = ()
    cycles: Tuple[Tuple[RowNumber, ...], ...] = ()


def rank_key(graph: DependencyGraph, row: RowNumber) -> Tuple[int, int, int, int, int, int, int, int]:
    project = graph.projects[row]
    info = graph.dependents.get(row)
    dev = len(info.dev_blocker_for) if info else 0
    rel = len(info.rel_blocker_for) if info else 0
    plain = len(info.plain_dep_for) if info else 0
    return (
        0 if project.in_progress else 1,
        graph.tier(row),
        -(dev + rel + plain),
        -dev,
        -rel,
        -plain,
        -graph.duration(row),
        row,
    )


def ready_set_walk(
    rows: Sequence[RowNumber],
    dependencies: Callable[[RowNumber], Iterable[RowNumber]],
    placed: Iterable[RowNumber] = (),
) -> Tuple[List[RowNumber], List[RowNumber]]:
    """Place rows in the given order, each only after its dependencies.

    ``rows`` must already be sorted by rank. Each pass takes the first
    unplaced row whose dependencies are placed. When a pass finds nothing the
    remaining rows are flushed in rank order; the flushed rows are returned
    separately.
    """
    done: Set[RowNumber] = set(placed)
    result: List[RowNumber] = []
    remaining = list(rows)
    while remaining:
        chosen = None
        for idx, row in enumerate(remaining):
            if all(dep in done for dep in dependencies(row)):
                chosen = idx
                break
        if chosen is None:
            return result + remaining, list(remaining)
        row = remaining.pop(chosen)
        result.append(row)
        done.add(row)
    return result, []


def find_cycles(
    rows: Iterable[RowNumber],
    dependencies: Callable[[RowNumber], Iterable[RowNumber]],
) -> List[Tuple[RowNumber, ...]]:
    """Strongly connected groups (size > 1) among ``rows``, each sorted, in row order."""
    candidates = sorted(set(rows))
    scope = set(candidates)
    reach: Dict[RowNumber, Set[RowNumber]] = {}
    for row in candidates:
        seen: Set[RowNumber] = set()
        stack = [dep for dep in dependencies(row) if dep in scope]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(dep for dep in dependencies(current) if dep in scope and dep not in seen)
        reach[row] = seen
    cycles: List[Tuple[RowNumber, ...]] = []
    assigned: Set[RowNumber] = set()
    for row in candidates:
        if row in assigned or row not in reach[row]:
            continue
        component = tuple(sorted(other for other in reach[row] if row in reach[other]))
        assigned.update(component)
        cycles.append(component)
    return cycles


def _order_pool_children(graph: DependencyGraph, parent_row: RowNumber) -> List[RowNumber]:
    children = sorted(child.row_number for child in graph.children.get(parent_row, []))
    done: Set[RowNumber] = {parent_row}
    ordered: List[RowNumber] = []
    remaining = list(children)
    while remaining:
        ready = [row for row in remaining if all(dep in done for dep in graph.pool_dependencies(row))]
        if not ready:
            ordered.extend(remaining)
            break
        ordered.extend(ready)
        done.update(ready)
        remaining = [row for row in remaining if row not in done]
    return ordered


def _stalled_pool_rows(graph: DependencyGraph, parent_row: RowNumber) -> List[RowNumber]:
    """Pool members the in-pool walk can only place by flushing."""
    _, stalled = ready_set_walk(sorted(graph.pool_rows(parent_row)), graph.pool_dependencies)
    return stalled


def rank_projects(source: GraphSource, capacity_pct: float = 100.0) -> RankResult:
    graph = build_graph(source, capacity_pct)
    main_rows = sorted(graph.main_rows(), key=lambda row: rank_key(graph, row))
    ordered_rows, flushed = ready_set_walk(main_rows, graph.gating_dependencies)
    cycles: List[Tuple[RowNumber, ...]] = []
    if flushed:
        cycles = find_cycles(flushed, graph.gating_dependencies)
        logger.warning(
            "dependency ordering stalled; flushing rows %s in rank order (cycles: %s)",
            flushed,
            cycles,
        )
    flushed_rows: List[RowNumber] = list(flushed)
    order: List[Project] = []
    for row in ordered_rows:
        order.append(graph.projects[row])
        if row in graph.children:
            order.extend(graph.projects[child] for child in _order_pool_children(graph, row))
            stalled = _stalled_pool_rows(graph, row)
            if stalled:
                pool_cycles = find_cycles(stalled, graph.pool_dependencies)
                logger.warning(
                    "pool %s ordering stalled; flushing rows %s (cycles: %s)",
                    row,
                    stalled,
                    pool_cycles,
                )
                flushed_rows.extend(member for member in stalled if member not in flushed_rows)
                cycles.extend(pool_cycles)
    logger.debug("ranking: ordered %s projects", len(order))
    return RankResult(order=tuple(order), flushed_rows=tuple(flushed_rows), cycles=tuple(cycles))


def order_by_rank(source: GraphSource, capacity_pct: float = 100.0) -> List[Project]:
    """Dependency-respecting rank order with pool children right after their parent."""
    return list(rank_projects(source, capacity_pct).order)


def rank_label(project: Project, counts: DependentCounts, tag: Optional[GroupTag] = None) -> str:
    """Short label such as ``"0 (In Progress)"``, ``"1 (3)"``, ``"2 (2)"`` or ``"3"``."""
    blockers = counts.dev_blocker.get(project.row_number, 0)
    plain = counts.plain.get(project.row_number, 0) + counts.rel_blocker.get(project.row_number, 0)
    if project.in_progress:
        text = "0 (In Progress)"
    elif blockers > 0:
        text = f"1 ({blockers})"
    elif plain > 0:
        text = f"2 ({plain})"
    else:
        text = "3"
    if isinstance(tag, PoolChild):
        note = f" [in {tag.group_name}]" if tag.group_name else f" [in group of {tag.parent_row}]"
    elif isinstance(tag, PoolParent):
        count = len(tag.child_rows)
        note = f" [{tag.group_name}: {count} sub]" if tag.group_name else f" [group: {count} sub]"
    else:
        note = ""
    return text + note


def rank_labels(source: GraphSource) -> Mapping[RowNumber, str]:
    graph = build_graph(source)
    counts = graph.counts()
    return {row: rank_label(graph.projects[row], counts, graph.groups.tag(row)) for row in graph.order}
