from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from .challenges import ProjectChallenge, challenge_report
from .dependencies import DependencyGraph, GraphSource, build_graph
from .display import TieredSchedule, tier_schedule
from .filters import prepare_schedule_data
from .models import (
    DependentCounts,
    DependentsInfo,
    PoolPlacement,
    PoolSchedule,
    Project,
    RowNumber,
    ScheduleEntry,
    SchedulingConfig,
)
from .ranking import RankResult, rank_labels, rank_projects, ready_set_walk
from .resource_groups import ResourceGroups, detect_resource_groups
from .sizing import (
    EPSILON,
    pool_budget_months,
    remaining_duration,
    reserved_headcount,
    total_resources,
)
from .timeline import first_of_month, long_poles, mark_past_deadline, month_start, schedule_end

logger = logging.getLogger(__name__)

MAX_SEARCH_MONTHS = 1200


class SchedulingError(RuntimeError):
    pass


class InfeasibleProjectError(SchedulingError):
    def __init__(self, project: Project, reason: str) -> None:
        super().__init__(f"Project {project.row_number} infeasible: {reason}")
        self.project = project
        self.reason = reason


class DependencyCycleError(SchedulingError):
    def __init__(self, cycles: Sequence[Tuple[RowNumber, ...]]) -> None:
        joined = "; ".join(" -> ".join(str(row) for row in cycle) for cycle in cycles)
        super().__init__(f"dependency cycle detected: {joined}")
        self.cycles = tuple(cycles)


@dataclass
class MonthlyUsage:
    """Reserved headcount per month index, checked against a fixed capacity."""

    capacity: float
    usage: Dict[int, int] = field(default_factory=dict)

    def used(self, month: int) -> int:
        return self.usage.get(month, 0)

    def can_fit(self, start: int, months: int, reserved: int) -> bool:
        if reserved <= 0:
            return True
        for month in range(start, start + months):
            if self.used(month) + reserved > self.capacity + EPSILON:
                return False
        return True

    def reserve(self, start: int, months: int, reserved: int) -> None:
        if reserved <= 0:
            return
        for month in range(start, start + months):
            self.usage[month] = self.used(month) + reserved

    def earliest_fit(self, earliest: int, months: int, reserved: int, limit: int) -> Optional[int]:
        for start in range(earliest, earliest + limit + 1):
            if self.can_fit(start, months, reserved):
                return start
        return None


def _pack_pool(graph: DependencyGraph, parent_row: RowNumber, max_search_months: int) -> PoolSchedule:
    pool = graph.groups.tag(parent_row).pool
    members = [parent_row] + [child.row_number for child in graph.children.get(parent_row, [])]
    durations: Dict[RowNumber, int] = {}
    missing: Dict[RowNumber, bool] = {}
    for row in members:
        months = remaining_duration(graph.projects[row], graph.capacity_pct)
        missing[row] = months <= 0
        durations[row] = max(1, months)
    blocks = {row: 0 for row in members}
    for row in members:
        for dep in graph.pool_dependencies(row):
            blocks[dep] += 1
    ranked = sorted(members, key=lambda row: (-blocks[row], -durations[row], row))
    ordered, _ = ready_set_walk(ranked, graph.pool_dependencies)

    slots = max(1, int(math.floor(pool.total_resources + EPSILON)))
    usage = MonthlyUsage(capacity=slots)
    ends: Dict[RowNumber, int] = {}
    placements: List[PoolPlacement] = []
    for row in ordered:
        earliest = max((ends[dep] for dep in graph.pool_dependencies(row) if dep in ends), default=0)
        offset = usage.earliest_fit(earliest, durations[row], 1, max_search_months)
        if offset is None:
            offset = earliest
        usage.reserve(offset, durations[row], 1)
        ends[row] = offset + durations[row]
        placements.append(PoolPlacement(row, offset, durations[row], missing[row]))

    chain = max(ends.values(), default=0)
    budget = pool_budget_months(pool, graph.capacity_pct)
    overrun = budget > 0 and chain > budget
    if overrun:
        logger.warning(
            "pool %s needs %s months for its dependency chain, budget is %s",
            parent_row,
            chain,
            budget,
        )
    return PoolSchedule(
        budget_months=budget,
        chain_months=chain,
        span_months=max(budget, chain, 1),
        slots=slots,
        overrun=overrun,
        placements=tuple(placements),
    )


def _place(
    usage: MonthlyUsage,
    earliest: int,
    months: int,
    reserved: int,
    max_search_months: int,
) -> Tuple[int, Optional[str]]:
    if reserved <= 0:
        return earliest, None
    if reserved > usage.capacity + EPSILON:
        return earliest, f"needs {reserved} people, capacity is {usage.capacity:g}"
    start = usage.earliest_fit(earliest, months, reserved, max_search_months)
    if start is None:
        return earliest, f"no capacity window within {max_search_months} months"
    return start, None


@dataclass
class PackResult:
    entries: List[ScheduleEntry]
    graph: DependencyGraph
    rank: RankResult


def pack_schedule(
    source: GraphSource,
    start_date: date,
    capacity_headcount: float,
    capacity_pct: float = 100.0,
    *,
    strict: bool = False,
    max_search_months: int = MAX_SEARCH_MONTHS,
) -> PackResult:
    graph = build_graph(source, capacity_pct)
    rank = rank_projects(graph)
    if rank.cycles and strict:
        raise DependencyCycleError(rank.cycles)
    flushed = set(rank.flushed_rows)

    children_order: Dict[RowNumber, List[RowNumber]] = {}
    for project in rank.order:
        parent_row = graph.child_to_parent.get(project.row_number)
        if parent_row is not None:
            children_order.setdefault(parent_row, []).append(project.row_number)

    origin = first_of_month(start_date)
    usage = MonthlyUsage(capacity=max(0.0, float(capacity_headcount)))
    end_by_row: Dict[RowNumber, int] = {}
    entries: List[ScheduleEntry] = []

    for project in rank.order:
        row = project.row_number
        if row in graph.child_to_parent:
            continue
        pool_schedule: Optional[PoolSchedule] = None
        if graph.is_pool_parent(row):
            pool_schedule = _pack_pool(graph, row, max_search_months)
            months = pool_schedule.span_months
            people = graph.groups.tag(row).pool.total_resources
            missing = False
        else:
            raw_months = remaining_duration(project, capacity_pct)
            missing = raw_months <= 0
            months = max(1, raw_months)
            people = total_resources(project)
        reserved = reserved_headcount(people)

        earliest = 0
        if not project.in_progress:
            dep_ends = [end_by_row[dep] for dep in graph.dependencies_of(row) if dep in end_by_row]
            earliest = max(dep_ends, default=0)

        start, problem = _place(usage, earliest, months, reserved, max_search_months)
        if problem:
            if strict:
                raise InfeasibleProjectError(project, problem)
            logger.warning("row %s cannot be placed: %s", row, problem)
        else:
            usage.reserve(start, months, reserved)
        end_by_row[row] = start + months

        entry = ScheduleEntry(
            project=project,
            start_date=month_start(origin, start),
            end_date=month_start(origin, start + months),
            start_month=start,
            duration_months=months,
            reserved_headcount=reserved,
            in_progress=bool(project.in_progress),
            missing_duration_data=missing,
            infeasible=problem is not None,
            flushed=row in flushed,
            pool_schedule=pool_schedule,
        )
        entries.append(entry)

        if pool_schedule is None:
            continue
        for child_row in children_order.get(row, []):
            placement = pool_schedule.placement_for(child_row)
            child_start = start + placement.offset
            entries.append(
                ScheduleEntry(
                    project=graph.projects[child_row],
                    start_date=month_start(origin, child_start),
                    end_date=month_start(origin, child_start + placement.duration_months),
                    start_month=child_start,
                    duration_months=placement.duration_months,
                    reserved_headcount=0,
                    in_progress=bool(graph.projects[child_row].in_progress),
                    is_pool_child=True,
                    parent_row=row,
                    missing_duration_data=placement.missing_duration_data,
                    infeasible=entry.infeasible,
                    flushed=entry.flushed or child_row in flushed,
                )
            )

    logger.debug("engine: scheduled %s entries from %s projects", len(entries), len(rank.order))
    return PackResult(entries=entries, graph=graph, rank=rank)


def pack(
    projects: GraphSource,
    start_date: date,
    end_date: Optional[date],
    capacity_headcount: float,
    capacity_pct: float = 100.0,
    *,
    strict: bool = False,
    max_search_months: int = MAX_SEARCH_MONTHS,
) -> List[ScheduleEntry]:
    """Place every project at its earliest dependency- and capacity-respecting month.

    ``end_date`` is only a horizon for later queries; packing runs past it.
    """
    logger.debug("engine: packing from %s (horizon %s)", start_date, end_date)
    return pack_schedule(
        projects,
        start_date,
        capacity_headcount,
        capacity_pct,
        strict=strict,
        max_search_months=max_search_months,
    ).entries


@dataclass
class ScheduleResult:
    config: SchedulingConfig
    entries: List[ScheduleEntry]
    groups: ResourceGroups
    dependents: Dict[RowNumber, DependentsInfo]
    counts: DependentCounts
    display: TieredSchedule
    schedule_end: Optional[date]
    long_poles: List[ScheduleEntry]
    past_deadline: List[ScheduleEntry]
    flushed_rows: Tuple[RowNumber, ...] = ()
    cycles: Tuple[Tuple[RowNumber, ...], ...] = ()
    dangling: Dict[RowNumber, Tuple[RowNumber, ...]] = field(default_factory=dict)
    dropped: int = 0
    rank_labels: Dict[RowNumber, str] = field(default_factory=dict)
    challenges: List[ProjectChallenge] = field(default_factory=list)

    @property
    def timeline_end(self) -> date:
        if self.schedule_end and self.schedule_end > self.config.end_date:
            return self.schedule_end
        return self.config.end_date


def plan(
    projects: Sequence[Project],
    cfg: SchedulingConfig,
    *,
    strict: Optional[bool] = None,
) -> ScheduleResult:
    strict_mode = cfg.strict if strict is None else strict
    selected = prepare_schedule_data(
        projects,
        priority=cfg.priority_filter,
        committed_only=cfg.committed_only,
    )
    groups = detect_resource_groups(selected)
    graph = DependencyGraph(groups, cfg.capacity_pct)
    packed = pack_schedule(
        graph,
        cfg.start_date,
        cfg.capacity_headcount,
        cfg.capacity_pct,
        strict=strict_mode,
        max_search_months=cfg.max_search_months,
    )
    entries = packed.entries
    late = mark_past_deadline(entries, cfg.end_date)
    end = schedule_end(entries)
    horizon = end if end and end > cfg.end_date else cfg.end_date
    poles = long_poles(entries, horizon, cfg.long_pole_fraction)
    display = tier_schedule(entries, graph.dependents)
    logger.info(
        "planned %s of %s projects; schedule ends %s; %s past deadline",
        len(selected),
        len(projects),
        end,
        len(late),
    )
    return ScheduleResult(
        config=cfg,
        entries=entries,
        groups=groups,
        dependents=dict(graph.dependents),
        counts=graph.counts(),
        display=display,
        schedule_end=end,
        long_poles=poles,
        past_deadline=late,
        flushed_rows=packed.rank.flushed_rows,
        cycles=packed.rank.cycles,
        dangling=dict(graph.dangling),
        dropped=len(projects) - len(selected),
        rank_labels=dict(rank_labels(graph)),
        challenges=challenge_report(entries, cfg.capacity_pct),
    )
