from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Dict, FrozenSet, Iterable, Optional, Tuple, Union

RowNumber = int

DEFAULT_PRIORITY = "P0"

_IN_PROGRESS_RE = re.compile(r"in\s*progress", re.IGNORECASE)


def _row_set(values: Optional[Iterable[int]]) -> FrozenSet[int]:
    if not values:
        return frozenset()
    return frozenset(int(value) for value in values)


@dataclass(frozen=True)
class Project:
    """Scheduling unit; ``row_number`` is the only identity used across the engine."""

    row_number: RowNumber
    name: str = ""
    bucket: str = ""
    bucket_continuation: bool = True
    total_person_months: Optional[float] = None
    dev_resources: float = 0.0
    completed_pct: float = 0.0
    sizing_label: str = ""
    duration_months: Optional[float] = None
    priority: str = DEFAULT_PRIORITY
    commitment: str = ""
    status: str = ""
    in_progress: Optional[bool] = None
    dependency_rows: FrozenSet[int] = frozenset()
    dev_blocker_rows: FrozenSet[int] = frozenset()
    rel_blocker_rows: FrozenSet[int] = frozenset()

    def __post_init__(self) -> None:
        row = int(self.row_number)
        deps = _row_set(self.dependency_rows) - {row}
        dev = _row_set(self.dev_blocker_rows) & deps
        rel = (_row_set(self.rel_blocker_rows) & deps) - dev
        object.__setattr__(self, "row_number", row)
        object.__setattr__(self, "dependency_rows", deps)
        object.__setattr__(self, "dev_blocker_rows", dev)
        object.__setattr__(self, "rel_blocker_rows", rel)
        object.__setattr__(self, "completed_pct", min(100.0, max(0.0, float(self.completed_pct or 0.0))))
        object.__setattr__(self, "dev_resources", max(0.0, float(self.dev_resources or 0.0)))
        if self.total_person_months is not None:
            object.__setattr__(self, "total_person_months", float(self.total_person_months))
        if self.duration_months is not None:
            object.__setattr__(self, "duration_months", float(self.duration_months))
        object.__setattr__(self, "priority", (self.priority or "").strip() or DEFAULT_PRIORITY)
        if self.in_progress is None:
            object.__setattr__(self, "in_progress", bool(_IN_PROGRESS_RE.search(self.status or "")))

    def dependency_kind(self, target: RowNumber) -> str:
        if target in self.dev_blocker_rows:
            return "dev-blocker"
        if target in self.rel_blocker_rows:
            return "rel-blocker"
        return "plain"


@dataclass(frozen=True)
class Pool:
    """Pool-level figures archived from the row that carried the merged cell."""

    total_resources: float
    total_person_months: Optional[float]
    duration_months: float = 0.0


@dataclass(frozen=True)
class Standalone:
    kind = "standalone"


@dataclass(frozen=True)
class Peer:
    group_id: str
    group_name: str
    kind = "peer"


@dataclass(frozen=True)
class PoolParent:
    group_id: str
    group_name: str
    pool: Pool
    child_rows: Tuple[RowNumber, ...]
    peer_rows: Tuple[RowNumber, ...] = ()
    kind = "pool-parent"


@dataclass(frozen=True)
class PoolChild:
    group_id: str
    group_name: str
    parent_row: RowNumber
    kind = "pool-child"


GroupTag = Union[Standalone, Peer, PoolParent, PoolChild]

STANDALONE = Standalone()


@dataclass(frozen=True)
class PoolPlacement:
    row_number: RowNumber
    offset: int
    duration_months: int
    missing_duration_data: bool = False

    @property
    def end_offset(self) -> int:
        return self.offset + self.duration_months


@dataclass(frozen=True)
class PoolSchedule:
    budget_months: int
    chain_months: int
    span_months: int
    slots: int
    overrun: bool
    placements: Tuple[PoolPlacement, ...]

    def placement_for(self, row: RowNumber) -> Optional[PoolPlacement]:
        for placement in self.placements:
            if placement.row_number == row:
                return placement
        return None


@dataclass
class ScheduleEntry:
    """One row of the computed schedule; only ``past_deadline`` is set after packing."""

    project: Project
    start_date: date
    end_date: date
    start_month: int
    duration_months: int
    reserved_headcount: int
    in_progress: bool = False
    is_pool_child: bool = False
    parent_row: Optional[RowNumber] = None
    missing_duration_data: bool = False
    infeasible: bool = False
    flushed: bool = False
    past_deadline: bool = False
    pool_schedule: Optional[PoolSchedule] = None

    @property
    def row_number(self) -> RowNumber:
        return self.project.row_number

    @property
    def end_month(self) -> int:
        return self.start_month + self.duration_months


@dataclass(frozen=True)
class DependentsInfo:
    dev_blocker_for: Tuple[RowNumber, ...] = ()
    rel_blocker_for: Tuple[RowNumber, ...] = ()
    plain_dep_for: Tuple[RowNumber, ...] = ()

    @property
    def total(self) -> int:
        return len(self.dev_blocker_for) + len(self.rel_blocker_for) + len(self.plain_dep_for)


@dataclass(frozen=True)
class DependentCounts:
    dev_blocker: Dict[RowNumber, int]
    rel_blocker: Dict[RowNumber, int]
    plain: Dict[RowNumber, int]

    def total(self, row: RowNumber) -> int:
        return self.dev_blocker.get(row, 0) + self.rel_blocker.get(row, 0) + self.plain.get(row, 0)


@dataclass(frozen=True)
class TierBreak:
    label: str
    index: int


@dataclass(frozen=True)
class SchedulingConfig:
    start_date: date
    end_date: date
    capacity_headcount: float
    capacity_pct: float = 100.0
    long_pole_fraction: float = 0.25
    priority_filter: Optional[str] = None
    committed_only: bool = False
    strict: bool = False
    logging_level: str = "INFO"
    max_search_months: int = 1200
