from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Sequence

import pandas as pd
from dateutil.relativedelta import relativedelta

from .models import ScheduleEntry
from .sizing import EPSILON, capacity_factor, total_resources

logger = logging.getLogger(__name__)

_DAYS_PER_MONTH = 30.44


def first_of_month(value: date) -> date:
    return date(value.year, value.month, 1)


def month_start(origin: date, index: int) -> date:
    return first_of_month(origin) + relativedelta(months=index)


def month_index(origin: date, value: date) -> int:
    return (value.year - origin.year) * 12 + (value.month - origin.month)


def schedule_end(entries: Iterable[ScheduleEntry]) -> Optional[date]:
    ends = [entry.end_date for entry in entries]
    return max(ends) if ends else None


def long_poles(
    entries: Sequence[ScheduleEntry],
    timeline_end: Optional[date],
    fraction: float = 0.25,
) -> List[ScheduleEntry]:
    """Entries ending within the trailing ``fraction`` of the timeline."""
    if not entries or timeline_end is None:
        return []
    first_start = min(entry.start_date for entry in entries)
    span_days = max((timeline_end - first_start).days, 1)
    cutoff = timeline_end.toordinal() - fraction * span_days
    return [entry for entry in entries if entry.end_date.toordinal() >= cutoff]


def past_deadline(entries: Iterable[ScheduleEntry], deadline: date) -> List[ScheduleEntry]:
    return [entry for entry in entries if not entry.is_pool_child and entry.end_date > deadline]


def mark_past_deadline(entries: Sequence[ScheduleEntry], deadline: date) -> List[ScheduleEntry]:
    """Set ``past_deadline`` on every entry and return the late ones."""
    late = past_deadline(entries, deadline)
    late_ids = {id(entry) for entry in late}
    for entry in entries:
        entry.past_deadline = id(entry) in late_ids
    if late:
        logger.info("%s projects end after %s", len(late), deadline)
    return late


def capacity_usage(
    entries: Sequence[ScheduleEntry],
    start_date: date,
    end_date: date,
    headcount: float,
) -> pd.DataFrame:
    """Reserved headcount per month from ``start_date`` through the later of
    ``end_date`` and the schedule end."""
    origin = first_of_month(start_date)
    last = schedule_end(entries)
    horizon = last if last and last > end_date else end_date
    months = max(1, month_index(origin, horizon) + (1 if horizon.day > 1 else 0))
    rows = []
    for idx in range(months):
        month = month_start(origin, idx)
        used = sum(
            entry.reserved_headcount
            for entry in entries
            if not entry.infeasible and entry.start_date <= month < entry.end_date
        )
        spare = headcount - used
        utilization = (used / headcount * 100.0) if headcount > 0 else 0.0
        rows.append(
            {
                "month": month.isoformat(),
                "used": used,
                "spare": spare,
                "utilization_pct": round(utilization, 1),
            }
        )
    return pd.DataFrame(rows, columns=["month", "used", "spare", "utilization_pct"])


@dataclass(frozen=True)
class StaffingRecommendation:
    row_number: int
    name: str
    current: int
    needed: int

    @property
    def extra(self) -> int:
        return self.needed - self.current


def past_deadline_recommendations(
    entries: Sequence[ScheduleEntry],
    deadline: date,
    capacity_pct: float = 100.0,
) -> List[StaffingRecommendation]:
    """People each late project would need to finish by ``deadline``.

    Only projects with person-month figures are sized; rows that already have
    enough people are left out.
    """
    factor = capacity_factor(capacity_pct)
    recommendations: List[StaffingRecommendation] = []
    for entry in past_deadline(entries, deadline):
        project = entry.project
        if not project.total_person_months or project.total_person_months <= 0:
            continue
        remaining_pm = project.total_person_months * (100.0 - project.completed_pct) / 100.0
        if remaining_pm <= 0:
            continue
        available = max(1, int(round((deadline - entry.start_date).days / _DAYS_PER_MONTH)))
        needed = int(math.ceil(remaining_pm / (available * factor) - EPSILON))
        current = entry.reserved_headcount or int(math.ceil(total_resources(project) - EPSILON))
        if needed > current:
            recommendations.append(
                StaffingRecommendation(
                    row_number=project.row_number,
                    name=project.name,
                    current=current,
                    needed=needed,
                )
            )
    return recommendations
