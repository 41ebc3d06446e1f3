from __future__ import annotations

import math
from typing import Dict, Optional

from .models import Pool, Project

EPSILON = 1e-6

# Sizing label -> "up to" months for the band.
SIZING_MONTHS: Dict[str, int] = {
    "None": 0,
    "XS (1 month)": 1,
    "S (1-3 months)": 3,
    "M (3-5 months)": 5,
    "L (5-8 months)": 8,
    "XL (8-13 months)": 13,
    "XXL (13+ months)": 21,
    "3L (21+ months)": 34,
    "4L (34+ months)": 55,
}

_SIZING_ALIASES: Dict[str, int] = {
    "none": 0,
    "xs": 1,
    "extra small": 1,
    "s": 3,
    "small": 3,
    "m": 5,
    "medium": 5,
    "l": 8,
    "large": 8,
    "xl": 13,
    "extra large": 13,
    "xxl": 21,
    "3l": 34,
    "4l": 55,
}


def months_from_sizing(label: Optional[str]) -> int:
    if not label:
        return 0
    stripped = label.strip()
    if stripped in SIZING_MONTHS:
        return SIZING_MONTHS[stripped]
    lowered = stripped.lower()
    if lowered in _SIZING_ALIASES:
        return _SIZING_ALIASES[lowered]
    code = lowered.split("(", 1)[0].strip()
    return _SIZING_ALIASES.get(code, 0)


def capacity_factor(capacity_pct: Optional[float]) -> float:
    if capacity_pct is None or capacity_pct <= 0 or capacity_pct > 100:
        return 1.0
    return capacity_pct / 100.0


def _ceil(value: float) -> int:
    return int(math.ceil(value - EPSILON))


def total_resources(project: Project) -> float:
    return project.dev_resources if project.dev_resources > 0 else 0.0


def _has_effort(project: Project) -> bool:
    return (
        project.total_person_months is not None
        and project.total_person_months > 0
        and total_resources(project) > 0
    )


def _fallback_months(project: Project) -> float:
    if project.duration_months is not None and project.duration_months > 0:
        return project.duration_months
    return float(months_from_sizing(project.sizing_label))


def has_duration_data(project: Project) -> bool:
    return _has_effort(project) or _fallback_months(project) > 0


def remaining_duration(project: Project, capacity_pct: float = 100.0) -> int:
    """Months of work left: remaining person-months over effective people.

    Without effort figures, the explicit duration (or the sizing band) is scaled
    by the remaining fraction instead. Returns 0 when nothing is known.
    """
    remaining_fraction = (100.0 - project.completed_pct) / 100.0
    if _has_effort(project):
        remaining_pm = project.total_person_months * remaining_fraction
        people = total_resources(project) * capacity_factor(capacity_pct)
        return max(1, _ceil(remaining_pm / people))
    base = _fallback_months(project)
    if base > 0:
        return max(1, _ceil(base * remaining_fraction))
    return 0


def effective_duration(project: Project, capacity_pct: float = 100.0) -> int:
    """Full-effort duration, ignoring completion."""
    if _has_effort(project):
        people = total_resources(project) * capacity_factor(capacity_pct)
        return max(1, _ceil(project.total_person_months / people))
    return max(0, _ceil(_fallback_months(project)))


def pool_budget_months(pool: Pool, capacity_pct: float = 100.0) -> int:
    pm = pool.total_person_months
    if pm is None or pm <= 0 or pool.total_resources <= 0:
        return 0
    return max(1, _ceil(pm / (pool.total_resources * capacity_factor(capacity_pct))))


def reserved_headcount(people: float) -> int:
    if people <= 0:
        return 0
    return _ceil(people)
