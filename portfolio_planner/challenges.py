"""
Bottom-up checks of each project's own figures against the packed schedule.

For every scheduled row the implied duration (effort over people at the
configured productivity) is compared with the sizing band and with the span
the packer actually gave it. Mismatches are reported as challenges.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import pandas as pd

from .models import RowNumber, ScheduleEntry
from .sizing import EPSILON, effective_duration, months_from_sizing, total_resources

logger = logging.getLogger(__name__)

DELAYED = "delayed"
SIZING_WRONG = "sizing-wrong"
SIZING_OPTIMISTIC = "sizing-optimistic"
UNDERSTAFFED = "understaffed"


@dataclass(frozen=True)
class ProjectChallenge:
    row_number: RowNumber
    name: str
    implied_months: Optional[int]
    sizing_months: Optional[int]
    scheduled_months: int
    min_people: Optional[int]
    people: float
    kinds: Tuple[str, ...]
    messages: Tuple[str, ...]

    @property
    def summary(self) -> str:
        return " ".join(self.messages)


def _check(entry: ScheduleEntry, capacity_pct: float) -> ProjectChallenge:
    project = entry.project
    pm = project.total_person_months
    people = total_resources(project)
    has_effort = pm is not None and pm > 0 and people > 0
    implied = effective_duration(project, capacity_pct) if has_effort else None
    band = months_from_sizing(project.sizing_label)
    sizing = band if band > 0 else None
    min_people = int(math.ceil(pm / sizing - EPSILON)) if pm and pm > 0 and sizing else None
    scheduled = entry.duration_months

    kinds: List[str] = []
    messages: List[str] = []
    if implied is not None and scheduled > implied:
        kinds.append(DELAYED)
        messages.append(
            f"Implied {implied} mo, schedule gives {scheduled} mo: delayed by dependencies or capacity."
        )
    if implied is not None and sizing is not None and implied > sizing:
        kinds.append(SIZING_WRONG)
        messages.append(f"Implied {implied} mo but sizing says up to {sizing} mo: scope grew or sizing is wrong.")
    if sizing is not None and scheduled > sizing:
        kinds.append(SIZING_OPTIMISTIC)
        messages.append(f"Schedule runs {scheduled} mo but sizing says up to {sizing} mo: sizing too optimistic.")
    if min_people is not None and 0 < people < min_people:
        kinds.append(UNDERSTAFFED)
        messages.append(f"Hitting {sizing} mo needs at least {min_people} people, {people:g} assigned.")
    return ProjectChallenge(
        row_number=project.row_number,
        name=project.name,
        implied_months=implied,
        sizing_months=sizing,
        scheduled_months=scheduled,
        min_people=min_people,
        people=people,
        kinds=tuple(kinds),
        messages=tuple(messages),
    )


def challenge_report(
    entries: Sequence[ScheduleEntry],
    capacity_pct: float = 100.0,
    *,
    flagged_only: bool = True,
) -> List[ProjectChallenge]:
    """One check per scheduled row, in the order given.

    Infeasible rows are skipped since their span was never packed.
    """
    report: List[ProjectChallenge] = []
    for entry in entries:
        if entry.infeasible:
            continue
        challenge = _check(entry, capacity_pct)
        if flagged_only and not challenge.kinds:
            continue
        report.append(challenge)
    logger.debug("challenges: %s of %s rows flagged", sum(1 for c in report if c.kinds), len(entries))
    return report


def challenges_to_frame(challenges: Sequence[ProjectChallenge]) -> pd.DataFrame:
    columns = [
        "row_number",
        "name",
        "implied_months",
        "sizing_months",
        "scheduled_months",
        "min_people",
        "people",
        "challenges",
        "details",
    ]
    rows = [
        {
            "row_number": c.row_number,
            "name": c.name,
            "implied_months": c.implied_months,
            "sizing_months": c.sizing_months,
            "scheduled_months": c.scheduled_months,
            "min_people": c.min_people,
            "people": c.people,
            "challenges": ";".join(c.kinds),
            "details": c.summary,
        }
        for c in challenges
    ]
    return pd.DataFrame(rows, columns=columns)
