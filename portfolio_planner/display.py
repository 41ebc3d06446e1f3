from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Sequence, Set, Tuple

from .models import DependentsInfo, RowNumber, ScheduleEntry, TierBreak

logger = logging.getLogger(__name__)

TIER_LABELS = ("In progress", "Ready to start", "Waiting on dependencies")


@dataclass(frozen=True)
class TieredSchedule:
    entries: Tuple[ScheduleEntry, ...] = ()
    tier_breaks: Tuple[TierBreak, ...] = ()


def _blocks(entries: Sequence[ScheduleEntry]) -> List[List[ScheduleEntry]]:
    blocks: List[List[ScheduleEntry]] = []
    for entry in entries:
        if entry.is_pool_child and blocks:
            blocks[-1].append(entry)
        else:
            blocks.append([entry])
    return blocks


def _total_dependents(dependents: Mapping[RowNumber, DependentsInfo], row: RowNumber) -> int:
    info = dependents.get(row)
    return info.total if info else 0


def tier_schedule(
    entries: Sequence[ScheduleEntry],
    dependents: Mapping[RowNumber, DependentsInfo],
) -> TieredSchedule:
    """Reorder blocks (a main entry plus its pool children) into display tiers.

    Dates are left untouched; only the order changes.
    """
    if not entries:
        return TieredSchedule()
    earliest = min(entry.start_date for entry in entries)
    end_by_row = {entry.row_number: entry.end_date for entry in entries}

    tiers: Dict[int, List[List[ScheduleEntry]]] = {0: [], 1: [], 2: []}
    for block in _blocks(entries):
        main = block[0]
        if main.in_progress:
            tiers[0].append(block)
            continue
        members: Set[RowNumber] = {entry.row_number for entry in block}
        deps: Set[RowNumber] = set()
        for entry in block:
            deps.update(entry.project.dependency_rows)
        waiting = any(end_by_row[dep] > earliest for dep in deps - members if dep in end_by_row)
        tiers[2 if waiting else 1].append(block)

    tiers[0].sort(key=lambda block: block[0].end_date)
    tiers[1].sort(
        key=lambda block: (
            -_total_dependents(dependents, block[0].row_number),
            -block[0].duration_months,
        )
    )
    tiers[2].sort(
        key=lambda block: (
            block[0].start_date,
            -_total_dependents(dependents, block[0].row_number),
        )
    )

    ordered: List[ScheduleEntry] = []
    breaks: List[TierBreak] = []
    for tier, label in enumerate(TIER_LABELS):
        if not tiers[tier]:
            continue
        breaks.append(TierBreak(label=label, index=len(ordered)))
        for block in tiers[tier]:
            ordered.extend(block)
    logger.debug("display: tiers %s", [(b.label, b.index) for b in breaks])
    return TieredSchedule(entries=tuple(ordered), tier_breaks=tuple(breaks))
