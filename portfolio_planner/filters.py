from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .models import DEFAULT_PRIORITY, Project
from .sizing import has_duration_data, total_resources

logger = logging.getLogger(__name__)


def _norm(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def filter_by_priority(projects: Sequence[Project], priority: Optional[str]) -> List[Project]:
    """Exact, case-insensitive match; a blank filter keeps everything."""
    if not priority:
        return list(projects)
    wanted = _norm(priority)
    selected = [p for p in projects if _norm(p.priority or DEFAULT_PRIORITY) == wanted]
    logger.debug("filters: priority %s -> %s of %s", priority, len(selected), len(projects))
    return selected


def filter_by_commitment(projects: Sequence[Project], commitment: Optional[str]) -> List[Project]:
    if not commitment:
        return list(projects)
    wanted = _norm(commitment)
    selected = [p for p in projects if _norm(p.commitment) == wanted]
    logger.debug("filters: commitment %s -> %s of %s", commitment, len(selected), len(projects))
    return selected


def is_dependency_only(project: Project) -> bool:
    """Placeholder rows that only list an external dependency carry no data."""
    if project.name.strip():
        return False
    return total_resources(project) <= 0 and not has_duration_data(project)


def prepare_schedule_data(
    projects: Sequence[Project],
    priority: Optional[str] = None,
    committed_only: bool = False,
) -> List[Project]:
    selected = [p for p in projects if not is_dependency_only(p)]
    if committed_only:
        selected = filter_by_commitment(selected, "committed")
    selected = filter_by_priority(selected, priority)
    logger.debug("filters: %s raw -> %s schedule-ready", len(projects), len(selected))
    return selected
