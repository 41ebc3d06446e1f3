from __future__ import annotations

import json
import re
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd
from dateutil import parser as dateparser

from .models import Project, ScheduleEntry, SchedulingConfig
from .resource_groups import ProjectSource, ensure_groups

CONTINUATION_ROW_BASE = 9000

_PROJECT_REQUIRED_COLUMNS = {"name"}

PROJECT_COLUMNS = [
    "row_number",
    "name",
    "bucket",
    "bucket_continuation",
    "priority",
    "status",
    "in_progress",
    "commitment",
    "dev_resources",
    "total_person_months",
    "completed_pct",
    "sizing",
    "duration_months",
    "dependencies",
    "group_kind",
    "group_id",
    "group_name",
    "parent_row",
]

SCHEDULE_COLUMNS = [
    "row_number",
    "name",
    "start_date",
    "end_date",
    "start_month",
    "duration_months",
    "reserved_headcount",
    "in_progress",
    "is_pool_child",
    "parent_row",
    "missing_duration_data",
    "infeasible",
    "flushed",
    "past_deadline",
    "pool_overrun",
]

_DEV_BLOCKER_RE = re.compile(r"\d+\s*\(\s*dev[-\s]?blocker\s*\)", re.IGNORECASE)
_REL_BLOCKER_RE = re.compile(r"\d+\s*\(\s*rel(ease)?[-\s]?blocker\s*\)", re.IGNORECASE)


def _require_columns(df: pd.DataFrame, required: Iterable[str], source: str) -> None:
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise ValueError(f"{source} missing required columns: {', '.join(missing)}")


def _is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and pd.isna(value):
        return True
    return isinstance(value, str) and value.strip() == ""


def _text(value: object) -> str:
    if _is_blank(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _optional_float(value: object, column: str, allow_negative: bool = False) -> Optional[float]:
    if _is_blank(value):
        return None
    try:
        number = float(str(value).replace(",", "").strip())
    except ValueError as exc:
        raise ValueError(f"invalid numeric value in column '{column}': {value!r}") from exc
    if number < 0 and not allow_negative:
        raise ValueError(f"column '{column}' contains negative values")
    return number


def _parse_bool(value: object, column: str) -> Optional[bool]:
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "t", "1", "yes", "y"}:
            return True
        if lowered in {"false", "f", "0", "no", "n"}:
            return False
    raise ValueError(f"cannot interpret boolean value '{value}' in column '{column}'")


def _parse_row_number(value: object) -> Optional[int]:
    if _is_blank(value):
        return None
    match = re.search(r"\d+", str(value))
    if not match:
        return None
    return int(match.group(0))


def parse_dependencies(raw: object) -> Tuple[Tuple[int, ...], Tuple[int, ...], Tuple[int, ...]]:
    """Split a dependency cell into (rows, dev-blocker rows, rel-blocker rows).

    Segments are separated by commas or semicolons; a segment's first number is
    the row. ``33 (dev-blocker)`` marks row 33 as a dev blocker.
    """
    if _is_blank(raw):
        return (), (), ()
    if isinstance(raw, (list, tuple)):
        segments = [str(item) for item in raw]
    else:
        segments = re.split(r"[,;]", str(raw))
    rows: List[int] = []
    dev: List[int] = []
    rel: List[int] = []
    for segment in segments:
        trimmed = segment.strip()
        match = re.search(r"\d+", trimmed)
        if not match:
            continue
        row = int(match.group(0))
        if row not in rows:
            rows.append(row)
        if _DEV_BLOCKER_RE.search(trimmed):
            if row not in dev:
                dev.append(row)
        elif _REL_BLOCKER_RE.search(trimmed) and row not in rel:
            rel.append(row)
    return tuple(rows), tuple(dev), tuple(rel)


def format_dependencies(project: Project) -> str:
    parts = []
    for row in sorted(project.dependency_rows):
        kind = project.dependency_kind(row)
        parts.append(str(row) if kind == "plain" else f"{row} ({kind})")
    return ", ".join(parts)


def records_to_projects(records: Iterable[Mapping[str, Any]]) -> List[Project]:
    projects: List[Project] = []
    for idx, record in enumerate(records):
        row_number = _parse_row_number(record.get("row_number"))
        continuation = row_number is None
        if row_number is None:
            row_number = CONTINUATION_ROW_BASE + idx
        explicit_continuation = _parse_bool(record.get("bucket_continuation"), "bucket_continuation")
        if explicit_continuation is not None:
            continuation = explicit_continuation
        rows, dev, rel = parse_dependencies(record.get("dependencies"))
        projects.append(
            Project(
                row_number=row_number,
                name=_text(record.get("name")),
                bucket=_text(record.get("bucket")),
                bucket_continuation=continuation,
                total_person_months=_optional_float(record.get("total_person_months"), "total_person_months"),
                dev_resources=_optional_float(record.get("dev_resources"), "dev_resources") or 0.0,
                completed_pct=_optional_float(record.get("completed_pct"), "completed_pct", allow_negative=True) or 0.0,
                sizing_label=_text(record.get("sizing")),
                duration_months=_optional_float(record.get("duration_months"), "duration_months"),
                priority=_text(record.get("priority")),
                commitment=_text(record.get("commitment")),
                status=_text(record.get("status")),
                in_progress=_parse_bool(record.get("in_progress"), "in_progress"),
                dependency_rows=frozenset(rows),
                dev_blocker_rows=frozenset(dev),
                rel_blocker_rows=frozenset(rel),
            )
        )
    return projects


def load_projects(path: str | Path) -> List[Project]:
    source = Path(path)
    if source.suffix.lower() == ".json":
        data = json.loads(source.read_text())
        if not isinstance(data, list):
            raise ValueError("projects file must be a JSON array")
        df = pd.DataFrame(data)
    else:
        df = pd.read_csv(source, dtype=str, keep_default_na=False)
    if df.empty:
        raise ValueError("projects file is empty")
    _require_columns(df, _PROJECT_REQUIRED_COLUMNS, source.name)
    return records_to_projects(df.to_dict("records"))


def _number_or_blank(value: Optional[float]) -> object:
    if value is None:
        return None
    return int(value) if float(value).is_integer() else value


def projects_to_records(source: ProjectSource) -> List[Dict[str, Any]]:
    """Flat records with pre-classification values plus informational group columns."""
    groups = ensure_groups(source)
    records: List[Dict[str, Any]] = []
    for project in groups.restored():
        tag = groups.tag(project.row_number)
        records.append(
            {
                "row_number": project.row_number,
                "name": project.name,
                "bucket": project.bucket,
                "bucket_continuation": project.bucket_continuation,
                "priority": project.priority,
                "status": project.status,
                "in_progress": bool(project.in_progress),
                "commitment": project.commitment,
                "dev_resources": _number_or_blank(project.dev_resources),
                "total_person_months": _number_or_blank(project.total_person_months),
                "completed_pct": _number_or_blank(project.completed_pct),
                "sizing": project.sizing_label,
                "duration_months": _number_or_blank(project.duration_months),
                "dependencies": format_dependencies(project),
                "group_kind": tag.kind,
                "group_id": getattr(tag, "group_id", ""),
                "group_name": getattr(tag, "group_name", ""),
                "parent_row": getattr(tag, "parent_row", None),
            }
        )
    return records


def write_projects(path: str | Path, records: Sequence[Mapping[str, Any]]) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.suffix.lower() == ".json":
        target.write_text(json.dumps(list(records), indent=2, default=str) + "\n")
    else:
        pd.DataFrame(list(records), columns=PROJECT_COLUMNS).to_csv(target, index=False)


def _parse_date(data: Mapping[str, Any], key: str) -> date:
    try:
        return dateparser.isoparse(str(data[key])).date()
    except (KeyError, ValueError, TypeError) as exc:
        raise ValueError(f"{key} must be a valid ISO date string") from exc


def _number(data: Mapping[str, Any], key: str, default: Optional[float] = None) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _flag(data: Mapping[str, Any], key: str) -> bool:
    value = data.get(key, False)
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be a boolean")
    return value


def config_from_dict(data: Mapping[str, Any]) -> SchedulingConfig:
    if not isinstance(data, Mapping):
        raise ValueError("config must be a JSON object")
    start_date = _parse_date(data, "start_date")
    end_date = _parse_date(data, "end_date")
    if end_date < start_date:
        raise ValueError("end_date must not be earlier than start_date")
    if "capacity_headcount" not in data:
        raise ValueError("capacity_headcount is required")
    capacity_headcount = _number(data, "capacity_headcount")
    if capacity_headcount <= 0:
        raise ValueError("capacity_headcount must be positive")
    capacity_pct = _number(data, "capacity_pct", 100)
    if not (0 < capacity_pct <= 100):
        raise ValueError("capacity_pct must be in (0, 100]")
    long_pole_fraction = _number(data, "long_pole_fraction", 0.25)
    if not (0 < long_pole_fraction <= 1):
        raise ValueError("long_pole_fraction must be in (0, 1]")
    priority = data.get("priority")
    if priority is not None and not isinstance(priority, str):
        raise ValueError("priority must be a string if provided")
    max_search_months = data.get("max_search_months", 1200)
    if isinstance(max_search_months, bool) or not isinstance(max_search_months, int) or max_search_months <= 0:
        raise ValueError("max_search_months must be a positive integer")
    logging_level = data.get("logging_level", "INFO")
    if not isinstance(logging_level, str):
        raise ValueError("logging_level must be a string")
    return SchedulingConfig(
        start_date=start_date,
        end_date=end_date,
        capacity_headcount=capacity_headcount,
        capacity_pct=capacity_pct,
        long_pole_fraction=long_pole_fraction,
        priority_filter=priority or None,
        committed_only=_flag(data, "committed_only"),
        strict=_flag(data, "strict"),
        logging_level=logging_level,
        max_search_months=max_search_months,
    )


def load_config(path: str | Path) -> SchedulingConfig:
    try:
        data = json.loads(Path(path).read_text())
    except json.JSONDecodeError as exc:
        raise ValueError(f"config file is not valid JSON: {exc}") from exc
    return config_from_dict(data)


def config_to_dict(cfg: SchedulingConfig) -> Dict[str, Any]:
    return {
        "start_date": cfg.start_date.isoformat(),
        "end_date": cfg.end_date.isoformat(),
        "capacity_headcount": cfg.capacity_headcount,
        "capacity_pct": cfg.capacity_pct,
        "long_pole_fraction": cfg.long_pole_fraction,
        "priority": cfg.priority_filter,
        "committed_only": cfg.committed_only,
        "strict": cfg.strict,
        "logging_level": cfg.logging_level,
        "max_search_months": cfg.max_search_months,
    }


def entry_record(entry: ScheduleEntry) -> Dict[str, Any]:
    return {
        "row_number": entry.row_number,
        "name": entry.project.name,
        "start_date": entry.start_date.isoformat(),
        "end_date": entry.end_date.isoformat(),
        "start_month": entry.start_month,
        "duration_months": entry.duration_months,
        "reserved_headcount": entry.reserved_headcount,
        "in_progress": entry.in_progress,
        "is_pool_child": entry.is_pool_child,
        "parent_row": entry.parent_row,
        "missing_duration_data": entry.missing_duration_data,
        "infeasible": entry.infeasible,
        "flushed": entry.flushed,
        "past_deadline": entry.past_deadline,
        "pool_overrun": bool(entry.pool_schedule and entry.pool_schedule.overrun),
    }


def schedule_to_frame(entries: Sequence[ScheduleEntry]) -> pd.DataFrame:
    return pd.DataFrame([entry_record(entry) for entry in entries], columns=SCHEDULE_COLUMNS)


def ensure_directory(path: str | Path) -> Path:
    target = Path(path)
    target.mkdir(parents=True, exist_ok=True)
    return target


def write_csv(df: pd.DataFrame, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
