from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from . import engine
from .engine import ScheduleResult, SchedulingError
from .challenges import challenges_to_frame
from .io_utils import ensure_directory, load_config, load_projects, schedule_to_frame, write_csv
from .timeline import capacity_usage, past_deadline_recommendations


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Portfolio scheduling batch tool (CSV in/out, no UI)."
    )
    parser.add_argument(
        "--project-dir",
        help="Portfolio directory containing input/ and output/ subfolders",
    )
    parser.add_argument("--projects", help="Path to projects CSV or JSON (overrides project-dir default)")
    parser.add_argument("--config", help="Path to configuration JSON file (overrides project-dir default)")
    parser.add_argument(
        "--outdir",
        default=None,
        help="Output directory for generated files (default: <project-dir>/output or ./out)",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail on dependency cycles or projects that cannot be placed",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Plan and print summary without writing output files",
    )
    parser.add_argument("--capacity", type=float, help="Override config.capacity_headcount")
    parser.add_argument("--capacity-pct", type=float, help="Override config.capacity_pct")
    return parser.parse_args(argv)


def _resolve_io_paths(args: argparse.Namespace) -> Tuple[Path, Path, Path]:
    project_dir = Path(args.project_dir).resolve() if args.project_dir else None
    if project_dir and not project_dir.exists():
        raise ValueError(f"project directory not found: {project_dir}")
    input_dir = project_dir / "input" if project_dir else None

    def _pick(path_value: Optional[str], default_name: str) -> Optional[Path]:
        if path_value:
            return Path(path_value)
        if input_dir:
            return input_dir / default_name
        return None

    projects_path = _pick(args.projects, "projects.csv")
    config_path = _pick(args.config, "config.json")

    missing = [name for name, value in (("projects", projects_path), ("config", config_path)) if value is None]
    if missing:
        joined = ", ".join(f"--{name}" for name in missing)
        raise ValueError(f"missing required input paths: {joined} (or provide --project-dir)")

    for label, path in (("projects", projects_path), ("config", config_path)):
        if not path.exists():
            raise ValueError(f"{label} file not found at {path}")

    if args.outdir:
        outdir = Path(args.outdir)
    elif project_dir:
        outdir = project_dir / "output"
    else:
        outdir = Path("out")

    return projects_path, config_path, outdir


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def _print_dry_run_summary(result: ScheduleResult) -> None:
    if not result.entries:
        print("No projects scheduled.")
        return
    print("Scheduled projects:")
    for entry in result.display.entries:
        months_label = "month" if entry.duration_months == 1 else "months"
        indent = "  " if entry.is_pool_child else ""
        flags = [
            label
            for label, value in (
                ("late", entry.past_deadline),
                ("infeasible", entry.infeasible),
                ("no sizing", entry.missing_duration_data),
            )
            if value
        ]
        suffix = f" [{', '.join(flags)}]" if flags else ""
        print(
            f"{indent}- {entry.row_number} {entry.project.name}: "
            f"{entry.start_date:%Y-%m} -> {entry.end_date:%Y-%m} "
            f"({entry.duration_months} {months_label}){suffix}"
        )
    print(f"\nSchedule ends: {result.schedule_end}")


def _summary_lines(result: ScheduleResult) -> List[str]:
    cfg = result.config
    lines: List[str] = ["# Schedule Summary", ""]
    lines.append(f"- Window: {cfg.start_date} to {cfg.end_date}")
    lines.append(f"- Capacity: {cfg.capacity_headcount:g} people at {cfg.capacity_pct:g}%")
    lines.append(f"- Schedule ends: {result.schedule_end}")
    if result.dropped:
        lines.append(f"- Filtered out: {result.dropped} rows")
    lines.append("")

    lines.append(f"## Long Poles ({len(result.long_poles)})")
    lines.append("")
    if not result.long_poles:
        lines.append("None.")
    for entry in result.long_poles:
        lines.append(f"- **{entry.row_number} {entry.project.name}**: ends {entry.end_date}")
    lines.append("")

    lines.append(f"## Past Target Date ({len(result.past_deadline)})")
    lines.append("")
    if not result.past_deadline:
        lines.append("All projects end by the target date.")
    for entry in result.past_deadline:
        lines.append(f"- **{entry.row_number} {entry.project.name}**: ends {entry.end_date}")
    recommendations = past_deadline_recommendations(result.entries, cfg.end_date, cfg.capacity_pct)
    if recommendations:
        lines.append("")
        lines.append("To fit the target date:")
        for rec in recommendations:
            lines.append(f"  - Row {rec.row_number}: +{rec.extra} people (to {rec.needed})")
    if result.past_deadline and result.schedule_end:
        lines.append(f"  - Or move the target to {result.schedule_end} to fit the current plan.")
    lines.append("")

    lines.append(f"## Challenges ({len(result.challenges)})")
    lines.append("")
    if not result.challenges:
        lines.append("Project figures agree with the schedule.")
    for challenge in result.challenges:
        rank = result.rank_labels.get(challenge.row_number, "")
        label = f" (rank {rank})" if rank else ""
        lines.append(f"- **{challenge.row_number} {challenge.name}**{label}: {challenge.summary}")
    lines.append("")

    problems = [entry for entry in result.entries if entry.infeasible or entry.missing_duration_data]
    overruns = [entry for entry in result.entries if entry.pool_schedule and entry.pool_schedule.overrun]
    if problems or overruns or result.cycles or result.dangling:
        lines.append("## Warnings")
        lines.append("")
        for entry in problems:
            reason = "cannot be placed within capacity" if entry.infeasible else "no duration data, placed as 1 month"
            lines.append(f"- Row {entry.row_number}: {reason}")
        for entry in overruns:
            pool = entry.pool_schedule
            lines.append(
                f"- Pool {entry.row_number}: chain needs {pool.chain_months} months, budget {pool.budget_months}"
            )
        for cycle in result.cycles:
            lines.append(f"- Dependency cycle: {' -> '.join(str(row) for row in cycle)}")
        for row, targets in sorted(result.dangling.items()):
            lines.append(f"- Row {row}: unknown dependencies {', '.join(str(t) for t in targets)}")
    return lines


def _write_summary_markdown(result: ScheduleResult, outdir: Path) -> Path:
    path = outdir / "schedule_summary.md"
    path.write_text("\n".join(_summary_lines(result)).strip() + "\n")
    return path


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_args(argv)
    try:
        projects_path, config_path, outdir = _resolve_io_paths(args)
        projects = load_projects(projects_path)
        cfg = load_config(config_path)
        if args.capacity is not None:
            if args.capacity <= 0:
                raise ValueError("--capacity must be positive")
            cfg = replace(cfg, capacity_headcount=args.capacity)
        if args.capacity_pct is not None:
            if not (0 < args.capacity_pct <= 100):
                raise ValueError("--capacity-pct must be in (0, 100]")
            cfg = replace(cfg, capacity_pct=args.capacity_pct)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)

    _configure_logging(cfg.logging_level)
    try:
        result = engine.plan(projects, cfg, strict=args.strict or cfg.strict)
    except SchedulingError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    if args.dry_run:
        _print_dry_run_summary(result)
        return

    outdir_path = ensure_directory(outdir)
    schedule_path = outdir_path / "schedule.csv"
    capacity_path = outdir_path / "capacity.csv"
    schedule_frame = schedule_to_frame(result.display.entries)
    schedule_frame["rank"] = schedule_frame["row_number"].map(result.rank_labels)
    write_csv(schedule_frame, schedule_path)
    write_csv(
        capacity_usage(result.entries, cfg.start_date, cfg.end_date, cfg.capacity_headcount),
        capacity_path,
    )
    challenges_path = outdir_path / "challenges.csv"
    write_csv(challenges_to_frame(result.challenges), challenges_path)
    summary_path = _write_summary_markdown(result, outdir_path)
    print(f"Wrote {schedule_path}")
    print(f"Wrote {capacity_path}")
    print(f"Wrote {challenges_path}")
    print(f"Wrote {summary_path}")
    if result.past_deadline:
        print(f"{len(result.past_deadline)} projects end after {cfg.end_date}")


if __name__ == "__main__":
    main()
