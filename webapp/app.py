from __future__ import annotations

import json as json_module
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from flask import Flask, jsonify, request

from portfolio_planner import engine
from portfolio_planner.engine import ScheduleResult, SchedulingError
from portfolio_planner.io_utils import (
    config_from_dict,
    config_to_dict,
    entry_record,
    load_projects,
    projects_to_records,
    records_to_projects,
    write_projects,
)
from portfolio_planner.timeline import capacity_usage, past_deadline_recommendations

logger = logging.getLogger(__name__)

REQUIRED_INPUT_FILES = ("projects.csv", "config.json")

_OVERRIDE_KEYS = (
    "start_date",
    "end_date",
    "capacity_headcount",
    "capacity_pct",
    "long_pole_fraction",
    "priority",
    "committed_only",
    "strict",
    "max_search_months",
)


def _default_projects_root() -> Path:
    return (Path(__file__).resolve().parent.parent / "portfolios").resolve()


def _resolve_projects_root() -> Path:
    env_value = os.getenv("PROJECTS_ROOT")
    if env_value:
        return Path(env_value).expanduser().resolve()
    return _default_projects_root()


def _validate_within_root(path: Path, root: Path) -> None:
    try:
        path.relative_to(root)
    except ValueError as exc:
        raise ValueError(f"Portfolio directory must be inside {root}") from exc


def _check_input_dir(project_dir: Path) -> Tuple[Path, List[str]]:
    input_dir = project_dir / "input"
    if not input_dir.is_dir():
        return input_dir, list(REQUIRED_INPUT_FILES)
    missing = [name for name in REQUIRED_INPUT_FILES if not (input_dir / name).is_file()]
    return input_dir, missing


def _list_project_dirs(root: Path) -> List[Dict[str, object]]:
    entries: List[Dict[str, object]] = []
    if not root.exists():
        return entries
    for child in sorted(root.iterdir()):
        if not child.is_dir():
            continue
        input_dir, missing = _check_input_dir(child)
        entries.append(
            {
                "name": child.relative_to(root).as_posix(),
                "input_dir": input_dir.as_posix(),
                "is_valid": not missing,
            }
        )
    return entries


def _row_map(values: Mapping[int, Any]) -> Dict[str, Any]:
    return {str(row): value for row, value in values.items()}


def _result_payload(result: ScheduleResult) -> Dict[str, Any]:
    cfg = result.config
    usage = capacity_usage(result.entries, cfg.start_date, cfg.end_date, cfg.capacity_headcount)
    recommendations = past_deadline_recommendations(result.entries, cfg.end_date, cfg.capacity_pct)
    return {
        "config": config_to_dict(cfg),
        "schedule": [entry_record(entry) for entry in result.display.entries],
        "tier_breaks": [{"label": b.label, "index": b.index} for b in result.display.tier_breaks],
        "schedule_end": result.schedule_end.isoformat() if result.schedule_end else None,
        "long_poles": [entry.row_number for entry in result.long_poles],
        "past_deadline": [entry.row_number for entry in result.past_deadline],
        "recommendations": [
            {"row_number": rec.row_number, "current": rec.current, "needed": rec.needed, "extra": rec.extra}
            for rec in recommendations
        ],
        "capacity": usage.to_dict("records"),
        "dependents": _row_map(
            {
                row: {
                    "dev_blocker_for": list(info.dev_blocker_for),
                    "rel_blocker_for": list(info.rel_blocker_for),
                    "plain_dep_for": list(info.plain_dep_for),
                }
                for row, info in result.dependents.items()
            }
        ),
        "cycles": [list(cycle) for cycle in result.cycles],
        "flushed_rows": list(result.flushed_rows),
        "dangling": _row_map({row: list(targets) for row, targets in result.dangling.items()}),
        "dropped": result.dropped,
        "rank_labels": _row_map(result.rank_labels),
        "challenges": [
            {
                "row_number": challenge.row_number,
                "implied_months": challenge.implied_months,
                "sizing_months": challenge.sizing_months,
                "scheduled_months": challenge.scheduled_months,
                "min_people": challenge.min_people,
                "kinds": list(challenge.kinds),
                "messages": list(challenge.messages),
            }
            for challenge in result.challenges
        ],
    }


def _apply_overrides(base: Mapping[str, Any], overrides: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    merged = dict(base)
    for key in _OVERRIDE_KEYS:
        if overrides and key in overrides:
            merged[key] = overrides[key]
    return merged


def create_app(projects_root: Optional[Path] = None) -> Flask:
    app = Flask(__name__)
    root = Path(projects_root).resolve() if projects_root else _resolve_projects_root()
    app.config["PROJECTS_ROOT"] = root

    def _portfolio_path(portfolio_name: str) -> Path:
        portfolio_path = (root / portfolio_name).resolve()
        _validate_within_root(portfolio_path, root)
        return portfolio_path

    def _read_json(path: Path) -> Any:
        with open(path, "r") as f:
            return json_module.load(f)

    def _write_json(path: Path, data: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json_module.dump(data, f, indent=2)

    def _run_plan(projects, config_data: Mapping[str, Any]):
        cfg = config_from_dict(config_data)
        try:
            result = engine.plan(projects, cfg)
        except SchedulingError as exc:
            logger.warning("schedule failed: %s", exc)
            return jsonify({"error": str(exc)}), 422
        return jsonify(_result_payload(result))

    @app.get("/dirs")
    def directories():
        return jsonify({"projects": _list_project_dirs(root)})

    @app.get("/api/projects/<portfolio_name>")
    def get_projects(portfolio_name: str):
        """Projects of a portfolio with their resource-group columns"""
        try:
            projects_file = _portfolio_path(portfolio_name) / "input" / "projects.csv"
            if not projects_file.exists():
                return jsonify({"error": "projects.csv not found"}), 404
            return jsonify(projects_to_records(load_projects(projects_file)))
        except (ValueError, OSError) as e:
            return jsonify({"error": str(e)}), 400

    @app.post("/api/projects/<portfolio_name>")
    def save_projects(portfolio_name: str):
        try:
            portfolio_path = _portfolio_path(portfolio_name)
            projects_data = request.get_json(silent=True)
            if not isinstance(projects_data, list):
                return jsonify({"error": "projects data must be an array"}), 400
            projects = records_to_projects(projects_data)
            write_projects(portfolio_path / "input" / "projects.csv", projects_to_records(projects))
            return jsonify({"success": True, "count": len(projects)})
        except (ValueError, OSError) as e:
            return jsonify({"error": str(e)}), 400

    @app.get("/api/config/<portfolio_name>")
    def get_config(portfolio_name: str):
        try:
            config_file = _portfolio_path(portfolio_name) / "input" / "config.json"
            if not config_file.exists():
                return jsonify({"error": "config.json not found"}), 404
            return jsonify(_read_json(config_file))
        except (ValueError, OSError) as e:
            return jsonify({"error": str(e)}), 400

    @app.post("/api/config/<portfolio_name>")
    def save_config(portfolio_name: str):
        try:
            portfolio_path = _portfolio_path(portfolio_name)
            config_data = request.get_json(silent=True)
            if not isinstance(config_data, dict):
                return jsonify({"error": "config data must be an object"}), 400
            config_from_dict(config_data)
            _write_json(portfolio_path / "input" / "config.json", config_data)
            return jsonify({"success": True})
        except (ValueError, OSError) as e:
            return jsonify({"error": str(e)}), 400

    @app.get("/api/filters/<portfolio_name>")
    def get_filters(portfolio_name: str):
        try:
            filters_file = _portfolio_path(portfolio_name) / "input" / "filters.json"
            if not filters_file.exists():
                return jsonify({})
            return jsonify(_read_json(filters_file))
        except (ValueError, OSError) as e:
            return jsonify({"error": str(e)}), 400

    @app.post("/api/filters/<portfolio_name>")
    def save_filters(portfolio_name: str):
        try:
            portfolio_path = _portfolio_path(portfolio_name)
            filters_data = request.get_json(silent=True)
            if not isinstance(filters_data, dict):
                return jsonify({"error": "filters data must be an object"}), 400
            _write_json(portfolio_path / "input" / "filters.json", filters_data)
            return jsonify({"success": True})
        except (ValueError, OSError) as e:
            return jsonify({"error": str(e)}), 400

    @app.post("/api/schedule/<portfolio_name>")
    def schedule_portfolio(portfolio_name: str):
        """Run the scheduler on a stored portfolio, with optional config overrides"""
        try:
            portfolio_path = _portfolio_path(portfolio_name)
            input_dir, missing = _check_input_dir(portfolio_path)
            if missing:
                return jsonify({"error": f"missing input files: {', '.join(missing)}"}), 404
            projects = load_projects(input_dir / "projects.csv")
            overrides = request.get_json(silent=True) or {}
            if not isinstance(overrides, dict):
                return jsonify({"error": "overrides must be an object"}), 400
            config_data = _apply_overrides(_read_json(input_dir / "config.json"), overrides)
            return _run_plan(projects, config_data)
        except (ValueError, OSError) as e:
            return jsonify({"error": str(e)}), 400

    @app.post("/api/schedule")
    def schedule_adhoc():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"error": "request body must be an object"}), 400
        projects_data = data.get("projects")
        config_data = data.get("config")
        if not isinstance(projects_data, list) or not isinstance(config_data, dict):
            return jsonify({"error": "projects (array) and config (object) are required"}), 400
        try:
            return _run_plan(records_to_projects(projects_data), config_data)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

    return app


if __name__ == "__main__":
    create_app().run(debug=True)
