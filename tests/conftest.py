"""
Shared fixtures for the portfolio planner tests.

Projects are built through small factories so each test only spells out the
fields it cares about.
"""
import json
from datetime import date

import pytest
from dateutil.relativedelta import relativedelta

from portfolio_planner.models import Project, ScheduleEntry

ORIGIN = date(2025, 1, 1)


@pytest.fixture
def make_project():
    def _make(row, **kwargs):
        kwargs.setdefault("name", f"Project {row}")
        return Project(row_number=row, **kwargs)

    return _make


@pytest.fixture
def make_entry(make_project):
    def _make(row, start_month, months, reserved=1, project=None, **kwargs):
        return ScheduleEntry(
            project=project or make_project(row),
            start_date=ORIGIN + relativedelta(months=start_month),
            end_date=ORIGIN + relativedelta(months=start_month + months),
            start_month=start_month,
            duration_months=months,
            reserved_headcount=reserved,
            **kwargs,
        )

    return _make


@pytest.fixture
def portfolio_dir(tmp_path):
    """A portfolio root holding one valid portfolio called ``demo``."""
    input_dir = tmp_path / "demo" / "input"
    input_dir.mkdir(parents=True)
    (input_dir / "projects.csv").write_text(
        "row_number,name,bucket,priority,status,commitment,dev_resources,total_person_months,"
        "completed_pct,sizing,duration_months,dependencies\n"
        "1,Platform,,P0,,Committed,2,4,,,,\n"
        "2,API,,P0,,Committed,1,1,,,,1 (dev-blocker)\n"
        "3,Docs,,P1,,,1,1,,,,\n"
    )
    (input_dir / "config.json").write_text(
        json.dumps(
            {
                "start_date": "2025-01-01",
                "end_date": "2025-12-31",
                "capacity_headcount": 2,
            }
        )
    )
    return tmp_path
