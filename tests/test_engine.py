from collections import defaultdict
from datetime import date

import pytest

from portfolio_planner.engine import (
    DependencyCycleError,
    InfeasibleProjectError,
    MonthlyUsage,
    pack,
    plan,
)
from portfolio_planner.models import SchedulingConfig

START = date(2025, 1, 15)


def _by_row(entries):
    return {entry.row_number: entry for entry in entries}


def _placement(entries):
    return [(e.row_number, e.start_month, e.duration_months, e.reserved_headcount) for e in entries]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def three_projects(make_project):
    return [
        make_project(1, dev_resources=2, total_person_months=4),
        make_project(2, dev_resources=1, total_person_months=1, dependency_rows={1}),
        make_project(3, dev_resources=1, total_person_months=1),
    ]


@pytest.fixture
def pool_with_cycle(make_project):
    """Pool led by row 1 whose two children wait on each other."""
    return [
        make_project(1, bucket="Pool", dev_resources=2, total_person_months=4),
        make_project(2, bucket="Pool", duration_months=1, dependency_rows={3}),
        make_project(3, bucket="Pool", duration_months=1, dependency_rows={2}),
    ]


@pytest.fixture
def portfolio(make_project):
    return [
        make_project(1, dev_resources=2, total_person_months=6, priority="P0"),
        make_project(2, dev_resources=1, total_person_months=3, dependency_rows={1}, dev_blocker_rows={1}),
        make_project(3, dev_resources=3, total_person_months=6, priority="P1"),
        make_project(4, dev_resources=1, duration_months=4, status="In progress"),
        make_project(5, dev_resources=2, total_person_months=10, dependency_rows={3, 4}),
        make_project(6, bucket="Pool", dev_resources=2, total_person_months=8, sizing_label="S (1-3 months)"),
        make_project(7, bucket="Pool", duration_months=2),
        make_project(8, bucket="Pool", duration_months=3, dependency_rows={7}),
        make_project(9, bucket_continuation=False, dev_resources=1.5, total_person_months=3, dependency_rows={8}),
        make_project(10, sizing_label="M (3-5 months)", dev_resources=1),
        make_project(11, dev_resources=2, total_person_months=2, completed_pct=50),
        make_project(12, dev_resources=1, total_person_months=5, priority="P2", dependency_rows={11}),
    ]


# ---------------------------------------------------------------------------
# Usage ledger
# ---------------------------------------------------------------------------

class TestMonthlyUsage:
    def test_earliest_fit_skips_full_months(self):
        usage = MonthlyUsage(capacity=2)
        usage.reserve(0, 2, 2)
        assert not usage.can_fit(1, 1, 1)
        assert usage.earliest_fit(0, 1, 1, limit=10) == 2

    def test_zero_headcount_always_fits(self):
        usage = MonthlyUsage(capacity=1)
        usage.reserve(0, 5, 1)
        assert usage.earliest_fit(0, 3, 0, limit=10) == 0

    def test_search_cap(self):
        usage = MonthlyUsage(capacity=1)
        usage.reserve(0, 50, 1)
        assert usage.earliest_fit(0, 1, 1, limit=10) is None


# ---------------------------------------------------------------------------
# Packing
# ---------------------------------------------------------------------------

class TestPack:
    def test_capacity_pushes_unrelated_work(self, three_projects):
        entries = _by_row(pack(three_projects, START, None, capacity_headcount=2))
        assert (entries[1].start_month, entries[1].end_month, entries[1].reserved_headcount) == (0, 2, 2)
        assert entries[2].start_month == 2
        assert entries[3].start_month == 2
        assert entries[1].start_date == date(2025, 1, 1)
        assert entries[1].end_date == date(2025, 3, 1)

    def test_dependency_gates_start(self, make_project):
        projects = [
            make_project(1, dev_resources=1, duration_months=3),
            make_project(2, dev_resources=1, duration_months=1, dependency_rows={1}),
        ]
        entries = _by_row(pack(projects, START, None, capacity_headcount=10))
        assert entries[2].start_month == 3

    def test_in_progress_starts_now(self, make_project):
        projects = [
            make_project(1, dev_resources=1, duration_months=3),
            make_project(2, dev_resources=1, duration_months=1, status="In Progress", dependency_rows={1}),
        ]
        entries = _by_row(pack(projects, START, None, capacity_headcount=10))
        assert entries[2].start_month == 0
        assert entries[2].in_progress

    def test_missing_duration_placeholder(self, make_project):
        entries = pack([make_project(1)], START, None, capacity_headcount=1)
        assert entries[0].duration_months == 1
        assert entries[0].missing_duration_data
        assert entries[0].reserved_headcount == 0

    def test_fractional_people_reserve_whole_heads(self, make_project):
        projects = [
            make_project(1, dev_resources=1.5, duration_months=2),
            make_project(2, dev_resources=1, duration_months=2),
        ]
        entries = _by_row(pack(projects, START, None, capacity_headcount=3))
        assert entries[1].reserved_headcount == 2
        assert entries[2].start_month == 0

    def test_infeasible_project_is_flagged(self, make_project, caplog):
        projects = [
            make_project(1, dev_resources=3, total_person_months=6),
            make_project(2, dev_resources=2, total_person_months=2),
        ]
        entries = _by_row(pack(projects, START, None, capacity_headcount=2))
        assert entries[1].infeasible
        assert entries[1].start_month == 0
        assert entries[2].start_month == 0
        assert not entries[2].infeasible
        assert "cannot be placed" in caplog.text

    def test_infeasible_project_raises_in_strict_mode(self, make_project):
        with pytest.raises(InfeasibleProjectError) as excinfo:
            pack([make_project(1, dev_resources=3, duration_months=1)], START, None, 2, strict=True)
        assert excinfo.value.project.row_number == 1

    def test_search_cap_marks_infeasible(self, make_project):
        projects = [
            make_project(1, dev_resources=1, duration_months=30),
            make_project(2, dev_resources=1, duration_months=1),
        ]
        entries = _by_row(pack(projects, START, None, 1, max_search_months=12))
        assert entries[2].infeasible

    def test_cycle_is_flushed(self, make_project):
        projects = [
            make_project(1, dev_resources=1, duration_months=1, dependency_rows={2}),
            make_project(2, dev_resources=1, duration_months=1, dependency_rows={1}),
        ]
        entries = pack(projects, START, None, capacity_headcount=5)
        assert [e.row_number for e in entries] == [1, 2]
        assert all(e.flushed for e in entries)

    def test_cycle_raises_in_strict_mode(self, make_project):
        projects = [
            make_project(1, dependency_rows={2}),
            make_project(2, dependency_rows={1}),
        ]
        with pytest.raises(DependencyCycleError) as excinfo:
            pack(projects, START, None, capacity_headcount=5, strict=True)
        assert excinfo.value.cycles == ((1, 2),)

    def test_capacity_pct_stretches_work(self, make_project):
        entries = pack([make_project(1, dev_resources=2, total_person_months=4)], START, None, 2, capacity_pct=50)
        assert entries[0].duration_months == 4


class TestPools:
    def test_pool_children_share_parent_window(self, make_project):
        projects = [
            make_project(1, bucket="Pool", dev_resources=3, total_person_months=9, sizing_label="S (1-3 months)"),
            make_project(2, bucket="Pool", duration_months=3),
            make_project(3, bucket="Pool", duration_months=3),
        ]
        entries = pack(projects, START, None, capacity_headcount=5)
        assert [e.row_number for e in entries] == [1, 2, 3]
        parent, first, second = entries
        assert parent.duration_months == 3
        assert parent.reserved_headcount == 3
        assert parent.pool_schedule.budget_months == 3
        assert parent.pool_schedule.chain_months == 3
        assert parent.pool_schedule.slots == 3
        assert not parent.pool_schedule.overrun
        for child in (first, second):
            assert child.is_pool_child
            assert child.parent_row == 1
            assert child.start_month == 0
            assert child.duration_months == 3
            assert child.reserved_headcount == 0

    def test_pool_overrun_extends_parent(self, make_project):
        projects = [
            make_project(1, bucket="Pool", dev_resources=1, total_person_months=2),
            make_project(2, bucket="Pool", duration_months=2),
            make_project(3, bucket="Pool", duration_months=2),
        ]
        entries = _by_row(pack(projects, START, None, capacity_headcount=5))
        pool = entries[1].pool_schedule
        assert pool.budget_months == 2
        assert pool.slots == 1
        assert pool.chain_months == 5
        assert pool.overrun
        assert entries[1].duration_months == 5
        assert entries[1].missing_duration_data is False
        assert pool.placement_for(1).missing_duration_data
        assert (entries[2].start_month, entries[3].start_month) == (0, 2)

    def test_in_pool_dependencies_are_ordered(self, make_project):
        projects = [
            make_project(1, bucket="Pool", dev_resources=2, total_person_months=2, sizing_label="XS (1 month)"),
            make_project(2, bucket="Pool", duration_months=1, dependency_rows={3}),
            make_project(3, bucket="Pool", duration_months=1),
        ]
        entries = _by_row(pack(projects, START, None, capacity_headcount=5))
        assert entries[3].start_month == 0
        assert entries[2].start_month == 1

    def test_pool_gated_by_outside_dependency(self, make_project):
        projects = [
            make_project(1, dev_resources=1, duration_months=2),
            make_project(2, bucket="Pool", dev_resources=2, total_person_months=2),
            make_project(3, bucket="Pool", duration_months=1, dependency_rows={1}),
        ]
        entries = _by_row(pack(projects, START, None, capacity_headcount=5))
        assert entries[2].start_month == 2
        assert entries[3].start_month == 2

    def test_cycle_inside_pool_is_flushed(self, pool_with_cycle, caplog):
        entries = _by_row(pack(pool_with_cycle, START, None, capacity_headcount=5))
        assert entries[2].flushed
        assert entries[3].flushed
        assert not entries[1].flushed
        assert "pool 1 ordering stalled" in caplog.text

    def test_cycle_inside_pool_raises_in_strict_mode(self, pool_with_cycle):
        with pytest.raises(DependencyCycleError) as excinfo:
            pack(pool_with_cycle, START, None, capacity_headcount=5, strict=True)
        assert excinfo.value.cycles == ((2, 3),)


class TestInvariants:
    def test_capacity_never_exceeded(self, portfolio):
        capacity = 4
        entries = pack(portfolio, START, None, capacity_headcount=capacity)
        used = defaultdict(int)
        for entry in entries:
            if entry.is_pool_child or entry.infeasible:
                continue
            for month in range(entry.start_month, entry.end_month):
                used[month] += entry.reserved_headcount
        assert max(used.values()) <= capacity

    def test_dependencies_end_before_dependents_start(self, portfolio):
        entries = pack(portfolio, START, None, capacity_headcount=4)
        by_row = _by_row(entries)
        for entry in entries:
            if entry.in_progress or entry.is_pool_child:
                continue
            for dep in entry.project.dependency_rows:
                gate = by_row[dep]
                if gate.is_pool_child:
                    gate = by_row[gate.parent_row]
                if gate.row_number == entry.row_number:
                    continue
                assert gate.end_month <= entry.start_month

    def test_children_follow_their_parent(self, portfolio):
        entries = pack(portfolio, START, None, capacity_headcount=4)
        rows = [e.row_number for e in entries]
        assert rows[rows.index(6) + 1 : rows.index(6) + 3] == [7, 8]

    def test_deterministic(self, portfolio):
        first = pack(portfolio, START, None, capacity_headcount=4)
        second = pack(list(portfolio), START, None, capacity_headcount=4)
        assert first == second
        assert _placement(first) == _placement(second)


# ---------------------------------------------------------------------------
# Full pipeline
# ---------------------------------------------------------------------------

class TestPlan:
    def test_plan_marks_late_work(self, three_projects):
        cfg = SchedulingConfig(start_date=START, end_date=date(2025, 2, 28), capacity_headcount=2)
        result = plan(three_projects, cfg)
        assert result.schedule_end == date(2025, 4, 1)
        assert [e.row_number for e in result.past_deadline] == [1, 2, 3]
        assert all(e.past_deadline for e in result.entries)
        assert result.timeline_end == date(2025, 4, 1)

    def test_plan_filters_priority(self, portfolio):
        cfg = SchedulingConfig(
            start_date=START,
            end_date=date(2026, 12, 31),
            capacity_headcount=4,
            priority_filter="P1",
        )
        result = plan(portfolio, cfg)
        assert [e.row_number for e in result.entries] == [3]
        assert result.dropped == len(portfolio) - 1

    def test_plan_reports_cycles(self, make_project):
        projects = [
            make_project(1, duration_months=1, dependency_rows={2}),
            make_project(2, duration_months=1, dependency_rows={1}),
        ]
        cfg = SchedulingConfig(start_date=START, end_date=date(2025, 12, 31), capacity_headcount=2)
        result = plan(projects, cfg)
        assert result.cycles == ((1, 2),)
        assert result.flushed_rows == (1, 2)
        with pytest.raises(DependencyCycleError):
            plan(projects, cfg, strict=True)

    def test_plan_reports_cycles_inside_pools(self, pool_with_cycle):
        cfg = SchedulingConfig(start_date=START, end_date=date(2025, 12, 31), capacity_headcount=5)
        result = plan(pool_with_cycle, cfg)
        assert result.cycles == ((2, 3),)
        assert result.flushed_rows == (2, 3)

    def test_plan_display_keeps_dates(self, portfolio):
        cfg = SchedulingConfig(start_date=START, end_date=date(2025, 12, 31), capacity_headcount=4)
        result = plan(portfolio, cfg)
        assert sorted(_placement(result.display.entries)) == sorted(_placement(result.entries))
        assert result.display.tier_breaks[0].label == "In progress"
