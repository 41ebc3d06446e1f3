from datetime import date

from portfolio_planner.timeline import (
    capacity_usage,
    long_poles,
    mark_past_deadline,
    month_index,
    month_start,
    past_deadline,
    past_deadline_recommendations,
    schedule_end,
)


class TestMonths:
    def test_month_start_from_mid_month(self):
        assert month_start(date(2025, 1, 15), 0) == date(2025, 1, 1)
        assert month_start(date(2025, 11, 30), 3) == date(2026, 2, 1)

    def test_month_index(self):
        assert month_index(date(2025, 1, 1), date(2026, 3, 1)) == 14


class TestDerivatives:
    def test_schedule_end(self, make_entry):
        assert schedule_end([]) is None
        entries = [make_entry(1, 0, 2), make_entry(2, 1, 5), make_entry(3, 3, 1)]
        assert schedule_end(entries) == date(2025, 7, 1)

    def test_long_poles(self, make_entry):
        entries = [make_entry(1, 0, 5), make_entry(2, 0, 9), make_entry(3, 2, 9), make_entry(4, 6, 5)]
        poles = long_poles(entries, date(2026, 1, 1))
        assert [e.row_number for e in poles] == [3, 4]

    def test_long_poles_wider_fraction(self, make_entry):
        entries = [make_entry(1, 0, 5), make_entry(2, 0, 9), make_entry(3, 2, 9)]
        poles = long_poles(entries, date(2026, 1, 1), fraction=0.5)
        assert [e.row_number for e in poles] == [2, 3]

    def test_long_poles_empty(self, make_entry):
        assert long_poles([], date(2026, 1, 1)) == []
        assert long_poles([make_entry(1, 0, 1)], None) == []

    def test_past_deadline_skips_pool_children(self, make_entry):
        entries = [
            make_entry(1, 0, 6),
            make_entry(2, 0, 6, reserved=0, is_pool_child=True, parent_row=1),
            make_entry(3, 0, 2),
        ]
        late = past_deadline(entries, date(2025, 4, 30))
        assert [e.row_number for e in late] == [1]

    def test_mark_past_deadline(self, make_entry):
        entries = [make_entry(1, 0, 6), make_entry(2, 0, 2)]
        entries[1].past_deadline = True
        late = mark_past_deadline(entries, date(2025, 4, 30))
        assert [e.row_number for e in late] == [1]
        assert [e.past_deadline for e in entries] == [True, False]


class TestCapacityUsage:
    def test_monthly_usage(self, make_entry):
        entries = [make_entry(1, 0, 2, reserved=2), make_entry(2, 1, 2, reserved=1)]
        df = capacity_usage(entries, date(2025, 1, 15), date(2025, 3, 31), headcount=3)
        assert list(df["month"]) == ["2025-01-01", "2025-02-01", "2025-03-01"]
        assert list(df["used"]) == [2, 3, 1]
        assert list(df["spare"]) == [1, 0, 2]
        assert list(df["utilization_pct"]) == [66.7, 100.0, 33.3]

    def test_runs_to_schedule_end(self, make_entry):
        entries = [make_entry(1, 0, 6, reserved=1)]
        df = capacity_usage(entries, date(2025, 1, 1), date(2025, 1, 31), headcount=2)
        assert len(df) == 6

    def test_infeasible_entries_reserve_nothing(self, make_entry):
        entries = [make_entry(1, 0, 1, reserved=5, infeasible=True)]
        df = capacity_usage(entries, date(2025, 1, 1), date(2025, 1, 31), headcount=2)
        assert list(df["used"]) == [0]


class TestRecommendations:
    def test_extra_people_for_late_project(self, make_entry, make_project):
        project = make_project(1, dev_resources=1, total_person_months=12)
        entries = [make_entry(1, 0, 12, reserved=1, project=project)]
        recs = past_deadline_recommendations(entries, date(2025, 6, 30))
        assert len(recs) == 1
        assert (recs[0].current, recs[0].needed, recs[0].extra) == (1, 2, 1)

    def test_no_effort_data_no_recommendation(self, make_entry, make_project):
        entries = [make_entry(1, 0, 12, project=make_project(1, duration_months=12))]
        assert past_deadline_recommendations(entries, date(2025, 6, 30)) == []
