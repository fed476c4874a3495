"""
Workload trend tests: eight weekly points around the current Monday.
"""
from datetime import date

from services.workload_trend import build_trend_points, get_workload_trend, monday_of, weekly_hour_totals
from services.workload_types import CoordinatorMetricWeekly, StudyMeta
from fixtures.workload_db import insert_rows


class TestTrendPoints:

    def test_monday_of(self):
        assert monday_of(date(2026, 10, 21)) == date(2026, 10, 19)
        assert monday_of(date(2026, 10, 19)) == date(2026, 10, 19)
        assert monday_of(date(2026, 10, 25)) == date(2026, 10, 19)

    def test_eight_ascending_points(self, fixed_today):
        points = build_trend_points({date(2026, 10, 12): 9.0, date(2026, 9, 21): 1.255}, 10.0, fixed_today)

        assert len(points) == 8
        assert [p.week_start for p in points] == [
            date(2026, 9, 21), date(2026, 9, 28), date(2026, 10, 5), date(2026, 10, 12),
            date(2026, 10, 19), date(2026, 10, 26), date(2026, 11, 2), date(2026, 11, 9),
        ]
        assert [p.actual for p in points] == [1.26, 0.0, 0.0, 9.0, 0.0, 0.0, 0.0, 0.0]
        assert [p.forecast for p in points] == [0.0, 0.0, 0.0, 0.0, 2.5, 2.5, 2.5, 2.5]

    def test_empty_inputs_still_give_eight_points(self, fixed_today):
        points = build_trend_points({}, 0.0, fixed_today)
        assert len(points) == 8
        assert all(p.actual == 0.0 and p.forecast == 0.0 for p in points)

    def test_weekly_hour_totals_sum_all_coordinators(self):
        rows = [
            CoordinatorMetricWeekly("C1", date(2026, 10, 12), meeting_hours=1.1, screening_hours=2.2, query_hours=3.3),
            CoordinatorMetricWeekly("C2", date(2026, 10, 12), meeting_hours=0.5),
            CoordinatorMetricWeekly("C1", date(2026, 10, 5), query_hours=4),
        ]
        totals = weekly_hour_totals(rows)
        assert totals == {date(2026, 10, 12): 7.1, date(2026, 10, 5): 4.0}


class TestWorkloadTrend:

    def _seed(self, engine):
        insert_rows(engine, "cwe_weights", [
            {"study_id": "S1", "lifecycle_w": 1, "recruitment_w": 1, "ps": 0, "sm": 1, "qm": 1},
        ])
        insert_rows(engine, "cwe_forecast_4w", [{"study_id": "S1", "raw_forecast": 10}])
        insert_rows(engine, "study_coordinators", [{"study_id": "S1", "coordinator_id": "C1"}])
        insert_rows(engine, "coordinator_metrics", [
            {"coordinator_id": "C1", "week_start": "2026-10-05", "meeting_hours": 2, "screening_hours": 4,
             "screening_study_count": 0, "query_hours": 3, "query_study_count": 0},
            {"coordinator_id": "C1", "week_start": "2026-10-12", "meeting_hours": 2, "screening_hours": 4,
             "screening_study_count": 0, "query_hours": 3, "query_study_count": 0},
            {"coordinator_id": "C9", "week_start": "2026-10-12", "meeting_hours": 5, "screening_hours": 0,
             "screening_study_count": 0, "query_hours": 0, "query_study_count": 0},
        ])

    def test_actuals_from_assigned_coordinators(self, workload_engine, session_factory, schema, fixed_today):
        self._seed(workload_engine)

        points = get_workload_trend(session_factory, schema, [StudyMeta(id="S1")], today=fixed_today)

        assert [p.actual for p in points[:4]] == [0.0, 0.0, 9.0, 9.0]
        # Averages sit exactly on the baselines, so the factor is 1 and 10 / 4 per week
        assert [p.forecast for p in points[4:]] == [2.5, 2.5, 2.5, 2.5]

    def test_calling_coordinator_is_included(self, workload_engine, session_factory, schema, fixed_today):
        self._seed(workload_engine)

        points = get_workload_trend(
            session_factory, schema, [StudyMeta(id="S1")], coordinator_id="C9", today=fixed_today
        )

        assert points[3].week_start == date(2026, 10, 12)
        assert points[3].actual == 14.0

    def test_no_studies(self, workload_engine, session_factory, schema, fixed_today):
        self._seed(workload_engine)

        points = get_workload_trend(session_factory, schema, [], today=fixed_today)

        assert len(points) == 8
        assert all(p.actual == 0.0 and p.forecast == 0.0 for p in points)
