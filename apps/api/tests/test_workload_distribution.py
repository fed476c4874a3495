"""
Coordinator metrics aggregation, assignment resolution and fair-share
distribution tests. All pure: no database involved.
"""
import pytest
from datetime import date

from services.workload_assignments import AssignmentMap, resolve_assignments
from services.workload_distribution import coverage_denominator, distribute_study, distribute_workload
from services.workload_metrics import average_coordinator_metrics, lookback_start
from services.workload_types import Assignment, CoordinatorAverage, CoordinatorMetricWeekly


def _week(coordinator_id, week_start, meeting=0.0, screening=0.0, query=0.0,
          screening_studies=0.0, query_studies=0.0):
    return CoordinatorMetricWeekly(
        coordinator_id=coordinator_id,
        week_start=week_start,
        meeting_hours=meeting,
        screening_hours=screening,
        screening_study_count=screening_studies,
        query_hours=query,
        query_study_count=query_studies,
    )


def _average(meeting=0.0, screening=0.0, query=0.0, screening_studies=0.0, query_studies=0.0,
             entries=1, last_week_start=None):
    return CoordinatorAverage(
        avg_meeting_hours=meeting,
        avg_screening_hours=screening,
        avg_screening_study_count=screening_studies,
        avg_query_hours=query,
        avg_query_study_count=query_studies,
        entries=entries,
        last_week_start=last_week_start,
    )


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

class TestAverageCoordinatorMetrics:

    def test_means_per_coordinator(self):
        rows = [
            _week("C1", date(2026, 10, 5), meeting=3, screening=6, query=2),
            _week("C1", date(2026, 10, 12), meeting=5, screening=10, query=4),
            _week("C2", date(2026, 10, 12), meeting=1, screening_studies=2),
        ]
        averages = average_coordinator_metrics(rows)

        assert set(averages) == {"C1", "C2"}
        assert averages["C1"].avg_meeting_hours == 4
        assert averages["C1"].avg_screening_hours == 8
        assert averages["C1"].avg_query_hours == 3
        assert averages["C1"].entries == 2
        assert averages["C1"].last_week_start == date(2026, 10, 12)
        assert averages["C2"].avg_screening_study_count == 2

    def test_no_rows_no_averages(self):
        assert average_coordinator_metrics([]) == {}

    def test_lookback_start(self):
        assert lookback_start(date(2026, 10, 21)) == date(2026, 9, 23)
        assert lookback_start(date(2026, 10, 21), 7) == date(2026, 10, 14)


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------

class TestResolveAssignments:

    def test_builds_both_directions(self):
        resolved = resolve_assignments([
            Assignment("S1", "C1"),
            Assignment("S2", "C1"),
            Assignment("S1", "C2"),
            Assignment("S1", "C2"),
        ])
        assert resolved.coordinators_for("S1") == {"C1", "C2"}
        assert resolved.studies_for("C1") == {"S1", "S2"}
        assert resolved.coordinator_ids == {"C1", "C2"}

    def test_ignores_incomplete_pairs(self):
        resolved = resolve_assignments([Assignment("S1", ""), Assignment("", "C1")])
        assert resolved.by_study == {}
        assert resolved.by_coordinator == {}

    def test_unknown_keys_are_empty(self):
        resolved = AssignmentMap()
        assert resolved.coordinators_for("S9") == set()
        assert resolved.studies_for("C9") == set()


# ---------------------------------------------------------------------------
# Distribution
# ---------------------------------------------------------------------------

class TestCoverageDenominator:

    def test_self_reported_screening_count_wins(self):
        assert coverage_denominator(_average(screening_studies=4, query_studies=2), 3, 2) == 4

    def test_falls_back_to_query_count(self):
        assert coverage_denominator(_average(query_studies=2), 3, 2) == 2

    def test_falls_back_to_assigned_study_count(self):
        assert coverage_denominator(_average(), 3, 2) == 3

    def test_falls_back_to_study_coordinator_count(self):
        assert coverage_denominator(_average(), 0, 2) == 2

    def test_never_below_one(self):
        assert coverage_denominator(_average(screening_studies=0.5), 0, 0) == 1
        assert coverage_denominator(_average(), 0, 0) == 1


class TestDistributeWorkload:

    def test_fair_share_across_three_studies(self):
        """A coordinator on three studies without self-reported counts gives each about a third."""
        averages = {"C1": _average(meeting=3, screening=9, query=6, entries=4)}
        assignments = resolve_assignments([
            Assignment("S1", "C1"),
            Assignment("S2", "C1"),
            Assignment("S3", "C1"),
        ])

        distributed = distribute_workload(["S1", "S2", "S3"], averages, assignments)

        for study_id in ("S1", "S2", "S3"):
            share = distributed[study_id]
            assert share.contributors == 1
            assert share.meeting_hours == pytest.approx(1.0)
            assert share.screening_hours == pytest.approx(3.0)
            assert share.query_hours == pytest.approx(2.0)
            assert share.entries == 4
        assert sum(d.screening_hours for d in distributed.values()) == pytest.approx(9.0)

    def test_sums_contributions_of_several_coordinators(self):
        averages = {
            "C1": _average(screening=8, screening_studies=2, query_studies=2, last_week_start=date(2026, 10, 5)),
            "C2": _average(screening=4, entries=3, last_week_start=date(2026, 10, 12)),
        }
        assignments = resolve_assignments([
            Assignment("S1", "C1"),
            Assignment("S1", "C2"),
        ])

        share = distribute_study("S1", averages, assignments)

        # C1: coverage 2 -> 4h; C2: coverage falls to its single study -> 4h
        assert share.contributors == 2
        assert share.screening_hours == pytest.approx(8.0)
        # C1 reports 2 studies over coverage 2 -> 1; C2 reports none -> even split 1/2
        assert share.screening_study_count == pytest.approx(1.5)
        assert share.entries == 4
        assert share.last_week_start == date(2026, 10, 12)

    def test_assigned_coordinator_without_metrics_does_not_contribute(self):
        assignments = resolve_assignments([Assignment("S1", "C1"), Assignment("S1", "C2")])
        share = distribute_study("S1", {"C1": _average(meeting=2)}, assignments)

        assert share.contributors == 1
        # C1 covers one study, so it keeps its full meeting hours
        assert share.meeting_hours == pytest.approx(2.0)

    def test_unassigned_studies_get_zero_metrics(self):
        distributed = distribute_workload(["S1"], {"C1": _average(meeting=5)})
        assert distributed["S1"].contributors == 0
        assert distributed["S1"].meeting_hours == 0.0
        assert distributed["S1"].last_week_start is None
