"""
Workload Distribution (fair-share allocation)

A coordinator usually works several studies at once. Their averaged weekly
hours are split across those studies by a coverage denominator, so a
coordinator covering N studies contributes roughly 1/N of their hours to each.

Coverage denominator, first non-zero value wins (never below 1):
    1. the coordinator's self-reported screening study count
    2. the coordinator's self-reported query study count
    3. the number of studies the coordinator is assigned to
    4. the number of coordinators assigned to this study
    5. 1

This chain is a tunable heuristic, not a derived allocation rule. Keep it
as-is unless product asks for a different policy.

Everything here is pure: maps in, maps out.
"""

from typing import Dict, Iterable, Optional

from services.workload_assignments import AssignmentMap
from services.workload_types import CoordinatorAverage, DistributedMetrics


def coverage_denominator(
    average: CoordinatorAverage,
    coordinator_study_count: int,
    study_coordinator_count: int,
) -> float:
    return max(
        1,
        average.avg_screening_study_count
        or average.avg_query_study_count
        or coordinator_study_count
        or study_coordinator_count
        or 1,
    )


def _study_portion(self_reported_count: float, coverage: float, study_coordinator_count: int) -> float:
    # No self-reported coverage: split the study evenly among its coordinators
    if self_reported_count > 0:
        return self_reported_count / coverage
    return 1 / study_coordinator_count if study_coordinator_count > 0 else 0.0


def distribute_study(
    study_id: str,
    averages: Dict[str, CoordinatorAverage],
    assignments: AssignmentMap,
) -> DistributedMetrics:
    """Aggregate the fair share of every assigned coordinator with data for one study."""
    assigned = sorted(assignments.coordinators_for(study_id))
    study_coordinator_count = len(assigned)

    meeting = screening = screening_studies = query = query_studies = 0.0
    entries = 0
    contributors = 0
    last_week_start = None

    for coordinator_id in assigned:
        average = averages.get(coordinator_id)
        if average is None:
            continue

        coverage = coverage_denominator(
            average,
            len(assignments.studies_for(coordinator_id)),
            study_coordinator_count,
        )

        meeting += average.avg_meeting_hours / coverage
        screening += average.avg_screening_hours / coverage
        query += average.avg_query_hours / coverage
        screening_studies += _study_portion(average.avg_screening_study_count, coverage, study_coordinator_count)
        query_studies += _study_portion(average.avg_query_study_count, coverage, study_coordinator_count)

        entries += average.entries
        contributors += 1
        if average.last_week_start and (last_week_start is None or average.last_week_start > last_week_start):
            last_week_start = average.last_week_start

    return DistributedMetrics(
        contributors=contributors,
        meeting_hours=meeting,
        screening_hours=screening,
        screening_study_count=screening_studies,
        query_hours=query,
        query_study_count=query_studies,
        entries=entries,
        last_week_start=last_week_start,
    )


def distribute_workload(
    study_ids: Iterable[str],
    averages: Dict[str, CoordinatorAverage],
    assignments: Optional[AssignmentMap] = None,
) -> Dict[str, DistributedMetrics]:
    """Per-study distributed metrics. Studies without contributors get all-zero metrics."""
    assignments = assignments or AssignmentMap()
    return {
        study_id: distribute_study(study_id, averages, assignments)
        for study_id in study_ids
    }
