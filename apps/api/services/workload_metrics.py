"""
Coordinator Metrics Aggregation

Reduces self-reported weekly coordinator metrics inside the lookback window to
one average per coordinator. A coordinator without rows in the window is simply
absent from the result; downstream code treats that as "no contribution".
"""

from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, Iterable, Optional, Sequence

from services.workload_types import CoordinatorAverage, CoordinatorMetricWeekly

METRICS_LOOKBACK_DEFAULT = 28


def lookback_start(today: date, lookback_days: int = METRICS_LOOKBACK_DEFAULT) -> date:
    return today - timedelta(days=lookback_days)


def average_coordinator_metrics(rows: Iterable[CoordinatorMetricWeekly]) -> Dict[str, CoordinatorAverage]:
    """Arithmetic mean of every numeric field per coordinator."""
    grouped: Dict[str, list] = defaultdict(list)
    for row in rows:
        grouped[row.coordinator_id].append(row)

    averages: Dict[str, CoordinatorAverage] = {}
    for coordinator_id, weeks in grouped.items():
        entries = len(weeks)
        averages[coordinator_id] = CoordinatorAverage(
            avg_meeting_hours=sum(w.meeting_hours for w in weeks) / entries,
            avg_screening_hours=sum(w.screening_hours for w in weeks) / entries,
            avg_screening_study_count=sum(w.screening_study_count for w in weeks) / entries,
            avg_query_hours=sum(w.query_hours for w in weeks) / entries,
            avg_query_study_count=sum(w.query_study_count for w in weeks) / entries,
            entries=entries,
            last_week_start=max((w.week_start for w in weeks if w.week_start), default=None),
        )
    return averages


def load_coordinator_averages(
    repository,
    today: date,
    lookback_days: int = METRICS_LOOKBACK_DEFAULT,
    coordinator_ids: Optional[Sequence[str]] = None,
) -> Dict[str, CoordinatorAverage]:
    """
    Load the window from the repository and average it.

    When the metrics relation is not provisioned the repository yields no rows
    and the map is empty.
    """
    rows = repository.load_weekly_metrics(
        lookback_start(today, lookback_days),
        coordinator_ids=coordinator_ids,
    )
    return average_coordinator_metrics(rows)
