"""
Workload Trend

Eight weekly points anchored on the Monday of the current week:

- weeks -4..-1: actual = raw coordinator hours reported that week
  (meeting + screening + query, summed across the relevant coordinators,
  not weight-adjusted), forecast = 0
- weeks 0..3: actual = 0, forecast = total weighted 4-week forecast / 4

The forward weeks assume the 4-week forecast spreads evenly. There is no
decay or seasonality model behind it.
"""

import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import sessionmaker

from core.config import settings
from schemas import TrendPoint
from services.workload_engine import compute_workloads, utc_today
from services.workload_repositories import ComputationContext, WorkloadRepository
from services.workload_schema import WorkloadSchema
from services.workload_scoring import round2
from services.workload_types import CoordinatorMetricWeekly, StudyMeta

logger = logging.getLogger(__name__)

HISTORY_WEEKS = 4
FORECAST_WEEKS = 4


def monday_of(day: date) -> date:
    return day - timedelta(days=day.weekday())


def weekly_hour_totals(rows: Iterable[CoordinatorMetricWeekly]) -> Dict[date, float]:
    totals: Dict[date, float] = defaultdict(float)
    for row in rows:
        totals[row.week_start] = round2(totals[row.week_start] + row.total_hours)
    return dict(totals)


def build_trend_points(
    weekly_totals: Dict[date, float],
    total_forecast_weighted: float,
    today: date,
) -> List[TrendPoint]:
    current_monday = monday_of(today)
    weekly_forecast = round2(total_forecast_weighted / FORECAST_WEEKS)

    points = [
        TrendPoint(
            week_start=current_monday - timedelta(weeks=offset),
            actual=round2(weekly_totals.get(current_monday - timedelta(weeks=offset), 0.0)),
            forecast=0.0,
        )
        for offset in range(HISTORY_WEEKS, 0, -1)
    ]
    points.extend(
        TrendPoint(
            week_start=current_monday + timedelta(weeks=offset),
            actual=0.0,
            forecast=weekly_forecast,
        )
        for offset in range(FORECAST_WEEKS)
    )
    return points


def get_workload_trend(
    session_factory: sessionmaker,
    schema: WorkloadSchema,
    studies: Sequence[StudyMeta],
    coordinator_id: Optional[str] = None,
    today: Optional[date] = None,
) -> List[TrendPoint]:
    """
    Trend for the given studies.

    Relevant coordinators are those assigned to the studies, plus the calling
    coordinator when known. The forecast reuses the scored workloads.
    """
    today = today or utc_today()
    study_ids = [study.id for study in studies]
    ctx = ComputationContext(study_ids=study_ids, operation="trend")
    repository = WorkloadRepository(session_factory, schema, ctx)

    coordinator_ids = {a.coordinator_id for a in repository.load_assignments(study_ids)}
    if coordinator_id:
        coordinator_ids.add(coordinator_id)

    since = today - timedelta(days=settings.WORKLOAD_TREND_LOOKBACK_DAYS)
    rows = repository.load_weekly_metrics(since, coordinator_ids=sorted(coordinator_ids))

    workloads = compute_workloads(session_factory, schema, studies, today=today, ctx=ctx)
    total_forecast = sum(workload.forecast.weighted for workload in workloads)

    ctx.logger.info(
        f"Built workload trend from {len(rows)} metric rows",
        extra={"extra_fields": {"coordinators": len(coordinator_ids), "total_forecast": total_forecast}},
    )
    return build_trend_points(weekly_hour_totals(rows), total_forecast, today)
