"""
Per-study weekly coordinator breakdown.

Groups rows of the v_coordinator_metrics_breakdown_weekly view into
study -> weeks -> coordinators, with running week totals. Attached to
workloads on request only; never cached with the snapshot.
"""

import logging
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import sessionmaker

from core.config import settings
from schemas import (
    BreakdownCoordinator,
    BreakdownTotals,
    BreakdownWeek,
    WorkloadBreakdown,
    WorkloadResponse,
)
from services.workload_engine import utc_today
from services.workload_repositories import ComputationContext, WorkloadQueryError, WorkloadRepository
from services.workload_schema import WorkloadSchema
from services.workload_scoring import round2
from services.workload_types import BreakdownRow

logger = logging.getLogger(__name__)


def group_breakdown_rows(rows: Iterable[BreakdownRow]) -> Dict[str, WorkloadBreakdown]:
    """Weeks ascend by week_start, coordinators by id; totals accumulate with round2 at each step."""
    by_study: Dict[str, Dict] = {}

    for row in rows:
        meeting = round2(row.meeting_hours or 0.0)
        screening = round2(row.screening_hours or 0.0)
        query = round2(row.query_hours or 0.0)
        total = round2(row.total_hours if row.total_hours is not None else meeting + screening + query)
        notes = int(row.note_entries or 0)

        week = by_study.setdefault(row.study_id, {}).setdefault(
            row.week_start,
            {"coordinators": [], "meeting": 0.0, "screening": 0.0, "query": 0.0, "total": 0.0, "notes": 0},
        )
        week["coordinators"].append(
            BreakdownCoordinator(
                coordinator_id=row.coordinator_id,
                meeting_hours=meeting,
                screening_hours=screening,
                query_hours=query,
                total_hours=total,
                notes_count=notes,
                last_updated_at=row.last_updated_at,
            )
        )
        week["meeting"] = round2(week["meeting"] + meeting)
        week["screening"] = round2(week["screening"] + screening)
        week["query"] = round2(week["query"] + query)
        week["total"] = round2(week["total"] + total)
        week["notes"] += notes

    result: Dict[str, WorkloadBreakdown] = {}
    for study_id, weeks in by_study.items():
        result[study_id] = WorkloadBreakdown(
            weeks=[
                BreakdownWeek(
                    week_start=week_start,
                    coordinators=sorted(week["coordinators"], key=lambda c: c.coordinator_id),
                    totals=BreakdownTotals(
                        meeting_hours=week["meeting"],
                        screening_hours=week["screening"],
                        query_hours=week["query"],
                        total_hours=week["total"],
                        notes_count=week["notes"],
                    ),
                )
                for week_start, week in sorted(weeks.items())
            ]
        )
    return result


def attach_breakdowns(
    session_factory: sessionmaker,
    schema: WorkloadSchema,
    workloads: Sequence[WorkloadResponse],
    lookback_weeks: Optional[int] = None,
) -> List[WorkloadResponse]:
    """
    Return copies of the workloads with their weekly breakdown attached.

    The breakdown is decorative: a failing view read is logged and yields
    empty weeks rather than failing the request.
    """
    if not workloads:
        return []

    study_ids = [workload.study_id for workload in workloads]
    if lookback_weeks is None:
        lookback_weeks = settings.WORKLOAD_BREAKDOWN_LOOKBACK_WEEKS
    since = utc_today() - timedelta(weeks=lookback_weeks)
    repository = WorkloadRepository(
        session_factory, schema, ComputationContext(study_ids=study_ids, operation="breakdown")
    )

    try:
        grouped = group_breakdown_rows(repository.load_breakdown(study_ids, since))
    except WorkloadQueryError as e:
        logger.warning(f"Workload breakdown unavailable: {e}")
        grouped = {}

    return [
        workload.model_copy(update={"breakdown": grouped.get(workload.study_id, WorkloadBreakdown(weeks=[]))})
        for workload in workloads
    ]
