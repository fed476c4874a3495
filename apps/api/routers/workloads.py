"""
Workloads API Router

Coordinator workload scores per study, served from the snapshot cache, plus
the weekly trend and the refresh endpoints used by dashboards and the
scheduled job.
"""

import hmac
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session, sessionmaker

from core.config import settings
from core.database import get_db, get_session_factory
from core.exceptions import InternalServiceError, UnauthorizedError
from schemas import (
    CronRefreshResponse,
    TrendResponse,
    WorkloadRefreshRequest,
    WorkloadRefreshResponse,
    WorkloadsMeta,
    WorkloadsResponse,
)
from services.workload_breakdown import attach_breakdowns
from services.workload_repositories import ComputationContext, WorkloadQueryError, WorkloadRepository
from services.workload_schema import WorkloadSchema, get_workload_schema
from services.workload_snapshots import SnapshotWriteError, compute_and_store, get_workloads
from services.workload_trend import get_workload_trend
from services.workload_types import StudyMeta

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workloads", tags=["Workloads"])


def get_schema() -> WorkloadSchema:
    return get_workload_schema()


def parse_study_ids(raw: Optional[str]) -> Optional[List[str]]:
    """
    Parse the comma-separated studyIds parameter.

    None means "not given" (every known study); an empty string means an
    explicitly empty selection.
    """
    if raw is None:
        return None
    return list(dict.fromkeys(part.strip() for part in raw.split(",") if part.strip()))


def _resolve_studies(
    session_factory: sessionmaker,
    schema: WorkloadSchema,
    study_ids: Optional[List[str]],
) -> List[StudyMeta]:
    ctx = ComputationContext(study_ids=study_ids or [], operation="resolve")
    return WorkloadRepository(session_factory, schema, ctx).load_studies(study_ids)


def _compute_failed(e: WorkloadQueryError) -> InternalServiceError:
    logger.error(f"Workload computation failed: {e}")
    return InternalServiceError("Failed to compute workloads", error_code="WORKLOAD_COMPUTE_FAILED")


def _cache_write_failed(e: SnapshotWriteError) -> InternalServiceError:
    logger.error(f"Workload snapshot write failed: {e}")
    return InternalServiceError("Failed to store workload snapshots", error_code="WORKLOAD_CACHE_WRITE_FAILED")


@router.get("", response_model=WorkloadsResponse, response_model_exclude_unset=True)
def list_workloads(
    study_ids: Optional[str] = Query(None, alias="studyIds"),
    force: bool = Query(False),
    include_breakdown: bool = Query(False, alias="includeBreakdown"),
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    schema: WorkloadSchema = Depends(get_schema),
):
    """
    Weighted workloads for the requested studies.

    Fresh snapshots are served as-is; stale or missing ones are recomputed
    and stored first. force=true skips the freshness check.
    """
    requested = parse_study_ids(study_ids)
    if requested is not None and not requested:
        return WorkloadsResponse(
            workloads=[],
            meta=WorkloadsMeta(studies=0, cache_hits=0, recomputed=0, skipped_cache=force),
        )

    try:
        studies = _resolve_studies(session_factory, schema, requested)
        batch = get_workloads(db, session_factory, schema, studies, force=force)
    except WorkloadQueryError as e:
        raise _compute_failed(e)
    except SnapshotWriteError as e:
        raise _cache_write_failed(e)

    workloads = batch.workloads
    if include_breakdown:
        workloads = attach_breakdowns(session_factory, schema, workloads)

    return WorkloadsResponse(
        workloads=workloads,
        meta=WorkloadsMeta(
            studies=batch.studies,
            cache_hits=batch.cache_hits,
            recomputed=batch.recomputed,
            skipped_cache=batch.skipped_cache,
        ),
    )


@router.get("/trend", response_model=TrendResponse)
def workload_trend(
    study_ids: Optional[str] = Query(None, alias="studyIds"),
    coordinator_id: Optional[str] = Query(None, alias="coordinatorId"),
    session_factory: sessionmaker = Depends(get_session_factory),
    schema: WorkloadSchema = Depends(get_schema),
):
    """Four weeks of reported coordinator hours followed by four forecast weeks."""
    requested = parse_study_ids(study_ids)
    try:
        studies = _resolve_studies(session_factory, schema, requested) if requested != [] else []
        points = get_workload_trend(session_factory, schema, studies, coordinator_id=coordinator_id)
    except WorkloadQueryError as e:
        raise _compute_failed(e)
    return TrendResponse(points=points)


@router.post("/refresh", response_model=WorkloadRefreshResponse)
def refresh_workloads(
    payload: Optional[WorkloadRefreshRequest] = None,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    schema: WorkloadSchema = Depends(get_schema),
):
    """Recompute and store snapshots for the given studies, or for every study when none are given."""
    payload = payload or WorkloadRefreshRequest()
    requested = list(payload.study_ids)
    if payload.study_id:
        requested.insert(0, payload.study_id)
    requested = list(dict.fromkeys(sid for sid in requested if sid))

    try:
        studies = _resolve_studies(session_factory, schema, requested or None)
        workloads = compute_and_store(
            db,
            session_factory,
            schema,
            studies,
            lookback_days=payload.lookback_days,
            ttl_minutes=payload.ttl_minutes,
        )
    except WorkloadQueryError as e:
        raise _compute_failed(e)
    except SnapshotWriteError as e:
        raise _cache_write_failed(e)

    return WorkloadRefreshResponse(
        workloads=workloads,
        count=len(workloads),
        studies=[study.id for study in studies],
    )


def _cron_secret_matches(request: Request) -> bool:
    secret = settings.CRON_SECRET
    if not secret:
        return False

    provided = request.headers.get("x-cron-secret")
    if not provided:
        authorization = request.headers.get("authorization", "")
        if authorization.startswith("Bearer "):
            provided = authorization[len("Bearer "):]
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), secret.encode("utf-8"))


@router.api_route("/cron/refresh", methods=["GET", "POST"], response_model=CronRefreshResponse)
def cron_refresh_workloads(
    request: Request,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    schema: WorkloadSchema = Depends(get_schema),
):
    """Scheduled full refresh. Authenticated with the shared CRON_SECRET."""
    if not _cron_secret_matches(request):
        raise UnauthorizedError()

    try:
        studies = _resolve_studies(session_factory, schema, None)
        workloads = compute_and_store(
            db, session_factory, schema, studies, ttl_minutes=settings.WORKLOAD_CRON_TTL_MINUTES
        )
    except WorkloadQueryError as e:
        raise _compute_failed(e)
    except SnapshotWriteError as e:
        raise _cache_write_failed(e)

    logger.info(f"Scheduled workload refresh stored {len(workloads)} snapshots")
    return CronRefreshResponse(ok=True, count=len(workloads))
