"""
Workload Snapshot Cache

Computed WorkloadResponses are cached per study in study_workload_snapshots
with a computed_at / expires_at pair. Reads partition the requested studies
into fresh and stale; only the stale subset is recomputed, then stored before
the merged result is returned.

- lookup(): a failed read marks every requested study stale (fail open toward
  recomputation, never silently serve nothing)
- store(): one idempotent upsert keyed on study_id; a failure is logged and
  raised, and callers must not serve the uncached result
- force=True skips the freshness check and recomputes everything requested

Two concurrent requests that see the same stale study will both recompute and
upsert it. The upsert overwrites the whole row, so the race costs duplicated
work but cannot corrupt a snapshot. Callers that need single-flight
recomputation must deduplicate themselves.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Set, Tuple

from pydantic import ValidationError
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from core.config import settings
from models import StudyWorkloadSnapshot
from schemas import WorkloadResponse
from services.workload_engine import compute_workloads
from services.workload_repositories import ComputationContext
from services.workload_schema import WorkloadSchema
from services.workload_types import StudyMeta

logger = logging.getLogger(__name__)

DEFAULT_TTL_MINUTES = 5

_UPSERT_BUILDERS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class SnapshotWriteError(Exception):
    """The snapshot upsert failed; the computed batch must not be served."""

    def __init__(self, study_ids: Sequence[str], reason: str = ""):
        self.study_ids = list(study_ids)
        super().__init__(f"Failed to upsert workload snapshots for {len(self.study_ids)} studies: {reason}")


@dataclass
class SnapshotLookupResult:
    snapshots: Dict[str, StudyWorkloadSnapshot] = field(default_factory=dict)
    stale: Set[str] = field(default_factory=set)

    def is_fresh(self, study_id: str) -> bool:
        return study_id in self.snapshots and study_id not in self.stale


@dataclass
class WorkloadBatch:
    """Result of the cached read path plus the cache accounting reported to clients."""
    workloads: List[WorkloadResponse]
    studies: int
    cache_hits: int = 0
    recomputed: int = 0
    skipped_cache: bool = False


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is written in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def compute_snapshot_expiry(
    ttl_minutes: int = DEFAULT_TTL_MINUTES,
    now: Optional[datetime] = None,
) -> Tuple[datetime, datetime]:
    computed_at = now or utc_now()
    return computed_at, computed_at + timedelta(minutes=ttl_minutes)


def lookup(db: Session, study_ids: Sequence[str], now: Optional[datetime] = None) -> SnapshotLookupResult:
    """Load snapshots for the studies and flag missing or expired ones as stale."""
    study_ids = list(dict.fromkeys(study_ids))
    if not study_ids:
        return SnapshotLookupResult()

    try:
        rows = (
            db.query(StudyWorkloadSnapshot)
            .filter(StudyWorkloadSnapshot.study_id.in_(study_ids))
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(
            f"Failed to load workload snapshots: {e}",
            extra={"extra_fields": {"study_ids": study_ids}},
        )
        db.rollback()
        return SnapshotLookupResult(stale=set(study_ids))

    now = now or utc_now()
    result = SnapshotLookupResult()
    for row in rows:
        result.snapshots[row.study_id] = row
        if row.expires_at is None or _as_utc(row.expires_at) <= now:
            result.stale.add(row.study_id)

    for study_id in study_ids:
        if study_id not in result.snapshots:
            result.stale.add(study_id)

    return result


def store(
    db: Session,
    workloads: Sequence[WorkloadResponse],
    ttl_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> None:
    """Upsert one snapshot row per workload and commit."""
    if not workloads:
        return

    if ttl_minutes is None:
        ttl_minutes = settings.WORKLOAD_SNAPSHOT_TTL_MINUTES
    computed_at, expires_at = compute_snapshot_expiry(ttl_minutes, now)

    # Last one wins if a study appears twice; a single upsert may touch a row only once
    by_study = {workload.study_id: workload for workload in workloads}
    rows = [
        {
            "id": str(uuid.uuid4()),
            "study_id": study_id,
            "payload": workload.model_dump(mode="json", by_alias=True, exclude={"breakdown"}),
            "computed_at": computed_at,
            "expires_at": expires_at,
            "updated_at": computed_at,
        }
        for study_id, workload in by_study.items()
    ]

    study_ids = list(by_study)
    try:
        builder = _UPSERT_BUILDERS.get(db.get_bind().dialect.name)
        if builder is None:
            raise SnapshotWriteError(study_ids, f"unsupported dialect {db.get_bind().dialect.name}")

        stmt = builder(StudyWorkloadSnapshot.__table__).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["study_id"],
            set_={
                "payload": stmt.excluded.payload,
                "computed_at": stmt.excluded.computed_at,
                "expires_at": stmt.excluded.expires_at,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        db.execute(stmt)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            f"Failed to upsert workload snapshots: {e}",
            exc_info=True,
            extra={"extra_fields": {"study_ids": study_ids}},
        )
        raise SnapshotWriteError(study_ids, str(e)) from e

    logger.debug(f"Stored {len(rows)} workload snapshots (ttl {ttl_minutes}m)")


def compute_and_store(
    db: Session,
    session_factory: sessionmaker,
    schema: WorkloadSchema,
    studies: Sequence[StudyMeta],
    lookback_days: Optional[int] = None,
    ttl_minutes: Optional[int] = None,
    ctx: Optional[ComputationContext] = None,
) -> List[WorkloadResponse]:
    workloads = compute_workloads(
        session_factory,
        schema,
        studies,
        lookback_days=lookback_days,
        ctx=ctx,
    )
    store(db, workloads, ttl_minutes=ttl_minutes)
    return workloads


def _cached_payload(snapshot: StudyWorkloadSnapshot) -> Optional[WorkloadResponse]:
    try:
        return WorkloadResponse.model_validate(snapshot.payload)
    except ValidationError as e:
        logger.warning(f"Discarding unreadable workload snapshot for study {snapshot.study_id}: {e}")
        return None


def get_workloads(
    db: Session,
    session_factory: sessionmaker,
    schema: WorkloadSchema,
    studies: Sequence[StudyMeta],
    force: bool = False,
    now: Optional[datetime] = None,
) -> WorkloadBatch:
    """
    Cached read path.

    Returns fresh snapshots as-is, recomputes and stores the stale subset, and
    orders the merged result like the input studies. Studies without a
    computable result are omitted.
    """
    batch = WorkloadBatch(workloads=[], studies=len(studies), skipped_cache=force)
    if not studies:
        return batch

    study_ids = [study.id for study in studies]
    ctx = ComputationContext(study_ids=study_ids, operation="read")

    if not schema.weights_provisioned:
        ctx.logger.info("Workload weights not provisioned; skipping snapshot cache")
        return batch

    by_study: Dict[str, WorkloadResponse] = {}
    stale_studies: List[StudyMeta] = list(studies)

    if not force:
        cache = lookup(db, study_ids, now=now)
        stale_studies = []
        for study in studies:
            cached = _cached_payload(cache.snapshots[study.id]) if cache.is_fresh(study.id) else None
            if cached is None:
                stale_studies.append(study)
            else:
                by_study[study.id] = cached
        batch.cache_hits = len(by_study)

    if stale_studies:
        recomputed = compute_and_store(db, session_factory, schema, stale_studies, ctx=ctx)
        batch.recomputed = len(recomputed)
        for workload in recomputed:
            by_study[workload.study_id] = workload

    batch.workloads = [by_study[sid] for sid in dict.fromkeys(study_ids) if sid in by_study]
    ctx.logger.info(
        f"Served {len(batch.workloads)} workloads ({batch.cache_hits} cached, {batch.recomputed} recomputed)",
        extra={"extra_fields": {"force": force}},
    )
    return batch
