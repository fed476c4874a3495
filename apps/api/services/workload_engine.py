"""
Workload Engine

Runs one batch computation for a set of studies:

    base reads (concurrent)  ->  averages + assignment maps  ->  distribution  ->  scoring

The base reads (weights, raw now/actuals/forecast, assignments, metrics
window) have no interdependency and are issued together on a thread pool,
one session per read. If any provisioned relation fails the batch is
abandoned with WorkloadQueryError; no partial results are returned.

When the weights relation is not provisioned the feature is considered off and
the batch returns no workloads at all.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import sessionmaker

from core.config import settings
from schemas import WorkloadResponse
from services.workload_assignments import resolve_assignments
from services.workload_distribution import distribute_workload
from services.workload_metrics import load_coordinator_averages
from services.workload_repositories import ComputationContext, WorkloadRepository
from services.workload_schema import WorkloadSchema
from services.workload_scoring import compose_workload
from services.workload_types import RawScoreTriple, StudyMeta

logger = logging.getLogger(__name__)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _run_concurrently(jobs: Dict[str, Callable[[], object]], max_workers: int) -> Dict[str, object]:
    """Run independent reads together; the first failure propagates after the pool drains."""
    if max_workers <= 1:
        return {name: job() for name, job in jobs.items()}

    with ThreadPoolExecutor(max_workers=min(max_workers, len(jobs)), thread_name_prefix="workload-read") as pool:
        futures = {name: pool.submit(job) for name, job in jobs.items()}
        try:
            return {name: future.result() for name, future in futures.items()}
        except Exception:
            for future in futures.values():
                future.cancel()
            raise


def compute_workloads(
    session_factory: sessionmaker,
    schema: WorkloadSchema,
    studies: Sequence[StudyMeta],
    lookback_days: Optional[int] = None,
    today: Optional[date] = None,
    ctx: Optional[ComputationContext] = None,
) -> List[WorkloadResponse]:
    """
    Compute weighted workloads for the given studies, in input order.

    Pure computation plus reads: nothing is written here (see
    services.workload_snapshots for the cached path).
    """
    if not studies:
        return []

    study_ids = [study.id for study in studies]
    ctx = ctx or ComputationContext(study_ids=study_ids)

    if not schema.weights_provisioned:
        ctx.logger.info("Workload weights not provisioned; returning no workloads")
        return []

    if lookback_days is None:
        lookback_days = settings.WORKLOAD_METRICS_LOOKBACK_DAYS
    today = today or utc_today()
    repository = WorkloadRepository(session_factory, schema, ctx)

    results = _run_concurrently(
        {
            "weights": lambda: repository.load_weights(study_ids),
            "now": lambda: repository.load_raw_now(study_ids),
            "actuals": lambda: repository.load_raw_actuals(study_ids),
            "forecast": lambda: repository.load_raw_forecast(study_ids),
            "assignments": lambda: repository.load_assignments(study_ids),
            "averages": lambda: load_coordinator_averages(repository, today, lookback_days),
        },
        settings.WORKLOAD_READ_CONCURRENCY,
    )

    weights = results["weights"]
    averages = results["averages"]
    assignments = resolve_assignments(results["assignments"])
    distributed = distribute_workload(study_ids, averages, assignments)

    workloads = [
        compose_workload(
            study,
            weights=weights.get(study.id),
            raw_scores=RawScoreTriple(
                raw_now=results["now"].get(study.id, 0.0),
                raw_actuals=results["actuals"].get(study.id, 0.0),
                raw_forecast=results["forecast"].get(study.id, 0.0),
            ),
            metrics=distributed.get(study.id),
        )
        for study in studies
    ]

    ctx.logger.info(
        f"Computed {len(workloads)} workloads",
        extra={"extra_fields": {
            "coordinators_with_metrics": len(averages),
            "assigned_coordinators": len(assignments.by_coordinator),
            "metrics_layout": schema.metrics_layout,
        }},
    )
    return workloads
