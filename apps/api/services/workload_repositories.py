"""
Workload Repositories

Typed read access to the relations the workload engine consumes. Every
method returns the dataclasses from services.workload_types; callers never see
rows, column names or driver types.

Relations flagged absent by the detected WorkloadSchema are not queried at
all; the method returns its neutral default instead. A relation that is
present but fails is a transient failure: it is logged with the batch context
and re-raised as WorkloadQueryError, which aborts the batch.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from core.logging import get_batch_logger
from services.workload_schema import (
    ACTUALS_RELATION,
    ASSIGNMENTS_RELATION,
    BREAKDOWN_RELATION,
    FORECAST_RELATION,
    METRICS_LAYOUT_V1,
    METRICS_LAYOUT_V2,
    METRICS_RELATION,
    NOW_RELATION,
    STUDIES_RELATION,
    WEIGHTS_RELATION,
    WorkloadSchema,
)
from services.workload_types import (
    Assignment,
    BreakdownRow,
    CoordinatorMetricWeekly,
    StudyMeta,
    WeightConfig,
)

logger = logging.getLogger(__name__)


class WorkloadQueryError(Exception):
    """A provisioned relation failed to load; the whole batch is abandoned."""

    def __init__(self, source: str, study_ids: Sequence[str]):
        self.source = source
        self.study_ids = list(study_ids)
        super().__init__(f"Failed to load {source} for {len(self.study_ids)} studies")


@dataclass
class ComputationContext:
    """Correlation data for one batch; its logger stamps batch_id on every record."""
    study_ids: List[str] = field(default_factory=list)
    batch_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    operation: str = "compute"

    def __post_init__(self):
        self.logger = get_batch_logger(
            "services.workload",
            batch_id=self.batch_id,
            operation=self.operation,
            study_count=len(self.study_ids),
        )


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------

def as_float(value: Any, default: float = 0.0) -> float:
    """Numeric columns arrive as Decimal/int/float/str or NULL."""
    if value is None:
        return default
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def as_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def as_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


# ---------------------------------------------------------------------------
# Coordinator metrics layouts
# ---------------------------------------------------------------------------

class MetricsLayoutV2:
    """Current layout: meeting hours plus self-reported study coverage counts."""
    version = METRICS_LAYOUT_V2
    columns = (
        "coordinator_id, week_start, meeting_hours, screening_hours, "
        "screening_study_count, query_hours, query_study_count"
    )

    def to_row(self, record: Mapping[str, Any]) -> CoordinatorMetricWeekly:
        return CoordinatorMetricWeekly(
            coordinator_id=str(record["coordinator_id"]),
            week_start=as_date(record["week_start"]),
            meeting_hours=as_float(record.get("meeting_hours")),
            screening_hours=as_float(record.get("screening_hours")),
            screening_study_count=as_float(record.get("screening_study_count")),
            query_hours=as_float(record.get("query_hours")),
            query_study_count=as_float(record.get("query_study_count")),
        )


class MetricsLayoutV1:
    """Legacy layout: admin_hours stands in for meeting hours, no coverage counts."""
    version = METRICS_LAYOUT_V1
    columns = "coordinator_id, week_start, admin_hours, screening_hours, query_hours"

    def to_row(self, record: Mapping[str, Any]) -> CoordinatorMetricWeekly:
        return CoordinatorMetricWeekly(
            coordinator_id=str(record["coordinator_id"]),
            week_start=as_date(record["week_start"]),
            meeting_hours=as_float(record.get("admin_hours")),
            screening_hours=as_float(record.get("screening_hours")),
            screening_study_count=0.0,
            query_hours=as_float(record.get("query_hours")),
            query_study_count=0.0,
        )


METRICS_LAYOUTS = {
    METRICS_LAYOUT_V2: MetricsLayoutV2(),
    METRICS_LAYOUT_V1: MetricsLayoutV1(),
}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------

class WorkloadRepository:
    """
    Read side of the workload engine.

    Each call opens its own short-lived session from the factory, so calls can
    run concurrently from worker threads.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        schema: WorkloadSchema,
        ctx: Optional[ComputationContext] = None,
    ):
        self.session_factory = session_factory
        self.schema = schema
        self.ctx = ctx or ComputationContext()

    @property
    def metrics_layout(self):
        return METRICS_LAYOUTS[self.schema.metrics_layout]

    def _provisioned(self, relation: str) -> bool:
        if self.schema.has(relation):
            return True
        self.ctx.logger.debug(f"Relation {relation} not provisioned; using defaults")
        return False

    def _relation(self, name: str) -> str:
        if self.schema.db_schema:
            return f"{self.schema.db_schema}.{name}"
        return name

    def _fetch(
        self,
        source: str,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
        expanding: Iterable[str] = (),
    ) -> List[Mapping[str, Any]]:
        stmt = text(sql)
        expanding = list(expanding)
        if expanding:
            stmt = stmt.bindparams(*(bindparam(name, expanding=True) for name in expanding))
        try:
            with self.session_factory() as session:
                return list(session.execute(stmt, params or {}).mappings().all())
        except SQLAlchemyError as e:
            self.ctx.logger.error(
                f"Workload query failed: {source}",
                exc_info=True,
                extra={"extra_fields": {"source": source, "study_ids": self.ctx.study_ids, "error": str(e)}},
            )
            raise WorkloadQueryError(source, self.ctx.study_ids) from e

    # ----- studies -----

    def load_studies(self, study_ids: Optional[Sequence[str]] = None) -> List[StudyMeta]:
        """
        Resolve study identity rows.

        With explicit ids the result follows the input order (duplicates and
        unknown ids dropped). Without ids every study is returned, newest first
        when the table tracks created_at.
        """
        columns = ["id", "protocol_number", "study_title", "lifecycle", "recruitment", "status"]
        has_points = "meeting_admin_points" in self.schema.study_columns
        if has_points:
            columns.append("meeting_admin_points")

        sql = f"SELECT {', '.join(columns)} FROM {self._relation(STUDIES_RELATION)}"
        params: Dict[str, Any] = {}
        expanding: List[str] = []

        if study_ids is not None:
            ordered = list(dict.fromkeys(str(sid) for sid in study_ids))
            if not ordered:
                return []
            sql += " WHERE id IN :study_ids"
            params["study_ids"] = ordered
            expanding.append("study_ids")
        elif "created_at" in self.schema.study_columns:
            sql += " ORDER BY created_at DESC"

        records = self._fetch(STUDIES_RELATION, sql, params, expanding)
        studies = [
            StudyMeta(
                id=str(record["id"]),
                protocol_number=record.get("protocol_number"),
                title=record.get("study_title"),
                lifecycle=_as_text(record.get("lifecycle")),
                recruitment=_as_text(record.get("recruitment")),
                status=_as_text(record.get("status")),
                meeting_admin_points=as_float(record.get("meeting_admin_points")) if has_points else 0.0,
            )
            for record in records
        ]

        if study_ids is None:
            return studies
        by_id = {study.id: study for study in studies}
        return [by_id[sid] for sid in ordered if sid in by_id]

    # ----- weights & raw scores -----

    def load_weights(self, study_ids: Sequence[str]) -> Dict[str, WeightConfig]:
        if not study_ids or not self._provisioned(WEIGHTS_RELATION):
            return {}
        records = self._fetch(
            WEIGHTS_RELATION,
            f"SELECT study_id, lifecycle_w, recruitment_w, ps, sm, qm "
            f"FROM {self._relation(WEIGHTS_RELATION)} WHERE study_id IN :study_ids",
            {"study_ids": list(study_ids)},
            ["study_ids"],
        )
        return {
            str(record["study_id"]): WeightConfig(
                lifecycle_weight=as_float(record.get("lifecycle_w"), 1.0),
                recruitment_weight=as_float(record.get("recruitment_w"), 1.0),
                screening_multiplier=as_float(record.get("sm"), 1.0),
                query_multiplier=as_float(record.get("qm"), 1.0),
                protocol_score=as_float(record.get("ps"), 0.0),
            )
            for record in records
        }

    def _load_raw_scores(self, relation: str, column: str, study_ids: Sequence[str]) -> Dict[str, float]:
        if not study_ids or not self._provisioned(relation):
            return {}
        records = self._fetch(
            relation,
            f"SELECT study_id, {column} FROM {self._relation(relation)} WHERE study_id IN :study_ids",
            {"study_ids": list(study_ids)},
            ["study_ids"],
        )
        return {str(record["study_id"]): as_float(record.get(column)) for record in records}

    def load_raw_now(self, study_ids: Sequence[str]) -> Dict[str, float]:
        return self._load_raw_scores(NOW_RELATION, "raw_now", study_ids)

    def load_raw_actuals(self, study_ids: Sequence[str]) -> Dict[str, float]:
        return self._load_raw_scores(ACTUALS_RELATION, "raw_actuals", study_ids)

    def load_raw_forecast(self, study_ids: Sequence[str]) -> Dict[str, float]:
        return self._load_raw_scores(FORECAST_RELATION, "raw_forecast", study_ids)

    # ----- assignments & metrics -----

    def load_assignments(self, study_ids: Sequence[str]) -> List[Assignment]:
        if not study_ids or not self._provisioned(ASSIGNMENTS_RELATION):
            return []
        records = self._fetch(
            ASSIGNMENTS_RELATION,
            f"SELECT study_id, coordinator_id FROM {self._relation(ASSIGNMENTS_RELATION)} "
            f"WHERE study_id IN :study_ids",
            {"study_ids": list(study_ids)},
            ["study_ids"],
        )
        return [
            Assignment(study_id=str(record["study_id"]), coordinator_id=str(record["coordinator_id"]))
            for record in records
            if record.get("study_id") and record.get("coordinator_id")
        ]

    def load_weekly_metrics(
        self,
        since: date,
        coordinator_ids: Optional[Sequence[str]] = None,
    ) -> List[CoordinatorMetricWeekly]:
        """
        Weekly metric rows with week_start >= since.

        coordinator_ids narrows the read; an empty collection means nobody is
        relevant and nothing is read.
        """
        if not self._provisioned(METRICS_RELATION):
            return []
        if coordinator_ids is not None and not coordinator_ids:
            return []

        layout = self.metrics_layout
        sql = (
            f"SELECT {layout.columns} FROM {self._relation(METRICS_RELATION)} "
            f"WHERE week_start >= :since"
        )
        params: Dict[str, Any] = {"since": since.isoformat()}
        expanding: List[str] = []
        if coordinator_ids is not None:
            sql += " AND coordinator_id IN :coordinator_ids"
            params["coordinator_ids"] = list(coordinator_ids)
            expanding.append("coordinator_ids")

        records = self._fetch(f"{METRICS_RELATION} ({layout.version})", sql, params, expanding)
        return [
            layout.to_row(record)
            for record in records
            if record.get("coordinator_id") and record.get("week_start")
        ]

    # ----- breakdown -----

    def load_breakdown(self, study_ids: Sequence[str], since: date) -> List[BreakdownRow]:
        if not study_ids or not self._provisioned(BREAKDOWN_RELATION):
            return []
        records = self._fetch(
            BREAKDOWN_RELATION,
            f"SELECT study_id, coordinator_id, week_start, meeting_hours, screening_hours, "
            f"query_hours, total_hours, note_entries, last_updated_at "
            f"FROM {self._relation(BREAKDOWN_RELATION)} "
            f"WHERE study_id IN :study_ids AND week_start >= :since "
            f"ORDER BY week_start ASC",
            {"study_ids": list(study_ids), "since": since.isoformat()},
            ["study_ids"],
        )
        return [
            BreakdownRow(
                study_id=str(record["study_id"]),
                coordinator_id=str(record["coordinator_id"]),
                week_start=as_date(record["week_start"]),
                meeting_hours=_optional_float(record.get("meeting_hours")),
                screening_hours=_optional_float(record.get("screening_hours")),
                query_hours=_optional_float(record.get("query_hours")),
                total_hours=_optional_float(record.get("total_hours")),
                note_entries=int(as_float(record.get("note_entries"))),
                last_updated_at=as_datetime(record.get("last_updated_at")),
            )
            for record in records
            if record.get("study_id") and record.get("coordinator_id") and record.get("week_start")
        ]


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else as_float(value)


def _as_text(value: Any) -> Optional[str]:
    # Postgres enums come back as plain strings; anything else is stringified.
    return None if value is None else str(value)
