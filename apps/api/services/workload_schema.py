"""
Workload Schema Detection

The workload engine reads several relations that may not be provisioned yet
on a given deployment (weights/score views, study assignments, coordinator
metrics, the breakdown view). Instead of interpreting "relation does not
exist" errors on every request, the schema is inspected once and the result
is consulted by the repositories:

- absent relation -> the repository returns its defaults without querying
- coordinator_metrics layout -> v2 (meeting_hours + study counts) or the
  legacy v1 layout (admin_hours only), chosen by
  COORDINATOR_METRICS_SCHEMA_VERSION or detected when set to "auto"
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from core.config import settings

logger = logging.getLogger(__name__)

WEIGHTS_RELATION = "cwe_weights"
NOW_RELATION = "cwe_now"
ACTUALS_RELATION = "cwe_actuals"
FORECAST_RELATION = "cwe_forecast_4w"
ASSIGNMENTS_RELATION = "study_coordinators"
METRICS_RELATION = "coordinator_metrics"
BREAKDOWN_RELATION = "v_coordinator_metrics_breakdown_weekly"
STUDIES_RELATION = "studies"

METRICS_LAYOUT_V2 = "v2"
METRICS_LAYOUT_V1 = "v1"

V2_METRIC_COLUMNS = frozenset({"meeting_hours", "screening_study_count", "query_study_count"})

OPTIONAL_RELATIONS = (
    WEIGHTS_RELATION,
    NOW_RELATION,
    ACTUALS_RELATION,
    FORECAST_RELATION,
    ASSIGNMENTS_RELATION,
    METRICS_RELATION,
    BREAKDOWN_RELATION,
)


@dataclass(frozen=True)
class WorkloadSchema:
    """Which workload relations exist and how the metrics relation is laid out."""
    relations: FrozenSet[str] = field(default_factory=frozenset)
    metrics_layout: str = METRICS_LAYOUT_V2
    study_columns: FrozenSet[str] = field(default_factory=frozenset)
    db_schema: Optional[str] = None

    def has(self, relation: str) -> bool:
        return relation in self.relations

    @property
    def weights_provisioned(self) -> bool:
        """Without the weights relation the whole feature is considered off."""
        return WEIGHTS_RELATION in self.relations


def resolve_metrics_layout(columns: FrozenSet[str], version_flag: str = "auto") -> str:
    """
    Pick the metrics adapter.

    An explicit v1/v2 flag wins. In auto mode the modern layout is preferred and
    the legacy one is used only when a modern column is missing.
    """
    if version_flag in (METRICS_LAYOUT_V1, METRICS_LAYOUT_V2):
        return version_flag
    if V2_METRIC_COLUMNS.issubset(columns):
        return METRICS_LAYOUT_V2
    if "admin_hours" in columns:
        return METRICS_LAYOUT_V1
    return METRICS_LAYOUT_V2


def detect_workload_schema(
    bind: Engine,
    version_flag: Optional[str] = None,
    db_schema: Optional[str] = None,
) -> WorkloadSchema:
    """Inspect the database once and describe the workload relations present."""
    version_flag = version_flag or settings.COORDINATOR_METRICS_SCHEMA_VERSION
    db_schema = db_schema if db_schema is not None else settings.DB_SCHEMA

    inspector = inspect(bind)
    available = set(inspector.get_table_names(schema=db_schema))
    available.update(inspector.get_view_names(schema=db_schema))

    relations = frozenset(name for name in OPTIONAL_RELATIONS if name in available)

    metrics_layout = METRICS_LAYOUT_V2
    if METRICS_RELATION in relations:
        metric_columns = frozenset(
            col["name"] for col in inspector.get_columns(METRICS_RELATION, schema=db_schema)
        )
        metrics_layout = resolve_metrics_layout(metric_columns, version_flag)

    study_columns: FrozenSet[str] = frozenset()
    if STUDIES_RELATION in available:
        study_columns = frozenset(
            col["name"] for col in inspector.get_columns(STUDIES_RELATION, schema=db_schema)
        )

    missing = sorted(set(OPTIONAL_RELATIONS) - relations)
    logger.info(
        f"Workload schema detected: {len(relations)} optional relations present, "
        f"metrics layout {metrics_layout}",
        extra={"extra_fields": {"missing_relations": missing, "metrics_layout": metrics_layout}},
    )

    return WorkloadSchema(
        relations=relations,
        metrics_layout=metrics_layout,
        study_columns=study_columns,
        db_schema=db_schema,
    )


_schema_lock = threading.Lock()
_detected_schema: Optional[WorkloadSchema] = None


def get_workload_schema() -> WorkloadSchema:
    """Return the detected schema, inspecting the shared engine on first use."""
    global _detected_schema

    if _detected_schema is not None:
        return _detected_schema

    with _schema_lock:
        if _detected_schema is None:
            from core.database import engine
            _detected_schema = detect_workload_schema(engine)
    return _detected_schema


def reset_workload_schema() -> None:
    """Forget the detected schema (after migrations, or between tests)."""
    global _detected_schema
    with _schema_lock:
        _detected_schema = None
