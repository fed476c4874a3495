from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import date, datetime
from typing import Optional, List


class CamelModel(BaseModel):
    """Wire models are camelCase on the outside, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ============ Workload ============

class ScorePair(CamelModel):
    raw: float
    weighted: float


class WorkloadMetricsSummary(CamelModel):
    contributors: int
    avg_meeting_hours: float
    avg_screening_hours: float
    avg_screening_study_count: float
    avg_query_hours: float
    avg_query_study_count: float
    screening_scale: float
    query_scale: float
    meeting_points_adjustment: float
    entries: int
    last_week_start: Optional[date] = None


class BreakdownTotals(CamelModel):
    meeting_hours: float = 0
    screening_hours: float = 0
    query_hours: float = 0
    total_hours: float = 0
    notes_count: int = 0


class BreakdownCoordinator(CamelModel):
    coordinator_id: str
    meeting_hours: float
    screening_hours: float
    query_hours: float
    total_hours: float
    notes_count: int
    last_updated_at: Optional[datetime] = None


class BreakdownWeek(CamelModel):
    week_start: date
    coordinators: List[BreakdownCoordinator]
    totals: BreakdownTotals


class WorkloadBreakdown(CamelModel):
    weeks: List[BreakdownWeek] = []


class WorkloadResponse(CamelModel):
    """Computed workload for one study. This is also the cached snapshot payload."""
    study_id: str
    protocol_number: Optional[str] = None
    study_title: Optional[str] = None
    lifecycle: Optional[str] = None
    recruitment: Optional[str] = None
    status: Optional[str] = None
    lifecycle_weight: float
    recruitment_weight: float
    screening_multiplier: float
    query_multiplier: float
    screening_multiplier_effective: float
    query_multiplier_effective: float
    meeting_admin_points: float
    meeting_admin_points_adjusted: float
    protocol_score: float
    now: ScorePair
    actuals: ScorePair
    forecast: ScorePair
    metrics: WorkloadMetricsSummary
    # Only attached on request; never persisted with the snapshot
    breakdown: Optional[WorkloadBreakdown] = None


class WorkloadsMeta(CamelModel):
    studies: int
    cache_hits: int
    recomputed: int
    skipped_cache: bool


class WorkloadsResponse(CamelModel):
    workloads: List[WorkloadResponse]
    meta: WorkloadsMeta


class TrendPoint(CamelModel):
    week_start: date
    actual: float
    forecast: float


class TrendResponse(CamelModel):
    points: List[TrendPoint]


class WorkloadRefreshRequest(CamelModel):
    study_id: Optional[str] = None
    study_ids: List[str] = Field(default_factory=list)
    ttl_minutes: Optional[int] = Field(default=None, ge=1, le=1440)
    lookback_days: Optional[int] = Field(default=None, ge=1, le=365)


class WorkloadRefreshResponse(CamelModel):
    workloads: List[WorkloadResponse]
    count: int
    studies: List[str]


class CronRefreshResponse(CamelModel):
    ok: bool
    count: int
