"""
Typed rows shared by the workload components.

Repositories return these; the pure components (aggregation, assignment
resolution, distribution, scoring) consume them without touching the database.
"""
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional


@dataclass(frozen=True)
class StudyMeta:
    """Study identity as supplied by the studies table. Immutable for one pass."""
    id: str
    protocol_number: Optional[str] = None
    title: Optional[str] = None
    lifecycle: Optional[str] = None
    recruitment: Optional[str] = None
    status: Optional[str] = None
    meeting_admin_points: float = 0.0


@dataclass(frozen=True)
class WeightConfig:
    """Per-study weights. Neutral when the study has no weights row."""
    lifecycle_weight: float = 1.0
    recruitment_weight: float = 1.0
    screening_multiplier: float = 1.0
    query_multiplier: float = 1.0
    protocol_score: float = 0.0


@dataclass(frozen=True)
class RawScoreTriple:
    raw_now: float = 0.0
    raw_actuals: float = 0.0
    raw_forecast: float = 0.0


@dataclass(frozen=True)
class CoordinatorMetricWeekly:
    """One self-reported week for one coordinator."""
    coordinator_id: str
    week_start: date
    meeting_hours: float = 0.0
    screening_hours: float = 0.0
    screening_study_count: float = 0.0
    query_hours: float = 0.0
    query_study_count: float = 0.0

    @property
    def total_hours(self) -> float:
        return self.meeting_hours + self.screening_hours + self.query_hours


@dataclass(frozen=True)
class CoordinatorAverage:
    avg_meeting_hours: float
    avg_screening_hours: float
    avg_screening_study_count: float
    avg_query_hours: float
    avg_query_study_count: float
    entries: int
    last_week_start: Optional[date]


@dataclass(frozen=True)
class Assignment:
    study_id: str
    coordinator_id: str


@dataclass(frozen=True)
class DistributedMetrics:
    """A study's fair share of its coordinators' averaged effort."""
    contributors: int = 0
    meeting_hours: float = 0.0
    screening_hours: float = 0.0
    screening_study_count: float = 0.0
    query_hours: float = 0.0
    query_study_count: float = 0.0
    entries: int = 0
    last_week_start: Optional[date] = None


@dataclass(frozen=True)
class BreakdownRow:
    """One row of the per-study, per-coordinator weekly breakdown view."""
    study_id: str
    coordinator_id: str
    week_start: date
    meeting_hours: Optional[float] = None
    screening_hours: Optional[float] = None
    query_hours: Optional[float] = None
    total_hours: Optional[float] = None
    note_entries: Optional[int] = None
    last_updated_at: Optional[datetime] = None
