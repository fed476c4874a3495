"""
Workload Score Composition

Turns per-study configuration weights, raw workload scores and the study's
distributed coordinator metrics into the weighted WorkloadResponse.

    screening_scale  = clamp(avg screening hours / 4h, 0.6, 1.8)   (1 without contributors)
    query_scale      = clamp(avg query hours / 3h, 0.6, 1.8)       (1 without contributors)
    meeting_adjust   = clamp((avg meeting hours - 2h) * 4, -40, 40) (0 without contributors)
    factor           = lifecycle_w * recruitment_w * (sm * screening_scale) * (qm * query_scale)
    weighted(raw)    = round2(raw * factor)

The meeting adjustment is folded into "now" only; actuals and forecast are
weighted unadjusted. The baselines are fixed reference points for a typical
coordinator week, and the clamps keep outlier self-reports from running away.
"""

import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from schemas import ScorePair, WorkloadMetricsSummary, WorkloadResponse
from services.workload_types import DistributedMetrics, RawScoreTriple, StudyMeta, WeightConfig

SCREENING_BASELINE_HOURS = 4
QUERY_BASELINE_HOURS = 3
METRICS_SCALE_MIN = 0.6
METRICS_SCALE_MAX = 1.8
MEETING_BASELINE_HOURS = 2
MEETING_POINTS_PER_WEEK_HOUR = 4
MEETING_POINTS_LIMIT = 40

_CENTS = Decimal("0.01")


def round2(value: float) -> float:
    """Round half away from zero to 2 decimal places."""
    if not math.isfinite(value):
        return value
    return float(Decimal(str(value)).quantize(_CENTS, rounding=ROUND_HALF_UP))


def clamp(value: float, lower: float, upper: float) -> float:
    return min(upper, max(lower, value))


def screening_scale(avg_screening_hours: float, contributors: int) -> float:
    if contributors <= 0:
        return 1.0
    return clamp(avg_screening_hours / SCREENING_BASELINE_HOURS, METRICS_SCALE_MIN, METRICS_SCALE_MAX)


def query_scale(avg_query_hours: float, contributors: int) -> float:
    if contributors <= 0:
        return 1.0
    return clamp(avg_query_hours / QUERY_BASELINE_HOURS, METRICS_SCALE_MIN, METRICS_SCALE_MAX)


def meeting_points_adjustment(avg_meeting_hours: float, contributors: int) -> float:
    """Meeting-hour deviation from the 2h baseline, in admin points, capped at +/-40."""
    if contributors <= 0:
        return 0.0
    raw = (avg_meeting_hours - MEETING_BASELINE_HOURS) * MEETING_POINTS_PER_WEEK_HOUR
    return round2(clamp(raw, -MEETING_POINTS_LIMIT, MEETING_POINTS_LIMIT))


def weighted_value(raw: float, factor: float) -> float:
    return round2(raw * factor)


def compose_workload(
    study: StudyMeta,
    weights: Optional[WeightConfig] = None,
    raw_scores: Optional[RawScoreTriple] = None,
    metrics: Optional[DistributedMetrics] = None,
) -> WorkloadResponse:
    """Build the response for one study; any missing input falls back to its neutral default."""
    weights = weights or WeightConfig()
    raw_scores = raw_scores or RawScoreTriple()
    metrics = metrics or DistributedMetrics()

    scale_screening = screening_scale(metrics.screening_hours, metrics.contributors)
    scale_query = query_scale(metrics.query_hours, metrics.contributors)
    meeting_adjustment = meeting_points_adjustment(metrics.meeting_hours, metrics.contributors)

    effective_screening = weights.screening_multiplier * scale_screening
    effective_query = weights.query_multiplier * scale_query
    factor = weights.lifecycle_weight * weights.recruitment_weight * effective_screening * effective_query

    adjusted_now = raw_scores.raw_now + meeting_adjustment

    return WorkloadResponse(
        study_id=study.id,
        protocol_number=study.protocol_number,
        study_title=study.title,
        lifecycle=study.lifecycle,
        recruitment=study.recruitment if study.recruitment is not None else study.status,
        status=study.status,
        lifecycle_weight=weights.lifecycle_weight,
        recruitment_weight=weights.recruitment_weight,
        screening_multiplier=weights.screening_multiplier,
        query_multiplier=weights.query_multiplier,
        screening_multiplier_effective=round2(effective_screening),
        query_multiplier_effective=round2(effective_query),
        meeting_admin_points=study.meeting_admin_points,
        meeting_admin_points_adjusted=round2(study.meeting_admin_points + meeting_adjustment),
        protocol_score=weights.protocol_score,
        now=ScorePair(raw=round2(adjusted_now), weighted=weighted_value(adjusted_now, factor)),
        actuals=ScorePair(raw=round2(raw_scores.raw_actuals), weighted=weighted_value(raw_scores.raw_actuals, factor)),
        forecast=ScorePair(raw=round2(raw_scores.raw_forecast), weighted=weighted_value(raw_scores.raw_forecast, factor)),
        metrics=WorkloadMetricsSummary(
            contributors=metrics.contributors,
            avg_meeting_hours=round2(metrics.meeting_hours),
            avg_screening_hours=round2(metrics.screening_hours),
            avg_screening_study_count=round2(metrics.screening_study_count),
            avg_query_hours=round2(metrics.query_hours),
            avg_query_study_count=round2(metrics.query_study_count),
            screening_scale=round2(scale_screening),
            query_scale=round2(scale_query),
            meeting_points_adjustment=meeting_adjustment,
            entries=metrics.entries,
            last_week_start=metrics.last_week_start,
        ),
    )
