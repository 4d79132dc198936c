"""
Metrics & baseline router.

POST /metrics/daily              - ingest one day of wearable data
GET  /baseline                   - current baseline and readiness
PUT  /baseline/cycle-tracking    - menstrual cycle flags used by the scorer
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from nudgegate.core.auth import get_user_id
from nudgegate.core.config import settings
from nudgegate.db.base import get_db
from nudgegate.models.user_baseline import UserBaseline
from nudgegate.routers.recovery import recovery_result_to_response
from nudgegate.schemas.common import ErrorResponse
from nudgegate.schemas.metrics import (
    BaselineResponse,
    BaselineStatusResponse,
    CycleTrackingRequest,
    DailyMetricsRequest,
    MetricsIngestResponse,
)
from nudgegate.services.baseline import (
    DEFAULT_SLEEP_TARGET_MINUTES,
    DEFAULT_TEMPERATURE_CELSIUS,
    ConfidenceTier,
    baseline_status,
    get_baseline,
    set_cycle_tracking,
)
from nudgegate.services.metrics import METRIC_FIELDS, ingest_daily_metrics

router = APIRouter(tags=["metrics"])


def _baseline_to_response(baseline: Optional[UserBaseline]) -> BaselineResponse:
    status_payload = BaselineStatusResponse(
        **baseline_status(baseline, settings.MIN_BASELINE_DAYS)
    )
    if baseline is None:
        return BaselineResponse(
            sleep_duration_target_minutes=DEFAULT_SLEEP_TARGET_MINUTES,
            temperature_baseline_celsius=DEFAULT_TEMPERATURE_CELSIUS,
            sample_count=0,
            confidence_level=ConfidenceTier.LOW,
            menstrual_cycle_tracking=False,
            status=status_payload,
        )
    return BaselineResponse(
        hrv_ln_mean=baseline.hrv_ln_mean,
        hrv_ln_std_dev=baseline.hrv_ln_std_dev,
        hrv_coefficient_of_variation=baseline.hrv_coefficient_of_variation,
        rhr_mean=baseline.rhr_mean,
        rhr_std_dev=baseline.rhr_std_dev,
        respiratory_rate_mean=baseline.respiratory_rate_mean,
        respiratory_rate_std_dev=baseline.respiratory_rate_std_dev,
        sleep_duration_target_minutes=baseline.sleep_duration_target_minutes,
        temperature_baseline_celsius=baseline.temperature_baseline_celsius,
        sample_count=baseline.sample_count,
        confidence_level=baseline.confidence_level,
        menstrual_cycle_tracking=baseline.menstrual_cycle_tracking,
        cycle_day=baseline.cycle_day,
        status=status_payload,
    )


# ---------------------------------------------------------------------------
# POST /metrics/daily
# ---------------------------------------------------------------------------

@router.post(
    "/metrics/daily",
    response_model=MetricsIngestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Ingest one day of normalized wearable metrics",
    responses={
        201: {"description": "Metrics stored; baseline refreshed; recovery scored when ready."},
        401: {"model": ErrorResponse, "description": "Missing X-User-Id."},
        422: {"model": ErrorResponse, "description": "Validation error."},
    },
)
def post_daily_metrics(
    payload: DailyMetricsRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """
    **Idempotent per day**: posting the same `day` again replaces that day's
    metrics and re-scores it.

    `recovery` is `null` until the baseline holds at least
    `MIN_BASELINE_DAYS` days, or when none of the five components has input.
    """
    values = payload.model_dump(include=set(METRIC_FIELDS))
    result = ingest_daily_metrics(db, user_id, payload.day, values)
    return MetricsIngestResponse(
        day=str(payload.day),
        baseline=_baseline_to_response(result.baseline),
        recovery=(
            recovery_result_to_response(payload.day, result.recovery)
            if result.recovery is not None else None
        ),
    )


# ---------------------------------------------------------------------------
# GET /baseline
# ---------------------------------------------------------------------------

@router.get(
    "/baseline",
    response_model=BaselineResponse,
    summary="Current personal baseline and readiness",
)
def read_baseline(
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """A user with no metrics yet gets population defaults and `ready: false`."""
    return _baseline_to_response(get_baseline(db, user_id))


# ---------------------------------------------------------------------------
# PUT /baseline/cycle-tracking
# ---------------------------------------------------------------------------

@router.put(
    "/baseline/cycle-tracking",
    response_model=BaselineResponse,
    summary="Enable or disable menstrual cycle tracking",
    responses={
        422: {"model": ErrorResponse, "description": "cycle_day outside 1-45."},
    },
)
def update_cycle_tracking(
    payload: CycleTrackingRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """
    With tracking on and `cycle_day` in the luteal phase (days 15-28),
    positive temperature deviations get a 0.3°C allowance before penalizing.
    Disabling clears `cycle_day`.
    """
    baseline = set_cycle_tracking(db, user_id, payload.enabled, payload.cycle_day)
    return _baseline_to_response(baseline)
