"""
BaselineTracker: rolling personal reference statistics per user.

Rules
-----
  - Each signal keeps a trailing window of its 14 most recent valid samples.
  - A sample is valid when it is present and > 0. Missing samples are left
    out of that signal's window; nothing is zero-filled.
  - HRV is summarized in log space (mean/std of ln HRV). Everything else is
    raw mean / sample standard deviation (n - 1). Fewer than 2 samples -> 0.
  - Sleep target = 75th percentile of windowed sleep minutes (420 when empty).
  - sample_count = max(previous, distinct metric days stored). Never drops.
  - Tier: < 7 "low", 7..13 "medium", >= 14 "high".

Public API
----------
  compute_baseline_stats(rows)      pure, over any objects with metric attrs
  confidence_tier(sample_count)     pure
  update_baseline(db, user_id, metrics)   upsert, no commit
  baseline_status(baseline, min_days)     readiness summary for the API
  set_cycle_tracking(db, user_id, enabled, cycle_day)   commits
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from nudgegate.core.timeutil import utcnow
from nudgegate.models.daily_metric import DailyMetric
from nudgegate.models.user_baseline import UserBaseline

logger = logging.getLogger(__name__)


WINDOW_SIZE = 14
DEFAULT_SLEEP_TARGET_MINUTES = 420.0
DEFAULT_TEMPERATURE_CELSIUS = 36.5
_SLEEP_TARGET_PERCENTILE = 0.75

# Rows scanned when rebuilding windows; enough to find 14 valid values of a
# sparsely reported signal without reading the whole history.
_HISTORY_SCAN_ROWS = 60

_TIER_MEDIUM_AT = 7
_TIER_HIGH_AT = 14


class ConfidenceTier:
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ---------------------------------------------------------------------------
# Pure statistics
# ---------------------------------------------------------------------------

@dataclass
class SignalStats:
    mean: Optional[float]
    std_dev: Optional[float]
    count: int


@dataclass
class BaselineStats:
    hrv_ln: SignalStats
    hrv_coefficient_of_variation: Optional[float]
    rhr: SignalStats
    respiratory_rate: SignalStats
    sleep_duration_target_minutes: float
    sleep_count: int


def _valid(value) -> bool:
    return value is not None and value > 0 and not math.isnan(value)


def _window(rows: Iterable, attr: str) -> list[float]:
    """Most recent WINDOW_SIZE valid values of `attr`. Rows are newest first."""
    values: list[float] = []
    for row in rows:
        value = getattr(row, attr, None)
        if _valid(value):
            values.append(float(value))
            if len(values) == WINDOW_SIZE:
                break
    return values


def _mean_std(values: list[float]) -> SignalStats:
    n = len(values)
    if n == 0:
        return SignalStats(mean=None, std_dev=None, count=0)
    mean = math.fsum(values) / n
    if n < 2:
        return SignalStats(mean=mean, std_dev=0.0, count=n)
    variance = math.fsum((v - mean) ** 2 for v in values) / (n - 1)
    return SignalStats(mean=mean, std_dev=math.sqrt(variance), count=n)


def _percentile(values: list[float], fraction: float) -> float:
    ordered = sorted(values)
    index = min(len(ordered) - 1, int(math.floor(len(ordered) * fraction)))
    return ordered[index]


def compute_baseline_stats(rows: list) -> BaselineStats:
    """Summarize metric rows ordered newest first."""
    hrv = _window(rows, "hrv_avg")
    hrv_ln = _mean_std([math.log(v) for v in hrv])
    hrv_raw = _mean_std(hrv)
    cv = None
    if hrv_raw.mean:
        cv = hrv_raw.std_dev / hrv_raw.mean

    sleep_minutes = [h * 60.0 for h in _window(rows, "sleep_hours")]
    target = (
        _percentile(sleep_minutes, _SLEEP_TARGET_PERCENTILE)
        if sleep_minutes else DEFAULT_SLEEP_TARGET_MINUTES
    )

    return BaselineStats(
        hrv_ln=hrv_ln,
        hrv_coefficient_of_variation=cv,
        rhr=_mean_std(_window(rows, "rhr_avg")),
        respiratory_rate=_mean_std(_window(rows, "respiratory_rate")),
        sleep_duration_target_minutes=target,
        sleep_count=len(sleep_minutes),
    )


def confidence_tier(sample_count: int) -> str:
    if sample_count >= _TIER_HIGH_AT:
        return ConfidenceTier.HIGH
    if sample_count >= _TIER_MEDIUM_AT:
        return ConfidenceTier.MEDIUM
    return ConfidenceTier.LOW


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def get_baseline(db: Session, user_id: str) -> Optional[UserBaseline]:
    return db.query(UserBaseline).filter(UserBaseline.user_id == user_id).first()


def _get_or_create(db: Session, user_id: str) -> UserBaseline:
    baseline = get_baseline(db, user_id)
    if baseline is None:
        baseline = UserBaseline(
            user_id=user_id,
            sleep_duration_target_minutes=DEFAULT_SLEEP_TARGET_MINUTES,
            temperature_baseline_celsius=DEFAULT_TEMPERATURE_CELSIUS,
            sample_count=0,
            confidence_level=ConfidenceTier.LOW,
            hrv_sample_count=0,
            rhr_sample_count=0,
            respiratory_sample_count=0,
            sleep_sample_count=0,
            menstrual_cycle_tracking=False,
        )
        db.add(baseline)
    return baseline


def update_baseline(db: Session, user_id: str, metrics: DailyMetric) -> UserBaseline:
    """
    Fold the stored metric history (including `metrics`) into the user's
    baseline. Flushes but does not commit.
    """
    db.flush()
    rows = (
        db.query(DailyMetric)
        .filter(DailyMetric.user_id == user_id)
        .order_by(DailyMetric.day.desc())
        .limit(_HISTORY_SCAN_ROWS)
        .all()
    )
    days_stored = (
        db.query(func.count(DailyMetric.id))
        .filter(DailyMetric.user_id == user_id)
        .scalar()
    ) or 0

    stats = compute_baseline_stats(rows)
    baseline = _get_or_create(db, user_id)

    baseline.hrv_ln_mean = stats.hrv_ln.mean
    baseline.hrv_ln_std_dev = stats.hrv_ln.std_dev
    baseline.hrv_coefficient_of_variation = stats.hrv_coefficient_of_variation
    baseline.hrv_sample_count = stats.hrv_ln.count
    baseline.rhr_mean = stats.rhr.mean
    baseline.rhr_std_dev = stats.rhr.std_dev
    baseline.rhr_sample_count = stats.rhr.count
    baseline.respiratory_rate_mean = stats.respiratory_rate.mean
    baseline.respiratory_rate_std_dev = stats.respiratory_rate.std_dev
    baseline.respiratory_sample_count = stats.respiratory_rate.count
    baseline.sleep_duration_target_minutes = stats.sleep_duration_target_minutes
    baseline.sleep_sample_count = stats.sleep_count

    baseline.sample_count = max(baseline.sample_count or 0, days_stored)
    baseline.confidence_level = confidence_tier(baseline.sample_count)
    baseline.updated_at = utcnow()

    logger.debug(
        "baseline updated user=%s day=%s samples=%d tier=%s",
        user_id, metrics.day, baseline.sample_count, baseline.confidence_level,
    )
    return baseline


def baseline_status(baseline: Optional[UserBaseline], min_days: int) -> dict:
    count = baseline.sample_count if baseline else 0
    ready = count >= min_days
    days_needed = max(0, min_days - count)
    if ready:
        message = f"Baseline ready ({count} days, {confidence_tier(count)} confidence)."
    else:
        message = (
            f"Building baseline: {count}/{min_days} days collected, "
            f"{days_needed} more needed."
        )
    return {
        "ready": ready,
        "sample_count": count,
        "days_needed": days_needed,
        "confidence_level": confidence_tier(count),
        "message": message,
    }


def set_cycle_tracking(
    db: Session,
    user_id: str,
    enabled: bool,
    cycle_day: Optional[int] = None,
) -> UserBaseline:
    baseline = _get_or_create(db, user_id)
    baseline.menstrual_cycle_tracking = enabled
    baseline.cycle_day = cycle_day if enabled else None
    baseline.updated_at = utcnow()
    db.commit()
    db.refresh(baseline)
    return baseline
