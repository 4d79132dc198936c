"""
Metrics ingest: the write path for one day of normalized wearable data.

Public API
----------
ingest_daily_metrics(db, user_id, day, values) -> IngestResult   (commits once)

Order: upsert DailyMetric -> refresh baseline -> score recovery (trend
against the most recent earlier score) -> upsert RecoveryScore.
Re-posting a day overwrites that day's metrics and score.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from nudgegate.core.config import settings
from nudgegate.core.timeutil import utcnow
from nudgegate.models.daily_metric import DailyMetric
from nudgegate.models.user_baseline import UserBaseline
from nudgegate.services.baseline import update_baseline
from nudgegate.services.recovery import (
    RecoveryResult,
    latest_recovery,
    save_recovery,
    score_recovery,
)

logger = logging.getLogger(__name__)

METRIC_FIELDS = (
    "hrv_avg",
    "rhr_avg",
    "sleep_hours",
    "sleep_efficiency",
    "deep_pct",
    "rem_pct",
    "respiratory_rate",
    "temperature_deviation",
    "steps",
    "active_energy",
)


@dataclass
class IngestResult:
    metrics: DailyMetric
    baseline: UserBaseline
    recovery: Optional[RecoveryResult]


def _upsert_metrics(db: Session, user_id: str, day: date, values: dict) -> DailyMetric:
    row = (
        db.query(DailyMetric)
        .filter(DailyMetric.user_id == user_id, DailyMetric.day == day)
        .first()
    )
    if row is None:
        row = DailyMetric(user_id=user_id, day=day)
        db.add(row)
    else:
        row.updated_at = utcnow()
    for name in METRIC_FIELDS:
        setattr(row, name, values.get(name))
    return row


def ingest_daily_metrics(db: Session, user_id: str, day: date, values: dict) -> IngestResult:
    metrics = _upsert_metrics(db, user_id, day, values)
    baseline = update_baseline(db, user_id, metrics)

    previous = latest_recovery(db, user_id, before=day)
    result = score_recovery(
        metrics,
        baseline,
        previous_score=previous.score if previous else None,
        min_baseline_days=settings.MIN_BASELINE_DAYS,
    )
    if result is not None:
        save_recovery(db, user_id, day, result)
        logger.info(
            "recovery scored user=%s day=%s score=%d zone=%s",
            user_id, day, result.score, result.zone,
        )
    else:
        logger.info(
            "recovery not ready user=%s day=%s samples=%d",
            user_id, day, baseline.sample_count,
        )

    db.commit()
    db.refresh(metrics)
    db.refresh(baseline)
    return IngestResult(metrics=metrics, baseline=baseline, recovery=result)
