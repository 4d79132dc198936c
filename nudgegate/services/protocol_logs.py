"""
Protocol completion log: the source for consistency and streak signals.

A day's completion rate is completed / logged for that day, as a percent.
Days with nothing logged have no rate (None) rather than 0%.
"""
from __future__ import annotations

from datetime import date, timedelta
from typing import Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from nudgegate.core.timeutil import utcnow
from nudgegate.models.protocol_log import ProtocolLog, ProtocolLogStatus

_STREAK_LOOKBACK_DAYS = 365


def record_protocol_log(
    db: Session,
    user_id: str,
    protocol_id: str,
    day: date,
    status: ProtocolLogStatus,
) -> ProtocolLog:
    """Upsert one (user, protocol, day) log row and commit."""
    row = (
        db.query(ProtocolLog)
        .filter(
            ProtocolLog.user_id == user_id,
            ProtocolLog.protocol_id == protocol_id,
            ProtocolLog.day == day,
        )
        .first()
    )
    if row is None:
        row = ProtocolLog(user_id=user_id, protocol_id=protocol_id, day=day, status=status)
        db.add(row)
    else:
        row.status = status
        row.logged_at = utcnow()
    db.commit()
    db.refresh(row)
    return row


def _daily_rates(db: Session, user_id: str, start: date, end: date) -> dict[date, float]:
    completed = func.sum(case((ProtocolLog.status == ProtocolLogStatus.completed, 1), else_=0))
    rows = (
        db.query(ProtocolLog.day, func.count(ProtocolLog.id), completed)
        .filter(
            ProtocolLog.user_id == user_id,
            ProtocolLog.day >= start,
            ProtocolLog.day <= end,
        )
        .group_by(ProtocolLog.day)
        .all()
    )
    return {day: (done or 0) * 100.0 / total for day, total, done in rows if total}


def completion_history(
    db: Session, user_id: str, today: date, days: int = 3,
) -> list[Optional[float]]:
    """Completion percent for the `days` full days before `today`, newest first."""
    start = today - timedelta(days=days)
    rates = _daily_rates(db, user_id, start, today - timedelta(days=1))
    return [rates.get(today - timedelta(days=i)) for i in range(1, days + 1)]


def current_streak(db: Session, user_id: str, today: date) -> int:
    """
    Consecutive days with at least one completed protocol, ending today
    (or yesterday, while today has nothing completed yet).
    """
    start = today - timedelta(days=_STREAK_LOOKBACK_DAYS)
    done_days = {
        row.day
        for row in db.query(ProtocolLog.day)
        .filter(
            ProtocolLog.user_id == user_id,
            ProtocolLog.status == ProtocolLogStatus.completed,
            ProtocolLog.day >= start,
            ProtocolLog.day <= today,
        )
        .distinct()
        .all()
    }
    cursor = today if today in done_days else today - timedelta(days=1)
    streak = 0
    while cursor in done_days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak
