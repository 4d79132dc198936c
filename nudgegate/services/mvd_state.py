"""
MVDStateManager: persists the MVD state machine.

States: inactive | active(type, trigger).

  activate    inactive -> active; appends an open history row.
              Already active -> no-op (state and history unchanged).
  deactivate  active -> inactive; closes the open history row with
              duration_hours (one decimal).
  check       active: exit when recovery > 50.
              inactive: run detection and activate on a trigger.

Transitions and check_mvd flush; the calling root function commits.
activate_manually, deactivate_manually and run_check are root functions
for the HTTP layer and commit themselves.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from nudgegate.core.errors import MVDAlreadyActiveError, MVDNotActiveError
from nudgegate.core.timeutil import as_utc, load_zone, local_today, utcnow
from nudgegate.models.mvd_history import MVDHistory
from nudgegate.models.user_state import UserState
from nudgegate.services.mvd_detector import (
    RECOVERY_EXIT_THRESHOLD,
    MVDDetectionContext,
    MVDDetectionResult,
    detect_mvd,
    should_exit_mvd,
)
from nudgegate.services.mvd_protocols import MVD_TYPE_DESCRIPTIONS, mvd_protocol_count
from nudgegate.services.protocol_logs import completion_history

logger = logging.getLogger(__name__)


class MVDAction:
    ACTIVATED = "activated"
    DEACTIVATED = "deactivated"
    UNCHANGED = "unchanged"


@dataclass
class MVDCheckResult:
    action: str
    state: UserState
    detection: Optional[MVDDetectionResult] = None
    reason: str = ""


# ---------------------------------------------------------------------------
# State row
# ---------------------------------------------------------------------------

def get_state(db: Session, user_id: str) -> Optional[UserState]:
    return db.query(UserState).filter(UserState.user_id == user_id).first()


def get_or_create_state(db: Session, user_id: str) -> UserState:
    state = get_state(db, user_id)
    if state is None:
        state = UserState(
            user_id=user_id,
            mvd_active=False,
            timezone="UTC",
            quiet_hours_start=22,
            quiet_hours_end=6,
        )
        db.add(state)
        db.flush()
    return state


def update_preferences(
    db: Session,
    user_id: str,
    timezone: Optional[str] = None,
    quiet_hours_start: Optional[int] = None,
    quiet_hours_end: Optional[int] = None,
    primary_goal: Optional[str] = None,
) -> UserState:
    state = get_or_create_state(db, user_id)
    if timezone is not None:
        load_zone(timezone)
        state.timezone = timezone
    if quiet_hours_start is not None:
        state.quiet_hours_start = quiet_hours_start
    if quiet_hours_end is not None:
        state.quiet_hours_end = quiet_hours_end
    if primary_goal is not None:
        state.primary_goal = primary_goal
    state.updated_at = utcnow()
    db.commit()
    db.refresh(state)
    return state


def write_dashboard(state: UserState, payload: dict) -> None:
    state.dashboard = json.dumps(payload, default=str)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def activate_mvd(
    db: Session,
    state: UserState,
    mvd_type: str,
    trigger: str,
    exit_condition: str,
    now: Optional[datetime] = None,
) -> bool:
    """Returns False (and changes nothing) when already active."""
    if state.mvd_active:
        return False
    now = now or utcnow()
    state.mvd_active = True
    state.mvd_type = mvd_type
    state.mvd_trigger = trigger
    state.mvd_activated_at = now
    state.mvd_exit_condition = exit_condition
    state.mvd_last_checked_at = now
    state.updated_at = now
    db.add(MVDHistory(
        user_id=state.user_id,
        mvd_type=mvd_type,
        trigger=trigger,
        activated_at=now,
    ))
    db.flush()
    logger.info("mvd activated user=%s type=%s trigger=%s", state.user_id, mvd_type, trigger)
    return True


def deactivate_mvd(
    db: Session,
    state: UserState,
    reason: str,
    now: Optional[datetime] = None,
) -> bool:
    """Returns False (and changes nothing) when not active."""
    if not state.mvd_active:
        return False
    now = now or utcnow()
    open_row = (
        db.query(MVDHistory)
        .filter(MVDHistory.user_id == state.user_id, MVDHistory.deactivated_at.is_(None))
        .order_by(MVDHistory.activated_at.desc(), MVDHistory.id.desc())
        .first()
    )
    if open_row is not None:
        started = as_utc(open_row.activated_at)
        open_row.deactivated_at = now
        open_row.duration_hours = round((now - started).total_seconds() / 3600, 1)
        open_row.deactivation_reason = reason

    state.mvd_active = False
    state.mvd_type = None
    state.mvd_trigger = None
    state.mvd_activated_at = None
    state.mvd_exit_condition = None
    state.mvd_last_checked_at = now
    state.mvd_last_deactivation_reason = reason
    state.updated_at = now
    db.flush()
    logger.info("mvd deactivated user=%s reason=%s", state.user_id, reason)
    return True


def check_mvd(
    db: Session,
    user_id: str,
    recovery_score: Optional[int],
    device_timezone: Optional[str] = None,
    meeting_hours_today: Optional[float] = None,
    now: Optional[datetime] = None,
) -> MVDCheckResult:
    """Run one step of the state machine. Flushes, does not commit."""
    now = now or utcnow()
    state = get_or_create_state(db, user_id)

    if state.mvd_active:
        state.mvd_last_checked_at = now
        if should_exit_mvd(recovery_score):
            reason = (
                f"Recovery improved to {recovery_score}% "
                f"(threshold: >{RECOVERY_EXIT_THRESHOLD}%)"
            )
            deactivate_mvd(db, state, reason, now)
            return MVDCheckResult(MVDAction.DEACTIVATED, state, reason=reason)
        db.flush()
        return MVDCheckResult(MVDAction.UNCHANGED, state, reason="MVD already active")

    detection = detect_mvd(MVDDetectionContext(
        recovery_score=recovery_score,
        home_timezone=state.timezone,
        device_timezone=device_timezone,
        meeting_hours_today=meeting_hours_today,
        completion_history=completion_history(db, user_id, local_today(state.timezone, now)),
        now=now,
    ))
    state.mvd_last_checked_at = now
    if detection.should_activate:
        activate_mvd(db, state, detection.mvd_type, detection.trigger, detection.exit_condition, now)
        return MVDCheckResult(MVDAction.ACTIVATED, state, detection, detection.reason)
    db.flush()
    return MVDCheckResult(MVDAction.UNCHANGED, state, detection, detection.reason)


def list_history(
    db: Session, user_id: str, limit: int = 20, offset: int = 0,
) -> tuple[int, list[MVDHistory]]:
    q = db.query(MVDHistory).filter(MVDHistory.user_id == user_id)
    total = q.count()
    rows = q.order_by(MVDHistory.activated_at.desc(), MVDHistory.id.desc()).offset(offset).limit(limit).all()
    return total, rows


def status_summary(state: Optional[UserState]) -> str:
    if state is None or not state.mvd_active:
        return "MVD not active - full protocol access available"
    description = MVD_TYPE_DESCRIPTIONS.get(state.mvd_type, "")
    return (
        f"MVD active ({state.mvd_type}, {mvd_protocol_count(state.mvd_type)} protocols): "
        f"{description}. Exit condition: {state.mvd_exit_condition}"
    )


# ---------------------------------------------------------------------------
# Root functions (commit)
# ---------------------------------------------------------------------------

def activate_manually(db: Session, user_id: str, now: Optional[datetime] = None) -> UserState:
    """'Tough Day' button. Raises MVDAlreadyActiveError when already active."""
    now = now or utcnow()
    state = get_or_create_state(db, user_id)
    if state.mvd_active:
        raise MVDAlreadyActiveError(state.mvd_type, state.mvd_trigger)
    detection = detect_mvd(MVDDetectionContext(is_manual_activation=True, now=now))
    activate_mvd(db, state, detection.mvd_type, detection.trigger, detection.exit_condition, now)
    db.commit()
    db.refresh(state)
    return state


def deactivate_manually(
    db: Session, user_id: str, reason: str, now: Optional[datetime] = None,
) -> UserState:
    state = get_or_create_state(db, user_id)
    if not deactivate_mvd(db, state, reason, now):
        raise MVDNotActiveError()
    db.commit()
    db.refresh(state)
    return state


def run_check(
    db: Session,
    user_id: str,
    recovery_score: Optional[int],
    device_timezone: Optional[str] = None,
    meeting_hours_today: Optional[float] = None,
    now: Optional[datetime] = None,
) -> MVDCheckResult:
    if device_timezone:
        load_zone(device_timezone)
    result = check_mvd(db, user_id, recovery_score, device_timezone, meeting_hours_today, now)
    db.commit()
    db.refresh(result.state)
    return result
