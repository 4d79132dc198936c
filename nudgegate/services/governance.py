"""
Governance pipeline: one candidate nudge in, one deliver/suppress decision out.

Steps
-----
  1. Replay: a decision already stored for (user_id, nudge_id) is returned
     as-is, nothing is re-evaluated.
  2. Recovery score for the user's local today; older readings are ignored
     and count as "no reading".
  3. MVD state machine step (exit on recovery > 50, else detect).
  4. MVD allowlist check for the candidate.
  5. Memory retrieval -> ConfidenceScorer.
  6. Today's delivery counters, streak and local hour -> SuppressionContext.
  7. SuppressionEngine.
  8. Audit row in nudge_logs, best-effort dashboard mirror, single commit.

Feedback on a delivered nudge updates the audit row and feeds MemoryStore.
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from nudgegate.core.config import settings
from nudgegate.core.errors import NudgeNotFoundError
from nudgegate.core.timeutil import as_utc, local_day_start_utc, local_now, utcnow
from nudgegate.models.nudge_log import NudgeLog
from nudgegate.services.confidence import (
    ConfidenceContext,
    ProtocolCandidate,
    get_time_of_day,
    score_confidence,
)
from nudgegate.services.memory import get_relevant_memories, memory_from_feedback
from nudgegate.services.mvd_protocols import is_protocol_approved_for_mvd
from nudgegate.services.mvd_state import check_mvd, get_or_create_state, write_dashboard
from nudgegate.services.narrative import TextCompletion, explain_decision
from nudgegate.services.protocol_logs import current_streak
from nudgegate.services.recovery import get_recovery
from nudgegate.services.suppression import SuppressionContext, evaluate_suppression

logger = logging.getLogger(__name__)


@dataclass
class NudgeCandidate:
    nudge_id: str
    protocol: ProtocolCandidate
    priority: str
    is_morning_anchor: bool = False
    device_timezone: Optional[str] = None
    meeting_hours_today: Optional[float] = None
    batch: list[ProtocolCandidate] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------

def _delivered_today(db: Session, user_id: str, since: datetime) -> int:
    return (
        db.query(func.count(NudgeLog.id))
        .filter(
            NudgeLog.user_id == user_id,
            NudgeLog.delivered.is_(True),
            NudgeLog.evaluated_at >= since,
        )
        .scalar()
    ) or 0


def _dismissals_today(db: Session, user_id: str, since: datetime) -> int:
    return (
        db.query(func.count(NudgeLog.id))
        .filter(
            NudgeLog.user_id == user_id,
            NudgeLog.delivered.is_(True),
            NudgeLog.feedback == "dismissed",
            NudgeLog.feedback_at >= since,
        )
        .scalar()
    ) or 0


def _last_delivered_at(db: Session, user_id: str) -> Optional[datetime]:
    row = (
        db.query(NudgeLog.evaluated_at)
        .filter(NudgeLog.user_id == user_id, NudgeLog.delivered.is_(True))
        .order_by(NudgeLog.evaluated_at.desc())
        .first()
    )
    return as_utc(row.evaluated_at) if row else None


def get_logged_decision(db: Session, user_id: str, nudge_id: str) -> Optional[NudgeLog]:
    return (
        db.query(NudgeLog)
        .filter(NudgeLog.user_id == user_id, NudgeLog.nudge_id == nudge_id)
        .first()
    )


def _replay(row: NudgeLog) -> dict:
    decision = json.loads(row.decision)
    decision["replayed"] = True
    return decision


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def evaluate_nudge(
    db: Session,
    user_id: str,
    candidate: NudgeCandidate,
    complete: Optional[TextCompletion] = None,
    now: Optional[datetime] = None,
) -> dict:
    existing = get_logged_decision(db, user_id, candidate.nudge_id)
    if existing is not None:
        logger.info("replaying decision user=%s nudge=%s", user_id, candidate.nudge_id)
        return _replay(existing)

    now = as_utc(now) if now else utcnow()
    state_tz = get_or_create_state(db, user_id).timezone
    local = local_now(state_tz, now)
    today = local.date()
    day_start = local_day_start_utc(state_tz, now)

    recovery = get_recovery(db, user_id, today)
    recovery_score = recovery.score if recovery else None

    mvd = check_mvd(
        db,
        user_id,
        recovery_score=recovery_score,
        device_timezone=candidate.device_timezone,
        meeting_hours_today=candidate.meeting_hours_today,
        now=now,
    )
    state = mvd.state
    mvd_approved = is_protocol_approved_for_mvd(
        candidate.protocol.id, state.mvd_type if state.mvd_active else None,
    )

    time_of_day = get_time_of_day(local.hour)
    memories = get_relevant_memories(
        db, user_id,
        protocol_id=candidate.protocol.id,
        time_of_day=time_of_day,
        now=now,
    )
    confidence = score_confidence(
        ConfidenceContext(
            primary_goal=state.primary_goal,
            protocol=candidate.protocol,
            time_of_day=time_of_day,
            recovery_score=recovery_score,
            memories=memories,
            other_protocols=candidate.batch,
        ),
        max_batch=settings.MAX_BATCH_CONFLICT_CHECKS,
    )

    ctx = SuppressionContext(
        nudge_priority=candidate.priority,
        confidence_score=confidence.overall,
        user_local_hour=local.hour,
        nudges_delivered_today=_delivered_today(db, user_id, day_start),
        dismissals_today=_dismissals_today(db, user_id, day_start),
        last_nudge_delivered_at=_last_delivered_at(db, user_id),
        quiet_hours_start=state.quiet_hours_start,
        quiet_hours_end=state.quiet_hours_end,
        meeting_hours_today=candidate.meeting_hours_today or 0.0,
        current_streak=current_streak(db, user_id, today),
        recovery_score=recovery_score if recovery_score is not None else 100,
        is_morning_anchor=candidate.is_morning_anchor,
        mvd_active=state.mvd_active,
        is_mvd_approved_nudge=mvd_approved,
        now=now,
    )
    result = evaluate_suppression(ctx)

    decision = {
        "nudge_id": candidate.nudge_id,
        "protocol_id": candidate.protocol.id,
        "protocol_name": candidate.protocol.name,
        "priority": candidate.priority,
        **asdict(result),
        "confidence": asdict(confidence),
        "recovery_score": recovery_score,
        "recovery_zone": recovery.zone if recovery else None,
        "mvd": {
            "active": state.mvd_active,
            "type": state.mvd_type,
            "trigger": state.mvd_trigger,
            "action": mvd.action,
            "approved": mvd_approved,
        },
        "user_local_hour": local.hour,
        "evaluated_at": now.isoformat(),
        "narrative": None,
        "replayed": False,
    }
    if settings.NARRATIVE_ENABLED:
        decision["narrative"] = explain_decision(
            {
                **decision,
                "confidence_reasoning": confidence.reasoning,
                "mvd_active": state.mvd_active,
                "mvd_type": state.mvd_type,
            },
            complete,
        )

    db.add(NudgeLog(
        user_id=user_id,
        nudge_id=candidate.nudge_id,
        protocol_id=candidate.protocol.id,
        priority=candidate.priority,
        delivered=result.should_deliver,
        suppressed_by=result.suppressed_by,
        reason=result.reason,
        rules_checked=json.dumps(result.rules_checked),
        was_overridden=result.was_overridden,
        confidence=confidence.overall,
        recovery_score=recovery_score,
        mvd_active=state.mvd_active,
        decision=json.dumps(decision),
        evaluated_at=now,
    ))
    try:
        db.flush()
    except IntegrityError:
        # concurrent evaluation of the same nudge won the insert
        db.rollback()
        return _replay(get_logged_decision(db, user_id, candidate.nudge_id))

    _mirror_dashboard(db, state, decision)
    db.commit()

    logger.info(
        "nudge decision user=%s nudge=%s deliver=%s suppressed_by=%s confidence=%.2f",
        user_id, candidate.nudge_id, result.should_deliver, result.suppressed_by,
        confidence.overall,
    )
    return decision


def _mirror_dashboard(db: Session, state, decision: dict) -> None:
    savepoint = db.begin_nested()
    try:
        write_dashboard(state, {
            "last_decision": {
                "nudge_id": decision["nudge_id"],
                "should_deliver": decision["should_deliver"],
                "suppressed_by": decision["suppressed_by"],
                "evaluated_at": decision["evaluated_at"],
            },
            "recovery_score": decision["recovery_score"],
            "mvd": decision["mvd"],
        })
        db.flush()
        savepoint.commit()
    except SQLAlchemyError:
        savepoint.rollback()
        logger.warning("dashboard mirror write failed user=%s", state.user_id, exc_info=True)


# ---------------------------------------------------------------------------
# Feedback
# ---------------------------------------------------------------------------

def record_feedback(
    db: Session,
    user_id: str,
    nudge_id: str,
    feedback: str,
    rating: Optional[int] = None,
    now: Optional[datetime] = None,
) -> NudgeLog:
    row = get_logged_decision(db, user_id, nudge_id)
    if row is None:
        raise NudgeNotFoundError(nudge_id)
    now = now or utcnow()
    row.feedback = feedback
    row.rating = rating
    row.feedback_at = now
    memory_from_feedback(db, user_id, nudge_id, row.protocol_id, feedback, now=now)
    db.commit()
    db.refresh(row)
    logger.info("nudge feedback user=%s nudge=%s feedback=%s", user_id, nudge_id, feedback)
    return row
