"""
Nudge governance router.

POST /nudges/evaluate              - full governance pipeline for one candidate
POST /nudges/{nudge_id}/feedback   - user feedback on a delivered nudge
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from nudgegate.core.auth import get_user_id
from nudgegate.core.timeutil import load_zone
from nudgegate.db.base import get_db
from nudgegate.schemas.common import ErrorResponse
from nudgegate.schemas.nudges import (
    NudgeDecisionResponse,
    NudgeEvaluateRequest,
    NudgeFeedbackRequest,
    NudgeFeedbackResponse,
    ProtocolIn,
)
from nudgegate.services.confidence import ProtocolCandidate
from nudgegate.services.governance import NudgeCandidate, evaluate_nudge, record_feedback

router = APIRouter(prefix="/nudges", tags=["nudges"])


def _candidate(protocol: ProtocolIn) -> ProtocolCandidate:
    return ProtocolCandidate(
        id=protocol.id,
        name=protocol.name,
        category=protocol.category,
        module_id=protocol.module_id,
        benefits=protocol.benefits,
        description=protocol.description,
        evidence_level=protocol.evidence_level,
    )


@router.post(
    "/evaluate",
    response_model=NudgeDecisionResponse,
    summary="Decide whether a candidate nudge is delivered",
    responses={
        200: {"description": "Decision (new, or replayed for a known nudge_id)."},
        401: {"model": ErrorResponse, "description": "Missing X-User-Id."},
        422: {"model": ErrorResponse, "description": "Unknown priority, timezone or bad values."},
    },
)
def evaluate(
    payload: NudgeEvaluateRequest,
    request: Request,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """
    Pipeline: latest recovery -> MVD step -> MVD allowlist -> memories ->
    confidence -> suppression rules -> audit log.

    ### Suppression rules (in order)
    | Rule | Suppresses when | Overridden by |
    |---|---|---|
    | `daily_cap`         | 5 delivered today | CRITICAL |
    | `quiet_hours`       | local hour inside quiet hours | - |
    | `cooldown`          | < 2h since last delivery | CRITICAL |
    | `fatigue_detection` | 3 dismissals today | - |
    | `meeting_awareness` | meetings >= 2h, STANDARD only | CRITICAL, ADAPTIVE |
    | `low_recovery`      | recovery < 30 outside 05:00-10:00 (morning anchors exempt) | - |
    | `streak_respect`    | streak >= 7, about half of days, stable per day | - |
    | `low_confidence`    | confidence < 0.4 | - |
    | `mvd_active`        | MVD on and protocol not approved | - |

    **Idempotent**: evaluating a `nudge_id` that already has a decision
    returns the stored decision with `replayed: true`.
    """
    if payload.device_timezone:
        load_zone(payload.device_timezone)
    candidate = NudgeCandidate(
        nudge_id=payload.nudge_id,
        protocol=_candidate(payload.protocol),
        priority=payload.priority,
        is_morning_anchor=payload.is_morning_anchor,
        device_timezone=payload.device_timezone,
        meeting_hours_today=payload.meeting_hours_today,
        batch=[_candidate(p) for p in payload.batch],
    )
    complete = getattr(request.app.state, "text_completion", None)
    return evaluate_nudge(db, user_id, candidate, complete=complete, now=payload.at)


@router.post(
    "/{nudge_id}/feedback",
    response_model=NudgeFeedbackResponse,
    summary="Record feedback on a nudge",
    responses={
        404: {"model": ErrorResponse, "description": "No decision recorded for this nudge_id."},
        422: {"model": ErrorResponse, "description": "Unknown feedback or rating outside 1-5."},
    },
)
def feedback(
    nudge_id: str,
    payload: NudgeFeedbackRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """
    Stores the feedback on the audit row and adds a `nudge_feedback` memory
    (completed 0.6, dismissed 0.5, snoozed 0.4 starting confidence) that the
    confidence scorer reads on later evaluations of the same protocol.
    """
    row = record_feedback(db, user_id, nudge_id, payload.feedback, payload.rating)
    return NudgeFeedbackResponse(
        nudge_id=row.nudge_id,
        feedback=row.feedback,
        rating=row.rating,
        feedback_at=row.feedback_at.isoformat(),
    )
