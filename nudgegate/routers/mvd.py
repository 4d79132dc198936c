"""
Minimum Viable Day router.

GET  /mvd/status       - current MVD state and approved protocols
POST /mvd/activate     - manual "Tough Day" activation
POST /mvd/deactivate   - manual exit
POST /mvd/check        - run one detection/exit step against the latest recovery
GET  /mvd/history      - activation history (paginated, newest first)
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from nudgegate.core.auth import get_user_id
from nudgegate.core.timeutil import local_today, utcnow
from nudgegate.db.base import get_db
from nudgegate.models.mvd_history import MVDHistory
from nudgegate.models.user_state import UserState
from nudgegate.schemas.common import ErrorResponse
from nudgegate.schemas.mvd import (
    MVDCheckRequest,
    MVDCheckResponse,
    MVDDeactivateRequest,
    MVDHistoryListResponse,
    MVDHistoryResponse,
    MVDStatusResponse,
)
from nudgegate.services.mvd_protocols import approved_protocol_ids
from nudgegate.services.mvd_state import (
    activate_manually,
    deactivate_manually,
    get_or_create_state,
    get_state,
    list_history,
    run_check,
    status_summary,
)
from nudgegate.services.recovery import get_recovery

router = APIRouter(prefix="/mvd", tags=["mvd"])


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------

def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _status_to_response(state: Optional[UserState]) -> MVDStatusResponse:
    active = bool(state and state.mvd_active)
    return MVDStatusResponse(
        active=active,
        mvd_type=state.mvd_type if active else None,
        trigger=state.mvd_trigger if active else None,
        activated_at=_iso(state.mvd_activated_at) if active else None,
        exit_condition=state.mvd_exit_condition if active else None,
        last_checked_at=_iso(state.mvd_last_checked_at) if state else None,
        approved_protocols=list(approved_protocol_ids(state.mvd_type)) if active else [],
        summary=status_summary(state),
    )


def _history_to_response(row: MVDHistory) -> MVDHistoryResponse:
    return MVDHistoryResponse(
        id=row.id,
        mvd_type=row.mvd_type,
        trigger=row.trigger,
        activated_at=row.activated_at.isoformat(),
        deactivated_at=_iso(row.deactivated_at),
        duration_hours=row.duration_hours,
        deactivation_reason=row.deactivation_reason,
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/status", response_model=MVDStatusResponse, summary="Current MVD state")
def read_status(
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return _status_to_response(get_state(db, user_id))


@router.post(
    "/activate",
    response_model=MVDStatusResponse,
    summary='Manually activate MVD ("Tough Day")',
    responses={
        409: {"model": ErrorResponse, "description": "MVD is already active."},
    },
)
def activate(
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """
    Enters `full` MVD with trigger `manual_activation`. The mode clears on
    the next check that sees recovery above 50, or via `/mvd/deactivate`.
    """
    return _status_to_response(activate_manually(db, user_id))


@router.post(
    "/deactivate",
    response_model=MVDStatusResponse,
    summary="Manually exit MVD",
    responses={
        409: {"model": ErrorResponse, "description": "MVD is not active."},
    },
)
def deactivate(
    payload: Optional[MVDDeactivateRequest] = None,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    reason = (payload or MVDDeactivateRequest()).reason
    return _status_to_response(deactivate_manually(db, user_id, reason))


@router.post(
    "/check",
    response_model=MVDCheckResponse,
    summary="Run one MVD detection / exit step",
    responses={
        422: {"model": ErrorResponse, "description": "Unknown device timezone."},
    },
)
def check(
    payload: Optional[MVDCheckRequest] = None,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """
    Uses the recovery score stored for the user's local today. An older
    score is treated as no reading, so it can neither activate nor clear MVD.

    - **Active**: recovery > 50 deactivates; anything else leaves the state alone.
    - **Inactive**: triggers are tried in order (travel, low recovery,
      heavy calendar, consistency drop); the first match activates.
    """
    payload = payload or MVDCheckRequest()
    now = utcnow()
    today = local_today(get_or_create_state(db, user_id).timezone, now)
    recovery = get_recovery(db, user_id, today)
    recovery_score = recovery.score if recovery else None

    result = run_check(
        db,
        user_id,
        recovery_score,
        device_timezone=payload.device_timezone,
        meeting_hours_today=payload.meeting_hours_today,
        now=now,
    )
    return MVDCheckResponse(
        action=result.action,
        reason=result.reason,
        recovery_score=recovery_score,
        status=_status_to_response(result.state),
    )


@router.get(
    "/history",
    response_model=MVDHistoryListResponse,
    summary="MVD activation history (newest first)",
)
def read_history(
    limit: int = Query(default=20, ge=1, le=100, description="Page size."),
    offset: int = Query(default=0, ge=0, description="Skip N items."),
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """Open activations have `deactivated_at` and `duration_hours` null."""
    total, rows = list_history(db, user_id, limit=limit, offset=offset)
    return MVDHistoryListResponse(
        total=total,
        items=[_history_to_response(r) for r in rows],
    )
