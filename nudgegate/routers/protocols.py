"""
Protocol log router.

POST /protocols/logs   - record that a protocol was completed or skipped
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from nudgegate.core.auth import get_user_id
from nudgegate.db.base import get_db
from nudgegate.schemas.common import ErrorResponse
from nudgegate.schemas.protocols import ProtocolLogRequest, ProtocolLogResponse
from nudgegate.services.protocol_logs import current_streak, record_protocol_log

router = APIRouter(prefix="/protocols", tags=["protocols"])


@router.post(
    "/logs",
    response_model=ProtocolLogResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a protocol completion or skip",
    responses={
        201: {"description": "Log stored (re-posting the same protocol and day overwrites it)."},
        422: {"model": ErrorResponse, "description": "Validation error."},
    },
)
def create_protocol_log(
    payload: ProtocolLogRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """
    Logs feed the consistency-drop MVD trigger (daily completion rate) and the
    streak used by the streak-respect suppression rule.
    """
    row = record_protocol_log(db, user_id, payload.protocol_id, payload.day, payload.status)
    return ProtocolLogResponse(
        id=row.id,
        protocol_id=row.protocol_id,
        day=row.day,
        status=row.status,
        current_streak=current_streak(db, user_id, payload.day),
    )
