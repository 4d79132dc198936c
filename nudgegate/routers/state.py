"""
User state router.

GET /state/preferences   - home timezone, quiet hours, primary goal
PUT /state/preferences   - partial update of the same
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from nudgegate.core.auth import get_user_id
from nudgegate.db.base import get_db
from nudgegate.models.user_state import UserState
from nudgegate.schemas.common import ErrorResponse
from nudgegate.schemas.state import PreferencesResponse, PreferencesUpdateRequest
from nudgegate.services.mvd_state import get_state, update_preferences

router = APIRouter(prefix="/state", tags=["state"])


def _preferences_to_response(state: UserState | None) -> PreferencesResponse:
    if state is None:
        return PreferencesResponse(timezone="UTC", quiet_hours_start=22, quiet_hours_end=6)
    return PreferencesResponse(
        timezone=state.timezone,
        quiet_hours_start=state.quiet_hours_start,
        quiet_hours_end=state.quiet_hours_end,
        primary_goal=state.primary_goal,
    )


@router.get(
    "/preferences",
    response_model=PreferencesResponse,
    summary="Delivery preferences",
)
def read_preferences(
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """Users who never saved preferences get UTC with quiet hours 22:00-06:00."""
    return _preferences_to_response(get_state(db, user_id))


@router.put(
    "/preferences",
    response_model=PreferencesResponse,
    summary="Update delivery preferences",
    responses={
        422: {
            "model": ErrorResponse,
            "description": "Unknown IANA timezone, quiet hour outside 0-23 or unknown goal.",
        },
    },
)
def put_preferences(
    payload: PreferencesUpdateRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """
    Only the fields present in the body change. Quiet hours may wrap past
    midnight (`start > end`); `start == end` disables them.
    """
    state = update_preferences(
        db,
        user_id,
        timezone=payload.timezone,
        quiet_hours_start=payload.quiet_hours_start,
        quiet_hours_end=payload.quiet_hours_end,
        primary_goal=payload.primary_goal,
    )
    return _preferences_to_response(state)
