"""
Recovery router.

GET /recovery/{day}   - stored recovery result for one day
"""
from __future__ import annotations

import json
from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from nudgegate.core.auth import get_user_id
from nudgegate.core.errors import RecoveryNotFoundError
from nudgegate.db.base import get_db
from nudgegate.models.daily_metric import DailyMetric
from nudgegate.models.recovery_score import RecoveryScore
from nudgegate.schemas.common import ErrorResponse
from nudgegate.schemas.recovery import RecoveryResponse
from nudgegate.services.recovery import RecoveryResult, get_recovery

router = APIRouter(prefix="/recovery", tags=["recovery"])


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------

def _load(raw: Optional[str], default: Any) -> Any:
    if not raw:
        return default
    return json.loads(raw)


def recovery_row_to_response(
    row: RecoveryScore, temperature_deviation: Optional[float] = None,
) -> RecoveryResponse:
    return RecoveryResponse(
        day=str(row.day),
        score=row.score,
        zone=row.zone,
        confidence=row.confidence,
        components=_load(row.components, {}),
        temperature_penalty={
            "deviation": temperature_deviation,
            "penalty": int(row.temperature_penalty or 0),
        },
        edge_cases=_load(row.edge_cases, {}),
        reasoning=row.reasoning,
        recommendations=_load(row.recommendations, []),
        data_completeness=row.data_completeness,
        missing_inputs=_load(row.missing_inputs, []),
    )


def recovery_result_to_response(day: date, result: RecoveryResult) -> RecoveryResponse:
    return RecoveryResponse(day=str(day), **result.to_dict())


# ---------------------------------------------------------------------------
# GET /recovery/{day}
# ---------------------------------------------------------------------------

@router.get(
    "/{day}",
    response_model=RecoveryResponse,
    summary="Stored recovery score for one day",
    responses={
        200: {"description": "Recovery score found."},
        404: {"model": ErrorResponse, "description": "No score stored for that day."},
    },
)
def read_recovery(
    day: date,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """
    Scores are produced by `POST /metrics/daily`; nothing is computed here.
    A day posted while the baseline was still building has no score.
    """
    row = get_recovery(db, user_id, day)
    if row is None:
        raise RecoveryNotFoundError(str(day))
    metrics = (
        db.query(DailyMetric)
        .filter(DailyMetric.user_id == user_id, DailyMetric.day == day)
        .first()
    )
    return recovery_row_to_response(row, metrics.temperature_deviation if metrics else None)
