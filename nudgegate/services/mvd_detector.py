"""
MVDDetector: decides whether a user should enter Minimum Viable Day mode.

Triggers, first match wins
--------------------------
  1. manual activation                       -> full,        manual_activation
  2. |home offset - device offset| >= 2h     -> travel,      travel_detected
  3. recovery < 35                           -> full,        low_recovery
  4. meeting hours today >= 4 (if known)     -> full,        heavy_calendar
  5. completion < 50% on each of last 3 days -> semi_active, consistency_drop

Exit: while active, recovery > 50 clears the state whatever the trigger.
No recovery reading keeps the state as is.

Pure functions only; persistence lives in mvd_state.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from nudgegate.core.timeutil import utc_offset_hours, utcnow
from nudgegate.services.mvd_protocols import MVDType


LOW_RECOVERY_THRESHOLD = 35
RECOVERY_EXIT_THRESHOLD = 50
TRAVEL_TIMEZONE_THRESHOLD_HOURS = 2
HEAVY_CALENDAR_HOURS = 4
CONSISTENCY_THRESHOLD = 50
CONSISTENCY_DAYS = 3

_RECOVERY_EXIT_CONDITION = f"Recovery >{RECOVERY_EXIT_THRESHOLD}%"


class MVDTrigger:
    MANUAL = "manual_activation"
    TRAVEL = "travel_detected"
    LOW_RECOVERY = "low_recovery"
    HEAVY_CALENDAR = "heavy_calendar"
    CONSISTENCY_DROP = "consistency_drop"


@dataclass
class MVDDetectionContext:
    recovery_score: Optional[int] = None
    home_timezone: Optional[str] = None
    device_timezone: Optional[str] = None
    meeting_hours_today: Optional[float] = None
    # Newest first; None = no protocols scheduled that day.
    completion_history: Sequence[Optional[float]] = field(default_factory=list)
    is_manual_activation: bool = False
    now: Optional[datetime] = None


@dataclass
class MVDDetectionResult:
    should_activate: bool
    trigger: Optional[str]
    mvd_type: Optional[str]
    exit_condition: Optional[str]
    reason: str


def _no_trigger(reason: str) -> MVDDetectionResult:
    return MVDDetectionResult(False, None, None, None, reason)


def timezone_offset_hours(home: Optional[str], device: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Absolute UTC-offset difference in hours, or None if either is unknown."""
    if not home or not device:
        return None
    at = now or utcnow()
    return abs(utc_offset_hours(home, at) - utc_offset_hours(device, at))


def _check_travel(ctx: MVDDetectionContext) -> Optional[MVDDetectionResult]:
    offset = timezone_offset_hours(ctx.home_timezone, ctx.device_timezone, ctx.now)
    if offset is None or offset < TRAVEL_TIMEZONE_THRESHOLD_HOURS:
        return None
    return MVDDetectionResult(
        True, MVDTrigger.TRAVEL, MVDType.TRAVEL,
        "Return to home timezone or 3 days elapsed",
        f"Timezone shift detected: {offset:g}h offset (threshold: {TRAVEL_TIMEZONE_THRESHOLD_HOURS}h)",
    )


def _check_low_recovery(ctx: MVDDetectionContext) -> Optional[MVDDetectionResult]:
    if ctx.recovery_score is None or ctx.recovery_score >= LOW_RECOVERY_THRESHOLD:
        return None
    return MVDDetectionResult(
        True, MVDTrigger.LOW_RECOVERY, MVDType.FULL, _RECOVERY_EXIT_CONDITION,
        f"Low recovery detected: {ctx.recovery_score}% (threshold: {LOW_RECOVERY_THRESHOLD}%)",
    )


def _check_heavy_calendar(ctx: MVDDetectionContext) -> Optional[MVDDetectionResult]:
    if ctx.meeting_hours_today is None or ctx.meeting_hours_today < HEAVY_CALENDAR_HOURS:
        return None
    return MVDDetectionResult(
        True, MVDTrigger.HEAVY_CALENDAR, MVDType.FULL, _RECOVERY_EXIT_CONDITION,
        f"Heavy calendar: {ctx.meeting_hours_today:g}h of meetings (threshold: {HEAVY_CALENDAR_HOURS}h)",
    )


def _check_consistency(ctx: MVDDetectionContext) -> Optional[MVDDetectionResult]:
    recent = list(ctx.completion_history[:CONSISTENCY_DAYS])
    if len(recent) < CONSISTENCY_DAYS or any(rate is None for rate in recent):
        return None
    if not all(rate < CONSISTENCY_THRESHOLD for rate in recent):
        return None
    average = sum(recent) / CONSISTENCY_DAYS
    return MVDDetectionResult(
        True, MVDTrigger.CONSISTENCY_DROP, MVDType.SEMI_ACTIVE,
        f"Complete >{CONSISTENCY_THRESHOLD}% of protocols for 2 consecutive days",
        f"Consistency drop: avg {round(average)}% over {CONSISTENCY_DAYS} days "
        f"(threshold: {CONSISTENCY_THRESHOLD}%)",
    )


def detect_mvd(ctx: MVDDetectionContext) -> MVDDetectionResult:
    if ctx.is_manual_activation:
        return MVDDetectionResult(
            True, MVDTrigger.MANUAL, MVDType.FULL, _RECOVERY_EXIT_CONDITION,
            'User activated "Tough Day" mode',
        )
    for check in (_check_travel, _check_low_recovery, _check_heavy_calendar, _check_consistency):
        result = check(ctx)
        if result is not None:
            return result
    return _no_trigger("No MVD triggers detected")


def should_exit_mvd(recovery_score: Optional[int]) -> bool:
    return recovery_score is not None and recovery_score > RECOVERY_EXIT_THRESHOLD
