"""
SuppressionEngine: the final deliver / suppress gate for one nudge.

Rules are walked in a fixed order. When a rule says "suppress":
  - if the nudge's priority is in the rule's override set, the override
    is recorded and the walk continues;
  - otherwise the walk stops and the nudge is suppressed by that rule.

  #  id                 suppresses when                                overridable by
  1  daily_cap          delivered today >= 5                           CRITICAL
  2  quiet_hours        local hour inside quiet window (wraps 00:00)   -
  3  cooldown           < 2h since last delivery                       CRITICAL
  4  fatigue_detection  dismissals today >= 3                          -
  5  meeting_awareness  meeting hours >= 2 and priority STANDARD       CRITICAL, ADAPTIVE
  6  low_recovery       recovery < 30, not morning anchor, not 05-10   -
  7  streak_respect     streak >= 7 and date hash is even              -
  8  low_confidence     confidence < 0.4                               -
  9  mvd_active         MVD on and nudge not on the allowlist          -

The engine is total: a rule that raises counts as a suppression by that
rule, never as an exception to the caller.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from nudgegate.core.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)


DAILY_CAP = 5
DEFAULT_QUIET_START = 22
DEFAULT_QUIET_END = 6
COOLDOWN = timedelta(hours=2)
FATIGUE_THRESHOLD = 3
MEETING_HOURS_THRESHOLD = 2
LOW_RECOVERY_THRESHOLD = 30
MORNING_HOURS_START = 5
MORNING_HOURS_END = 10
STREAK_THRESHOLD = 7
LOW_CONFIDENCE_THRESHOLD = 0.4


class NudgePriority:
    CRITICAL = "CRITICAL"
    ADAPTIVE = "ADAPTIVE"
    STANDARD = "STANDARD"

    ALL = ("CRITICAL", "ADAPTIVE", "STANDARD")


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SuppressionContext:
    nudge_priority: str
    confidence_score: float
    user_local_hour: int
    nudges_delivered_today: int = 0
    dismissals_today: int = 0
    last_nudge_delivered_at: Optional[datetime] = None
    quiet_hours_start: int = DEFAULT_QUIET_START
    quiet_hours_end: int = DEFAULT_QUIET_END
    meeting_hours_today: float = 0.0
    current_streak: int = 0
    # No reading means "healthy" here; the low_recovery rule must not fire on missing data.
    recovery_score: int = 100
    is_morning_anchor: bool = False
    mvd_active: bool = False
    is_mvd_approved_nudge: bool = False
    now: Optional[datetime] = None


@dataclass(frozen=True)
class SuppressionRule:
    id: str
    name: str
    check: Callable[[SuppressionContext], Optional[str]]
    override_by: frozenset = frozenset()

    @property
    def can_be_overridden(self) -> bool:
        return bool(self.override_by)


@dataclass
class SuppressionResult:
    should_deliver: bool
    rules_checked: list[str]
    suppressed_by: Optional[str] = None
    reason: Optional[str] = None
    was_overridden: bool = False
    overridden_rule: Optional[str] = None
    overridden_rules: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Rule checks: return a reason string to suppress, None to pass
# ---------------------------------------------------------------------------

def simple_hash(text: str) -> int:
    """31-multiplier string hash folded to signed 32 bits, then made positive."""
    h = 0
    for ch in text:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def _daily_cap(ctx: SuppressionContext) -> Optional[str]:
    if ctx.nudges_delivered_today >= DAILY_CAP:
        return f"Daily cap ({DAILY_CAP}) reached"
    return None


def in_quiet_hours(hour: int, start: int, end: int) -> bool:
    if start > end:
        return hour >= start or hour < end
    return start <= hour < end


def _quiet_hours(ctx: SuppressionContext) -> Optional[str]:
    if in_quiet_hours(ctx.user_local_hour, ctx.quiet_hours_start, ctx.quiet_hours_end):
        return f"Quiet hours ({ctx.quiet_hours_start}:00-{ctx.quiet_hours_end}:00)"
    return None


def _cooldown(ctx: SuppressionContext) -> Optional[str]:
    if ctx.last_nudge_delivered_at is None:
        return None
    elapsed = (ctx.now or utcnow()) - as_utc(ctx.last_nudge_delivered_at)
    if elapsed < COOLDOWN:
        minutes = math.ceil((COOLDOWN - elapsed).total_seconds() / 60)
        return f"2-hour cooldown not elapsed ({minutes} min remaining)"
    return None


def _fatigue(ctx: SuppressionContext) -> Optional[str]:
    if ctx.dismissals_today >= FATIGUE_THRESHOLD:
        return f"{ctx.dismissals_today}+ dismissals today - pausing until tomorrow"
    return None


def _meeting_awareness(ctx: SuppressionContext) -> Optional[str]:
    if (
        ctx.meeting_hours_today >= MEETING_HOURS_THRESHOLD
        and ctx.nudge_priority == NudgePriority.STANDARD
    ):
        return f"{ctx.meeting_hours_today:g}+ meeting hours - suppressing STANDARD nudge"
    return None


def _low_recovery(ctx: SuppressionContext) -> Optional[str]:
    if ctx.recovery_score >= LOW_RECOVERY_THRESHOLD or ctx.is_morning_anchor:
        return None
    if MORNING_HOURS_START <= ctx.user_local_hour < MORNING_HOURS_END:
        return None
    return (
        f"Recovery {ctx.recovery_score}% (<{LOW_RECOVERY_THRESHOLD}%) - morning-only mode"
    )


def _streak_respect(ctx: SuppressionContext) -> Optional[str]:
    if ctx.current_streak < STREAK_THRESHOLD:
        return None
    today = (ctx.now or utcnow()).date().isoformat()
    if simple_hash(f"{today}-{ctx.current_streak}") % 2 == 0:
        return f"{ctx.current_streak}-day streak - reducing frequency (earned autonomy)"
    return None


def _low_confidence(ctx: SuppressionContext) -> Optional[str]:
    if ctx.confidence_score < LOW_CONFIDENCE_THRESHOLD:
        return (
            f"Confidence {math.floor(ctx.confidence_score * 100 + 0.5):d}% "
            f"(<{LOW_CONFIDENCE_THRESHOLD * 100:.0f}%) - below threshold"
        )
    return None


def _mvd_active(ctx: SuppressionContext) -> Optional[str]:
    if ctx.mvd_active and not ctx.is_mvd_approved_nudge:
        return "MVD mode active - only essential nudges allowed"
    return None


SUPPRESSION_RULES: tuple[SuppressionRule, ...] = (
    SuppressionRule("daily_cap", "Daily Cap", _daily_cap,
                    frozenset({NudgePriority.CRITICAL})),
    SuppressionRule("quiet_hours", "Quiet Hours", _quiet_hours),
    SuppressionRule("cooldown", "Cooldown Period", _cooldown,
                    frozenset({NudgePriority.CRITICAL})),
    SuppressionRule("fatigue_detection", "Fatigue Detection", _fatigue),
    SuppressionRule("meeting_awareness", "Meeting Awareness", _meeting_awareness,
                    frozenset({NudgePriority.CRITICAL, NudgePriority.ADAPTIVE})),
    SuppressionRule("low_recovery", "Low Recovery Mode", _low_recovery),
    SuppressionRule("streak_respect", "Streak Respect", _streak_respect),
    SuppressionRule("low_confidence", "Low Confidence Filter", _low_confidence),
    SuppressionRule("mvd_active", "MVD Active", _mvd_active),
)


def get_rule(rule_id: str) -> Optional[SuppressionRule]:
    return next((r for r in SUPPRESSION_RULES if r.id == rule_id), None)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def _result(
    deliver: bool,
    checked: list[str],
    overridden: list[str],
    rule_id: Optional[str] = None,
    reason: Optional[str] = None,
) -> SuppressionResult:
    return SuppressionResult(
        should_deliver=deliver,
        rules_checked=checked,
        suppressed_by=rule_id,
        reason=reason,
        was_overridden=bool(overridden),
        overridden_rule=overridden[-1] if overridden else None,
        overridden_rules=overridden,
    )


def evaluate_suppression(
    ctx: SuppressionContext,
    rules: tuple[SuppressionRule, ...] = SUPPRESSION_RULES,
) -> SuppressionResult:
    checked: list[str] = []
    overridden: list[str] = []

    for rule in rules:
        checked.append(rule.id)
        try:
            reason = rule.check(ctx)
        except Exception:
            # fail closed; a broken rule is never overridable
            logger.exception("suppression rule %s raised", rule.id)
            return _result(False, checked, overridden, rule.id, f"{rule.name} check failed")

        if reason is None:
            continue
        if ctx.nudge_priority in rule.override_by:
            overridden.append(rule.id)
            continue
        return _result(False, checked, overridden, rule.id, reason)

    return _result(True, checked, overridden)
