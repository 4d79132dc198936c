"""
RecoveryScorer: today's biometrics + personal baseline -> 0-100 readiness.

Formula
-------
  Recovery = HRV x 0.40 + RHR x 0.25 + SleepQuality x 0.20
           + SleepDuration x 0.10 + RespiratoryRate x 0.05 + TempPenalty

  - HRV is z-scored in log space; RHR and respiratory rate use the inverse
    z-score (lower is better).
  - z -> points: 0 -> 70, +2 -> 100, -2 -> 40, -3 -> 0, linear between,
    clipped to 0..100.
  - Missing components drop out and the remaining weights are rescaled to
    sum to 1, so their relative proportions never change.
  - Temperature only ever subtracts (0, -5, -10, -15).
  - Zone: < 34 red, < 67 yellow, else green.

Scoring refuses to run (returns None) until the baseline has
MIN_BASELINE_DAYS of samples, or when no component has usable input.

Edge cases, recommendations, reasoning and confidence are deterministic
functions of the same inputs.
"""
from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from nudgegate.core.config import settings
from nudgegate.core.timeutil import utcnow
from nudgegate.models.recovery_score import RecoveryScore


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

COMPONENT_WEIGHTS = {
    "hrv": 0.40,
    "rhr": 0.25,
    "sleep_quality": 0.20,
    "sleep_duration": 0.10,
    "respiratory_rate": 0.05,
}

_COMPONENT_LABELS = {
    "hrv": "HRV",
    "rhr": "RHR",
    "sleep_quality": "Sleep Quality",
    "sleep_duration": "Sleep Duration",
    "respiratory_rate": "Respiratory Rate",
}

_NEUTRAL_SCORE = 70

# Sleep quality sub-inputs: weight inside the component, min / optimal pct.
_SLEEP_EFFICIENCY = {"weight": 0.40, "optimal": 90.0}
_SLEEP_DEEP = {"weight": 0.30, "min": 15.0, "optimal": 20.0}
_SLEEP_REM = {"weight": 0.30, "min": 20.0, "optimal": 22.5}

_SLEEP_ON_TARGET_MINUTES = 15
_SLEEP_SHORT_PENALTY_PER_HOUR = 15
_SLEEP_OVER_PENALTY_PER_HOUR = 5
_SLEEP_SCORE_FLOOR = 20

_RR_NORMAL_LOW = 12.0
_RR_NORMAL_HIGH = 16.0

_LUTEAL_FIRST_DAY = 15
_LUTEAL_LAST_DAY = 28
_LUTEAL_TEMP_ALLOWANCE = 0.3

# (upper bound on |deviation|, penalty); anything above the last bound is -15
_TEMP_PENALTY_STEPS = ((0.3, 0), (0.5, -5), (0.75, -10))
_TEMP_PENALTY_MAX = -15

_ALCOHOL_RHR_ELEVATION = 5.0
_ALCOHOL_HRV_REDUCTION = 0.25

_ILLNESS_TEMP_ELEVATION = 0.5
_ILLNESS_RR_ELEVATION = 2.0
_ILLNESS_RHR_ELEVATION = 5.0
_ILLNESS_HRV_REDUCTION = 0.30

_TRAVEL_Z_THRESHOLD = 2.0
_TRAVEL_SLEEP_SHIFT_MINUTES = 120
_TRAVEL_MIN_SIGNALS = 3

_ZONE_RED_BELOW = 34
_ZONE_YELLOW_BELOW = 67

# Result confidence blend (weights sum to 1.0)
_CONFIDENCE_WEIGHTS = {
    "data_completeness": 0.30,
    "sample_size": 0.25,
    "correlation_strength": 0.20,
    "user_engagement": 0.15,
    "context_match": 0.10,
}
_SAMPLE_SIZE_BY_TIER = {"high": 1.0, "medium": 0.7, "low": 0.4}
_DEFAULT_CORRELATION_STRENGTH = 0.7
_DEFAULT_USER_ENGAGEMENT = 0.8
_DEFAULT_CONTEXT_MATCH = 0.8


class Zone:
    RED = "red"
    YELLOW = "yellow"
    GREEN = "green"


class IllnessRisk:
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class ComponentScore:
    raw: Optional[float]
    score: int
    comparison: str
    weight: float
    effective_weight: float = 0.0
    available: bool = True


@dataclass
class TemperaturePenalty:
    deviation: Optional[float]
    penalty: int


@dataclass
class EdgeCases:
    alcohol_detected: bool = False
    illness_risk: str = IllnessRisk.NONE
    travel_detected: bool = False
    menstrual_phase_adjustment: bool = False


@dataclass
class Recommendation:
    type: str
    headline: str
    body: str
    protocols: list[str]
    activate_mvd: bool = False


@dataclass
class RecoveryResult:
    score: int
    zone: str
    components: dict[str, ComponentScore]
    temperature_penalty: TemperaturePenalty
    edge_cases: EdgeCases
    confidence: float
    reasoning: str
    recommendations: list[Recommendation]
    data_completeness: int
    missing_inputs: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------

def _round(value: float) -> int:
    """Round half away from zero (2.5 -> 3), unlike built-in round()."""
    return int(math.floor(value + 0.5)) if value >= 0 else -int(math.floor(-value + 0.5))


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _present(value) -> bool:
    return value is not None and value > 0


def zone_for(score: int) -> str:
    if score < _ZONE_RED_BELOW:
        return Zone.RED
    if score < _ZONE_YELLOW_BELOW:
        return Zone.YELLOW
    return Zone.GREEN


def z_to_score(z: float) -> int:
    if z >= 0:
        points = 70 + (z / 2) * 30
    elif z >= -2:
        points = 40 + ((z + 2) / 2) * 30
    else:
        points = (z + 3) * 40
    return int(_clamp(_round(points), 0, 100))


def inverse_z_to_score(z: float) -> int:
    return z_to_score(-z)


def _signed(value: float, digits: int = 0) -> str:
    return f"{value:+.{digits}f}"


def _hrv_baseline_ms(baseline) -> Optional[float]:
    if baseline.hrv_ln_mean is None:
        return None
    return math.exp(baseline.hrv_ln_mean)


# ---------------------------------------------------------------------------
# Component calculators
# ---------------------------------------------------------------------------

def _missing(key: str, comparison: str = "No data") -> ComponentScore:
    return ComponentScore(
        raw=None, score=0, comparison=comparison,
        weight=COMPONENT_WEIGHTS[key], available=False,
    )


def score_hrv(hrv: Optional[float], baseline) -> ComponentScore:
    weight = COMPONENT_WEIGHTS["hrv"]
    if not _present(hrv) or baseline.hrv_ln_mean is None:
        return _missing("hrv")
    std = baseline.hrv_ln_std_dev or 0.0
    if std <= 0:
        return ComponentScore(hrv, _NEUTRAL_SCORE, "Insufficient baseline variance", weight)
    z = (math.log(hrv) - baseline.hrv_ln_mean) / std
    reference = _hrv_baseline_ms(baseline)
    change = (hrv - reference) / reference * 100
    return ComponentScore(hrv, z_to_score(z), f"{_signed(change)}% vs baseline", weight)


def score_rhr(rhr: Optional[float], baseline) -> ComponentScore:
    weight = COMPONENT_WEIGHTS["rhr"]
    if not _present(rhr) or not _present(baseline.rhr_mean):
        return _missing("rhr")
    std = baseline.rhr_std_dev or 0.0
    if std <= 0:
        return ComponentScore(rhr, _NEUTRAL_SCORE, "Insufficient baseline variance", weight)
    z = (rhr - baseline.rhr_mean) / std
    diff = rhr - baseline.rhr_mean
    return ComponentScore(rhr, inverse_z_to_score(z), f"{_signed(diff)} bpm vs baseline", weight)


def _stage_score(pct: float, minimum: float, optimal: float) -> float:
    if pct >= optimal:
        return 100.0
    if pct >= minimum:
        return 70 + (pct - minimum) / (optimal - minimum) * 30
    return pct / minimum * 70


def score_sleep_quality(
    efficiency: Optional[float],
    deep_pct: Optional[float],
    rem_pct: Optional[float],
) -> ComponentScore:
    """Efficiency / deep / REM blend, renormalized over whichever are present."""
    weighted = 0.0
    total = 0.0
    details = []
    if _present(efficiency):
        weighted += min(100.0, efficiency / _SLEEP_EFFICIENCY["optimal"] * 100) * _SLEEP_EFFICIENCY["weight"]
        total += _SLEEP_EFFICIENCY["weight"]
        details.append(f"Eff: {efficiency:g}%")
    if _present(deep_pct):
        weighted += _stage_score(deep_pct, _SLEEP_DEEP["min"], _SLEEP_DEEP["optimal"]) * _SLEEP_DEEP["weight"]
        total += _SLEEP_DEEP["weight"]
        details.append(f"Deep: {deep_pct:g}%")
    if _present(rem_pct):
        weighted += _stage_score(rem_pct, _SLEEP_REM["min"], _SLEEP_REM["optimal"]) * _SLEEP_REM["weight"]
        total += _SLEEP_REM["weight"]
        details.append(f"REM: {rem_pct:g}%")
    if total == 0:
        return _missing("sleep_quality", "No sleep data")
    return ComponentScore(
        raw=efficiency,
        score=int(_clamp(_round(weighted / total), 0, 100)),
        comparison=", ".join(details),
        weight=COMPONENT_WEIGHTS["sleep_quality"],
    )


def score_sleep_duration(sleep_hours: Optional[float], target_minutes: float) -> ComponentScore:
    if not _present(sleep_hours):
        return _missing("sleep_duration")
    diff_minutes = sleep_hours * 60 - target_minutes
    if abs(diff_minutes) <= _SLEEP_ON_TARGET_MINUTES:
        points = 100.0
        vs_target = "on target"
    elif diff_minutes < 0:
        points = 100 - (-diff_minutes / 60) * _SLEEP_SHORT_PENALTY_PER_HOUR
        vs_target = f"{_round(diff_minutes)} min"
    else:
        points = 100 - (diff_minutes / 60) * _SLEEP_OVER_PENALTY_PER_HOUR
        vs_target = f"+{_round(diff_minutes)} min"
    points = max(_SLEEP_SCORE_FLOOR, points)
    return ComponentScore(
        raw=sleep_hours,
        score=_round(points),
        comparison=f"{sleep_hours:.1f}h of {target_minutes / 60:.1f}h target ({vs_target})",
        weight=COMPONENT_WEIGHTS["sleep_duration"],
    )


def score_respiratory_rate(rr: Optional[float], baseline) -> ComponentScore:
    weight = COMPONENT_WEIGHTS["respiratory_rate"]
    if not _present(rr):
        return _missing("respiratory_rate")
    mean = baseline.respiratory_rate_mean
    std = baseline.respiratory_rate_std_dev or 0.0
    if not _present(mean) or std <= 0:
        # population norms
        if _RR_NORMAL_LOW <= rr <= _RR_NORMAL_HIGH:
            return ComponentScore(rr, 100, "Normal range", weight)
        if rr < _RR_NORMAL_LOW:
            return ComponentScore(rr, 85, "Below normal", weight)
        return ComponentScore(rr, _round(max(40.0, 100 - (rr - _RR_NORMAL_HIGH) * 10)), "Elevated", weight)
    z = (rr - mean) / std
    diff = rr - mean
    comparison = "Normal" if abs(diff) < 0.5 else f"{_signed(diff, 1)} breaths/min"
    return ComponentScore(rr, inverse_z_to_score(z), comparison, weight)


def _in_luteal_phase(baseline) -> bool:
    cycle_day = getattr(baseline, "cycle_day", None)
    return bool(getattr(baseline, "menstrual_cycle_tracking", False)) and (
        cycle_day is not None and _LUTEAL_FIRST_DAY <= cycle_day <= _LUTEAL_LAST_DAY
    )


def temperature_penalty(deviation: Optional[float], baseline) -> TemperaturePenalty:
    if deviation is None:
        return TemperaturePenalty(deviation=None, penalty=0)
    adjusted = deviation
    if _in_luteal_phase(baseline) and deviation > 0:
        adjusted = max(0.0, deviation - _LUTEAL_TEMP_ALLOWANCE)
    magnitude = abs(adjusted)
    penalty = _TEMP_PENALTY_MAX
    for bound, points in _TEMP_PENALTY_STEPS:
        if magnitude <= bound:
            penalty = points
            break
    return TemperaturePenalty(deviation=deviation, penalty=penalty)


def redistribute_weights(components: dict[str, ComponentScore]) -> dict[str, float]:
    """Rescale the weights of available components so they sum to 1."""
    total = sum(COMPONENT_WEIGHTS[k] for k, c in components.items() if c.available)
    if total == 0:
        return {k: 0.0 for k in components}
    return {
        k: (COMPONENT_WEIGHTS[k] / total if c.available else 0.0)
        for k, c in components.items()
    }


# ---------------------------------------------------------------------------
# Edge cases
# ---------------------------------------------------------------------------

def detect_edge_cases(metrics, baseline) -> EdgeCases:
    edge = EdgeCases(menstrual_phase_adjustment=_in_luteal_phase(baseline))

    hrv = metrics.hrv_avg if _present(metrics.hrv_avg) else None
    rhr = metrics.rhr_avg if _present(metrics.rhr_avg) else None
    rr = metrics.respiratory_rate if _present(metrics.respiratory_rate) else None
    temp = metrics.temperature_deviation

    hrv_reference = _hrv_baseline_ms(baseline)
    hrv_reduction = (1 - hrv / hrv_reference) if (hrv and hrv_reference) else None
    rhr_elevation = (rhr - baseline.rhr_mean) if (rhr and _present(baseline.rhr_mean)) else None
    rr_elevation = (
        (rr - baseline.respiratory_rate_mean)
        if (rr and _present(baseline.respiratory_rate_mean)) else None
    )

    if (
        hrv_reduction is not None and rhr_elevation is not None
        and hrv_reduction >= _ALCOHOL_HRV_REDUCTION
        and rhr_elevation >= _ALCOHOL_RHR_ELEVATION
    ):
        edge.alcohol_detected = True

    temp_high = temp is not None and temp >= _ILLNESS_TEMP_ELEVATION
    rr_high = rr_elevation is not None and rr_elevation >= _ILLNESS_RR_ELEVATION
    cardio_strain = (
        (rhr_elevation is not None and rhr_elevation >= _ILLNESS_RHR_ELEVATION)
        or (hrv_reduction is not None and hrv_reduction >= _ILLNESS_HRV_REDUCTION)
    )
    if temp_high and rr_high:
        edge.illness_risk = IllnessRisk.HIGH if cardio_strain else IllnessRisk.MEDIUM
    elif temp_high or rr_high:
        edge.illness_risk = IllnessRisk.LOW

    edge.travel_detected = _travel_signal_count(metrics, baseline) >= _TRAVEL_MIN_SIGNALS
    return edge


def _travel_signal_count(metrics, baseline) -> int:
    count = 0
    if _present(metrics.hrv_avg) and baseline.hrv_ln_mean is not None and (baseline.hrv_ln_std_dev or 0) > 0:
        if abs((math.log(metrics.hrv_avg) - baseline.hrv_ln_mean) / baseline.hrv_ln_std_dev) >= _TRAVEL_Z_THRESHOLD:
            count += 1
    if _present(metrics.rhr_avg) and _present(baseline.rhr_mean) and (baseline.rhr_std_dev or 0) > 0:
        if abs((metrics.rhr_avg - baseline.rhr_mean) / baseline.rhr_std_dev) >= _TRAVEL_Z_THRESHOLD:
            count += 1
    if (
        _present(metrics.respiratory_rate) and _present(baseline.respiratory_rate_mean)
        and (baseline.respiratory_rate_std_dev or 0) > 0
    ):
        z = (metrics.respiratory_rate - baseline.respiratory_rate_mean) / baseline.respiratory_rate_std_dev
        if abs(z) >= _TRAVEL_Z_THRESHOLD:
            count += 1
    if _present(metrics.sleep_hours):
        shift = abs(metrics.sleep_hours * 60 - baseline.sleep_duration_target_minutes)
        if shift >= _TRAVEL_SLEEP_SHIFT_MINUTES:
            count += 1
    return count


# ---------------------------------------------------------------------------
# Recommendations & reasoning
# ---------------------------------------------------------------------------

_ZONE_RECOMMENDATIONS = {
    Zone.GREEN: Recommendation(
        type="training",
        headline="Ready for high intensity",
        body="Your recovery metrics indicate you're well-rested. This is a good day "
             "for challenging workouts or skill practice.",
        protocols=["fitness_template", "hiit"],
    ),
    Zone.YELLOW: Recommendation(
        type="training",
        headline="Moderate activity recommended",
        body="Your recovery is moderate. Consider lighter activity today or focus on "
             "technique work rather than intensity.",
        protocols=["walking", "stretching"],
    ),
    Zone.RED: Recommendation(
        type="rest",
        headline="Prioritize recovery today",
        body="Your metrics suggest you need rest. Focus on sleep, nutrition, and "
             "low-stress activities.",
        protocols=["nsdr", "evening_routine"],
        activate_mvd=True,
    ),
}


def generate_recommendations(zone: str, edge: EdgeCases) -> list[Recommendation]:
    base = _ZONE_RECOMMENDATIONS[zone]
    recommendations = [Recommendation(**asdict(base))]

    if edge.alcohol_detected:
        recommendations.append(Recommendation(
            type="recovery",
            headline="Elevated stress markers detected",
            body="Your biometrics show patterns consistent with recent alcohol "
                 "consumption. Consider extra hydration and rest today.",
            protocols=["hydration", "nsdr"],
        ))
    if edge.illness_risk != IllnessRisk.NONE:
        high = edge.illness_risk == IllnessRisk.HIGH
        recommendations.append(Recommendation(
            type="health",
            headline="Early illness warning" if high else "Monitor your health",
            body=(
                "Multiple biometric indicators suggest you may be fighting off an "
                "illness. Rest is strongly recommended."
                if high else
                "Some markers are slightly elevated. Pay attention to how you feel today."
            ),
            protocols=["rest_mode"],
            activate_mvd=high,
        ))
    if edge.travel_detected:
        recommendations.append(Recommendation(
            type="recovery",
            headline="Travel disruption detected",
            body="Several signals moved away from your baseline at once. Anchor your "
                 "day with morning light and steady hydration.",
            protocols=["morning_light_exposure", "hydration_electrolytes"],
        ))
    return recommendations


def generate_reasoning(
    score: int,
    zone: str,
    components: dict[str, ComponentScore],
    edge: EdgeCases,
    previous_score: Optional[int] = None,
) -> str:
    parts = [f"Recovery Score: {score}/100 ({zone.upper()} zone)."]

    ranked = sorted(
        (k for k, c in components.items() if c.available and c.score > 0),
        key=lambda k: components[k].score * COMPONENT_WEIGHTS[k],
        reverse=True,
    )
    if ranked:
        parts.append("Top contributors: " + ", ".join(_COMPONENT_LABELS[k] for k in ranked[:2]) + ".")

    if previous_score is not None:
        delta = score - previous_score
        if delta > 0:
            parts.append(f"Up {delta} from previous score.")
        elif delta < 0:
            parts.append(f"Down {-delta} from previous score.")
        else:
            parts.append("Unchanged from previous score.")

    if edge.alcohol_detected:
        parts.append("Alcohol consumption pattern detected.")
    if edge.illness_risk != IllnessRisk.NONE:
        parts.append(f"Illness risk: {edge.illness_risk}.")
    if edge.travel_detected:
        parts.append("Travel pattern detected.")
    if edge.menstrual_phase_adjustment:
        parts.append("Luteal phase temperature adjustment applied.")
    return " ".join(parts)


def result_confidence(available: int, tier: str) -> float:
    factors = {
        "data_completeness": available / len(COMPONENT_WEIGHTS),
        "sample_size": _SAMPLE_SIZE_BY_TIER.get(tier, _SAMPLE_SIZE_BY_TIER["low"]),
        "correlation_strength": _DEFAULT_CORRELATION_STRENGTH,
        "user_engagement": _DEFAULT_USER_ENGAGEMENT,
        "context_match": _DEFAULT_CONTEXT_MATCH,
    }
    return round(math.fsum(factors[k] * w for k, w in _CONFIDENCE_WEIGHTS.items()), 2)


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

def score_recovery(
    metrics,
    baseline,
    previous_score: Optional[int] = None,
    min_baseline_days: Optional[int] = None,
) -> Optional[RecoveryResult]:
    """
    Score one day. Returns None while the baseline is not ready or when no
    component has usable input.
    """
    required = settings.MIN_BASELINE_DAYS if min_baseline_days is None else min_baseline_days
    if baseline is None or (baseline.sample_count or 0) < required:
        return None

    components = {
        "hrv": score_hrv(metrics.hrv_avg, baseline),
        "rhr": score_rhr(metrics.rhr_avg, baseline),
        "sleep_quality": score_sleep_quality(
            metrics.sleep_efficiency, metrics.deep_pct, metrics.rem_pct,
        ),
        "sleep_duration": score_sleep_duration(
            metrics.sleep_hours, baseline.sleep_duration_target_minutes,
        ),
        "respiratory_rate": score_respiratory_rate(metrics.respiratory_rate, baseline),
    }
    available = [k for k, c in components.items() if c.available]
    if not available:
        return None

    weights = redistribute_weights(components)
    for key, component in components.items():
        component.effective_weight = round(weights[key], 4)

    penalty = temperature_penalty(metrics.temperature_deviation, baseline)
    raw = math.fsum(components[k].score * weights[k] for k in available) + penalty.penalty
    score = int(_clamp(_round(raw), 0, 100))
    zone = zone_for(score)
    edge = detect_edge_cases(metrics, baseline)

    return RecoveryResult(
        score=score,
        zone=zone,
        components=components,
        temperature_penalty=penalty,
        edge_cases=edge,
        confidence=result_confidence(len(available), baseline.confidence_level),
        reasoning=generate_reasoning(score, zone, components, edge, previous_score),
        recommendations=generate_recommendations(zone, edge),
        data_completeness=_round(len(available) / len(components) * 100),
        missing_inputs=[k for k in components if k not in available],
    )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def get_recovery(db: Session, user_id: str, day: date) -> Optional[RecoveryScore]:
    return (
        db.query(RecoveryScore)
        .filter(RecoveryScore.user_id == user_id, RecoveryScore.day == day)
        .first()
    )


def latest_recovery(
    db: Session, user_id: str, before: Optional[date] = None,
) -> Optional[RecoveryScore]:
    """Most recent stored score, optionally strictly before `before`."""
    q = db.query(RecoveryScore).filter(RecoveryScore.user_id == user_id)
    if before is not None:
        q = q.filter(RecoveryScore.day < before)
    return q.order_by(RecoveryScore.day.desc()).first()


def save_recovery(db: Session, user_id: str, day: date, result: RecoveryResult) -> RecoveryScore:
    """Upsert the score for (user_id, day). Does not commit."""
    row = get_recovery(db, user_id, day)
    if row is None:
        row = RecoveryScore(user_id=user_id, day=day)
        db.add(row)
    payload = result.to_dict()
    row.score = result.score
    row.zone = result.zone
    row.confidence = result.confidence
    row.temperature_penalty = result.temperature_penalty.penalty
    row.data_completeness = result.data_completeness
    row.components = json.dumps(payload["components"])
    row.edge_cases = json.dumps(payload["edge_cases"])
    row.recommendations = json.dumps(payload["recommendations"])
    row.missing_inputs = json.dumps(result.missing_inputs)
    row.reasoning = result.reasoning
    row.updated_at = utcnow()
    return row
