"""
ConfidenceScorer: how sure are we that this nudge is right for this user now?

Five independent factors, each 0..1, combined with fixed weights:

  protocol_fit       0.25   goal/module alignment
  memory_support     0.25   what past memories say about it
  timing_fit         0.20   time of day and current recovery
  conflict_risk      0.15   inverted: constraints and batch clashes
  evidence_strength  0.15   scientific evidence label

Overall is rounded to 2 dp. Below 0.4 sets `should_suppress`; the flag is
advisory, the SuppressionEngine makes the final call. Reasoning is built
from fixed phrases so identical inputs give identical text.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional, Sequence


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

CONFIDENCE_WEIGHTS = {
    "protocol_fit": 0.25,
    "memory_support": 0.25,
    "timing_fit": 0.20,
    "conflict_risk": 0.15,
    "evidence_strength": 0.15,
}

SUPPRESSION_THRESHOLD = 0.4

GOAL_MODULE_MAPPING: dict[str, list[str]] = {
    "better_sleep": ["sleep_optimization", "recovery", "stress_management"],
    "more_energy": ["energy_optimization", "morning_routine", "performance"],
    "sharper_focus": ["cognitive_performance", "focus_optimization", "performance"],
    "faster_recovery": ["recovery", "stress_management", "sleep_optimization"],
}

GOAL_KEYWORDS: dict[str, list[str]] = {
    "better_sleep": ["sleep", "evening", "recovery", "melatonin", "light", "nsdr"],
    "more_energy": ["morning", "energy", "caffeine", "light", "exercise", "hydration"],
    "sharper_focus": ["focus", "cognitive", "attention", "caffeine", "nsdr"],
    "faster_recovery": ["recovery", "nsdr", "breathing", "cold", "hrv", "sleep"],
}

CATEGORY_TIME_MAPPING: dict[str, list[str]] = {
    "Foundation": ["morning", "evening"],
    "Performance": ["morning", "afternoon"],
    "Recovery": ["afternoon", "evening", "night"],
    "Optimization": ["morning", "afternoon", "evening"],
    "Meta": ["morning", "evening"],
}

EVIDENCE_SCORES = {
    "Very High": 1.0,
    "High": 0.8,
    "Moderate": 0.6,
    "Emerging": 0.4,
}
_DEFAULT_EVIDENCE = "High"
_DEFAULT_CATEGORY = "Optimization"

_NEUTRAL_MEMORY_SUPPORT = 0.5


# ---------------------------------------------------------------------------
# Input / output types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProtocolCandidate:
    id: str
    name: str
    category: Optional[str] = None
    module_id: Optional[str] = None
    benefits: Optional[str] = None
    description: Optional[str] = None
    evidence_level: Optional[str] = None


@dataclass
class ConfidenceContext:
    primary_goal: Optional[str]
    protocol: ProtocolCandidate
    time_of_day: str
    recovery_score: Optional[int] = None
    memories: Sequence = field(default_factory=list)
    other_protocols: Sequence[ProtocolCandidate] = field(default_factory=list)


@dataclass
class ConfidenceScore:
    overall: float
    factors: dict[str, float]
    should_suppress: bool
    reasoning: str


def get_time_of_day(hour: int) -> str:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


# ---------------------------------------------------------------------------
# Factors
# ---------------------------------------------------------------------------

def protocol_fit(ctx: ConfidenceContext) -> float:
    goal = ctx.primary_goal or ""
    if ctx.protocol.module_id and ctx.protocol.module_id in GOAL_MODULE_MAPPING.get(goal, []):
        return 1.0
    haystacks = [
        (ctx.protocol.name or "").lower(),
        (ctx.protocol.benefits or "").lower(),
        (ctx.protocol.description or "").lower(),
    ]
    if any(kw in text for kw in GOAL_KEYWORDS.get(goal, []) for text in haystacks):
        return 0.7
    return 0.3


def _is_protocol_related(memory, protocol: ProtocolCandidate) -> bool:
    content = memory.content.lower()
    name = (protocol.name or "").lower()
    return (
        memory.source_protocol_id == protocol.id
        or protocol.id.lower() in content
        or (bool(name) and name in content)
    )


def _memory_signal(memory, protocol: ProtocolCandidate) -> tuple[float, float]:
    """(positive, negative) contribution of one memory."""
    weight = memory.confidence * memory.relevance_score
    content = memory.content.lower()
    related = _is_protocol_related(memory, protocol)
    boost = 2.0 if related else 1.0
    kind = memory.memory_type

    if kind == "protocol_effectiveness":
        if "high effectiveness" in content or "works well" in content:
            return weight * boost * 1.5, 0.0
        if "low effectiveness" in content or "not effective" in content:
            return 0.0, weight * boost * 1.5
        return weight * boost * 0.5, 0.0
    if kind == "nudge_feedback":
        if "completed" in content:
            return weight * boost, 0.0
        if "dismissed" in content:
            return 0.0, weight * boost * 1.2
        if "snoozed" in content:
            return 0.0, weight * boost * 0.3
        return 0.0, 0.0
    if kind == "stated_preference":
        # negatives first: "dislike" contains "like"
        if any(w in content for w in ("hate", "dislike", "avoid")):
            return 0.0, weight * boost * 2.0
        if any(w in content for w in ("like", "prefer", "love")):
            return weight * boost * 1.5, 0.0
        return 0.0, 0.0
    if kind == "preference_constraint":
        return (0.0, weight * 3.0) if related else (0.0, 0.0)
    if kind == "preferred_time":
        return weight * 0.3, 0.0
    if kind == "pattern_detected":
        return weight * 0.2, 0.0
    return 0.0, 0.0


def memory_support(ctx: ConfidenceContext) -> float:
    if not ctx.memories:
        return _NEUTRAL_MEMORY_SUPPORT
    signals = [_memory_signal(m, ctx.protocol) for m in ctx.memories]
    total_weight = math.fsum(m.confidence * m.relevance_score for m in ctx.memories)
    if total_weight == 0:
        return _NEUTRAL_MEMORY_SUPPORT
    positive = math.fsum(p for p, _ in signals)
    negative = math.fsum(n for _, n in signals)
    net = (positive - negative) / (total_weight + 1)
    return max(0.1, min(0.9, 0.5 + net * 0.4))


def timing_fit(ctx: ConfidenceContext) -> float:
    category = ctx.protocol.category or _DEFAULT_CATEGORY
    optimal = CATEGORY_TIME_MAPPING.get(category, CATEGORY_TIME_MAPPING[_DEFAULT_CATEGORY])
    name = (ctx.protocol.name or "").lower()
    tod = ctx.time_of_day

    score = 0.5
    score += 0.25 if tod in optimal else -0.15

    if tod == "morning":
        if any(w in name for w in ("morning", "light", "caffeine")):
            score += 0.2
        if any(w in name for w in ("evening", "sleep")):
            score -= 0.2
    if tod in ("evening", "night"):
        if any(w in name for w in ("evening", "sleep", "nsdr")):
            score += 0.2
        if any(w in name for w in ("morning", "caffeine")):
            score -= 0.3

    if ctx.recovery_score is not None:
        is_recovery = category == "Recovery" or any(
            w in name for w in ("nsdr", "breathing", "recovery")
        )
        if ctx.recovery_score < 40:
            if is_recovery:
                score += 0.15
            if category == "Performance" and "fitness" in name:
                score -= 0.2
        elif ctx.recovery_score > 70 and category == "Performance":
            score += 0.1

    return max(0.0, min(1.0, score))


def conflict_risk(ctx: ConfidenceContext, max_batch: Optional[int] = None) -> float:
    penalty = 0.0
    name = (ctx.protocol.name or "").lower()

    for memory in ctx.memories:
        if memory.memory_type != "preference_constraint":
            continue
        content = memory.content.lower()
        if "no gym" in content and "gym" in name:
            penalty += 0.4
        if "cold" in content and "can't" in content and "cold" in name:
            penalty += 0.4
        if "no caffeine" in content and "caffeine" in name:
            penalty += 0.4
        if "no supplement" in content and "supplement" in name:
            penalty += 0.3

    others = list(ctx.other_protocols)
    if max_batch is not None:
        others = others[:max_batch]
    for other in others:
        if other.id == ctx.protocol.id:
            continue
        if (ctx.protocol.category or "") == (other.category or ""):
            penalty += 0.1
        other_name = (other.name or "").lower()
        if ("caffeine" in name and "sleep" in other_name) or ("sleep" in name and "caffeine" in other_name):
            penalty += 0.3
        if ("cold" in name and "fitness" in other_name) or ("fitness" in name and "cold" in other_name):
            penalty += 0.15

    return max(0.1, 1.0 - penalty)


def evidence_strength(ctx: ConfidenceContext) -> float:
    return EVIDENCE_SCORES.get(ctx.protocol.evidence_level or "", EVIDENCE_SCORES[_DEFAULT_EVIDENCE])


# ---------------------------------------------------------------------------
# Reasoning
# ---------------------------------------------------------------------------

def _pct(value: float) -> str:
    return f"{math.floor(value * 100 + 0.5):d}%"


def generate_reasoning(factors: dict[str, float], overall: float, ctx: ConfidenceContext) -> str:
    if overall >= 0.7:
        parts = [f"High confidence ({_pct(overall)})."]
    elif overall >= 0.5:
        parts = [f"Moderate confidence ({_pct(overall)})."]
    elif overall >= SUPPRESSION_THRESHOLD:
        parts = [f"Low confidence ({_pct(overall)})."]
    else:
        parts = [f"Below threshold - suppressed ({_pct(overall)})."]

    notes = []
    if factors["protocol_fit"] >= 0.8:
        notes.append("strong goal alignment")
    elif factors["protocol_fit"] < 0.4:
        notes.append("weak goal alignment")
    if factors["memory_support"] >= 0.7:
        notes.append("positive past feedback")
    elif factors["memory_support"] < 0.4:
        notes.append("negative past feedback")
    if factors["timing_fit"] >= 0.7:
        notes.append("optimal timing")
    elif factors["timing_fit"] < 0.4:
        notes.append("suboptimal timing")
    if factors["conflict_risk"] < 0.5:
        notes.append("potential conflicts")
    if factors["evidence_strength"] >= 0.9:
        notes.append("very high evidence")
    if notes:
        parts.append(f"Factors: {', '.join(notes)}.")

    if ctx.protocol.name:
        parts.append(f"Protocol: {ctx.protocol.name}.")
    if ctx.memories:
        parts.append(f"Based on {len(ctx.memories)} relevant memories.")
    return " ".join(parts)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def score_confidence(ctx: ConfidenceContext, max_batch: Optional[int] = None) -> ConfidenceScore:
    factors = {
        "protocol_fit": protocol_fit(ctx),
        "memory_support": memory_support(ctx),
        "timing_fit": timing_fit(ctx),
        "conflict_risk": conflict_risk(ctx, max_batch),
        "evidence_strength": evidence_strength(ctx),
    }
    weighted = math.fsum(factors[k] * w for k, w in CONFIDENCE_WEIGHTS.items())
    overall = math.floor(weighted * 100 + 0.5) / 100
    return ConfidenceScore(
        overall=overall,
        factors=factors,
        should_suppress=overall < SUPPRESSION_THRESHOLD,
        reasoning=generate_reasoning(factors, overall, ctx),
    )
