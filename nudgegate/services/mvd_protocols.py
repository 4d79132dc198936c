"""
Protocol allowlists for Minimum Viable Day mode.

Matching is a case-insensitive substring test in either direction, so
"proto_morning_light", "morning_light" and "morning_light_exposure_v2"
all pass for the morning light entry. The fuzziness is intentional.
"""
from __future__ import annotations

from typing import Optional


class MVDType:
    FULL = "full"
    SEMI_ACTIVE = "semi_active"
    TRAVEL = "travel"

    ALL = ("full", "semi_active", "travel")


_CORE = (
    "proto_morning_light",
    "morning_light_exposure",
    "proto_hydration_electrolytes",
    "hydration_electrolytes",
    "proto_sleep_optimization",
    "sleep_optimization",
)

MVD_PROTOCOL_SETS: dict[str, tuple[str, ...]] = {
    MVDType.FULL: _CORE,
    MVDType.SEMI_ACTIVE: _CORE + (
        "proto_walking_breaks",
        "walking_breaks",
        "proto_evening_light",
        "evening_light_management",
    ),
    MVDType.TRAVEL: (
        "proto_morning_light",
        "morning_light_exposure",
        "proto_hydration_electrolytes",
        "hydration_electrolytes",
        "proto_caffeine_timing",
        "caffeine_timing",
        "proto_evening_light",
        "evening_light_management",
    ),
}

MVD_TYPE_DESCRIPTIONS = {
    MVDType.FULL: "Bare essentials: morning light, hydration, and sleep optimization only",
    MVDType.SEMI_ACTIVE: "Core protocols plus gentle walking and evening light management",
    MVDType.TRAVEL: "Circadian reset focus: extended light exposure and adjusted caffeine timing",
}


def is_protocol_approved_for_mvd(protocol_id: str, mvd_type: Optional[str]) -> bool:
    """True when MVD is off (type None) or the id fuzzily matches the type's set."""
    if mvd_type is None:
        return True
    candidate = (protocol_id or "").strip().lower()
    if not candidate:
        return False
    return any(
        allowed in candidate or candidate in allowed
        for allowed in MVD_PROTOCOL_SETS.get(mvd_type, ())
    )


def approved_protocol_ids(mvd_type: str) -> tuple[str, ...]:
    return MVD_PROTOCOL_SETS[mvd_type]


def mvd_protocol_count(mvd_type: str) -> int:
    """Distinct protocols in a set; each is listed as a proto_ id plus its catalog slug."""
    return sum(1 for p in MVD_PROTOCOL_SETS[mvd_type] if p.startswith("proto_"))
