"""
Optional plain-language explanation of a governance decision.

The text comes from an injected completion callable (prompt -> text). The
decision never depends on it: a failing or unsafe completion is logged and
replaced by a fixed safe sentence.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)

TextCompletion = Callable[[str], str]

MAX_SCAN_LENGTH = 10_000

BLOCKED_PHRASES = (
    "kill yourself",
    "end your life",
    "commit suicide",
    "you should die",
    "better off dead",
    "cut yourself",
    "hurt yourself",
    "harm yourself",
    "take all the pills",
    "overdose on",
    "starve yourself",
    "skip meals",
    "stop eating",
    "purge after",
)

SAFE_FALLBACK = "Take a moment to check in with yourself today. How are you feeling?"

_WHITESPACE = re.compile(r"\s+")


@dataclass
class ScanResult:
    safe: bool
    flagged: list[str] = field(default_factory=list)


def _normalize(text: str) -> str:
    text = text[:MAX_SCAN_LENGTH].lower().replace("’", "'")
    return _WHITESPACE.sub(" ", text)


def scan_output(text: Optional[str]) -> ScanResult:
    if not text:
        return ScanResult(safe=True)
    normalized = _normalize(text)
    flagged = [p for p in BLOCKED_PHRASES if p in normalized]
    return ScanResult(safe=not flagged, flagged=flagged)


def build_prompt(decision: dict) -> str:
    lines = [
        "Explain to the user, in two short supportive sentences, why this wellness "
        "nudge is or is not being shown right now. Do not give medical advice.",
        f"Protocol: {decision.get('protocol_name') or decision.get('protocol_id')}",
        f"Delivered: {'yes' if decision.get('should_deliver') else 'no'}",
    ]
    if decision.get("reason"):
        lines.append(f"Suppression reason: {decision['reason']}")
    if decision.get("confidence_reasoning"):
        lines.append(f"Confidence: {decision['confidence_reasoning']}")
    if decision.get("recovery_score") is not None:
        lines.append(f"Recovery score today: {decision['recovery_score']}/100")
    if decision.get("mvd_active"):
        lines.append(f"Minimum Viable Day mode is on ({decision.get('mvd_type')}).")
    return "\n".join(lines)


def explain_decision(decision: dict, complete: Optional[TextCompletion] = None) -> Optional[str]:
    """Returns None when no completion callable is configured."""
    if complete is None:
        return None
    try:
        text = complete(build_prompt(decision))
    except Exception:
        logger.warning("narrative completion failed; using fallback", exc_info=True)
        return SAFE_FALLBACK

    result = scan_output(text)
    if not result.safe:
        logger.warning("narrative output blocked: %s", ", ".join(result.flagged))
        return SAFE_FALLBACK
    return (text or "").strip() or SAFE_FALLBACK
