"""
MemoryStore: durable, decaying facts learned about one user.

Lifecycle
---------
  store      new observation; a near-duplicate (same type, content contains
             the first 50 chars, still above the confidence floor) is
             reinforced instead of inserted
  reinforce  confidence += 0.1 x (1 - confidence), capped at 0.95;
             evidence += 1; once evidence >= 5 the decay rate is halved
             (never below 0.01)
  decay      confidence x (1 - decay_rate) ^ weeks_since_last_decay, for
             memories not decayed within the last 24h
  prune      drop expired memories, memories under the 0.1 floor, and the
             lowest-ranked overflow beyond 150 per user

Retrieval fetches at most 2 x limit candidates, scores relevance and
returns the top `limit` ordered by relevance, type priority, confidence.

Public API
----------
  add_memory(db, ...)                    flush only
  store_memory(db, ...)                  commits
  reinforce_memory(memory, context, now)
  calculate_relevance(memory, protocol_id, time_of_day, now)   pure
  get_relevant_memories(db, user_id, ...)
  apply_memory_decay(db, user_id, now)   commits
  prune_memories(db, user_id, now)       commits
  memory_stats(db, user_id)
  delete_memory / delete_all_memories    commit
  memory_from_feedback / memory_from_stated_preference /
  memory_from_effectiveness              flush only
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from nudgegate.core.config import settings
from nudgegate.core.errors import MemoryNotFoundError
from nudgegate.core.timeutil import as_utc, utcnow
from nudgegate.models.user_memory import MemoryType, UserMemory

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

MIN_CONFIDENCE = 0.1
DEFAULT_CONFIDENCE = 0.5
DEFAULT_DECAY_RATE = 0.05
MIN_DECAY_RATE = 0.01
MAX_DECAY_RATE = 0.1
HIGH_EVIDENCE_THRESHOLD = 5
HIGH_EVIDENCE_DECAY_REDUCTION = 0.5
MAX_REINFORCED_CONFIDENCE = 0.95

_DEDUPE_PREFIX_CHARS = 50
_DECAY_MIN_INTERVAL = timedelta(hours=24)

# None = never expires
DEFAULT_EXPIRATION_DAYS: dict[str, Optional[int]] = {
    MemoryType.stated_preference.value: None,
    MemoryType.preference_constraint.value: None,
    MemoryType.protocol_effectiveness.value: 90,
    MemoryType.preferred_time.value: 60,
    MemoryType.nudge_feedback.value: 30,
    MemoryType.pattern_detected.value: 45,
}

# Lower = more important when relevance ties
MEMORY_TYPE_PRIORITY: dict[str, int] = {
    MemoryType.stated_preference.value: 1,
    MemoryType.preference_constraint.value: 2,
    MemoryType.protocol_effectiveness.value: 3,
    MemoryType.preferred_time.value: 4,
    MemoryType.nudge_feedback.value: 5,
    MemoryType.pattern_detected.value: 6,
}

_FEEDBACK_CONFIDENCE = {"completed": 0.6, "dismissed": 0.5, "snoozed": 0.4}
_EFFECTIVENESS_CONFIDENCE = {"high": 0.8, "medium": 0.5, "low": 0.3}
_STATED_PREFERENCE_CONFIDENCE = 0.9
_STATED_PREFERENCE_DECAY = 0.01


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class ScoredMemory:
    """Read-only view handed to the confidence scorer."""
    id: int
    memory_type: str
    content: str
    confidence: float
    relevance_score: float
    evidence_count: int = 1
    source_protocol_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Write path
# ---------------------------------------------------------------------------

def _find_duplicate(
    db: Session, user_id: str, memory_type: str, content: str,
) -> Optional[UserMemory]:
    prefix = content[:_DEDUPE_PREFIX_CHARS].lower()
    return (
        db.query(UserMemory)
        .filter(
            UserMemory.user_id == user_id,
            UserMemory.memory_type == memory_type,
            func.lower(UserMemory.content).contains(prefix, autoescape=True),
            UserMemory.confidence >= MIN_CONFIDENCE,
        )
        .order_by(UserMemory.id)
        .first()
    )


def reinforce_memory(
    memory: UserMemory,
    context: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> UserMemory:
    now = now or utcnow()
    memory.confidence = min(
        MAX_REINFORCED_CONFIDENCE,
        memory.confidence + 0.1 * (1 - memory.confidence),
    )
    memory.evidence_count = (memory.evidence_count or 0) + 1
    if memory.evidence_count >= HIGH_EVIDENCE_THRESHOLD:
        memory.decay_rate = max(MIN_DECAY_RATE, memory.decay_rate * HIGH_EVIDENCE_DECAY_REDUCTION)
    memory.last_used_at = now
    if context is not None:
        memory.context = json.dumps(context)
    return memory


def add_memory(
    db: Session,
    user_id: str,
    memory_type: str,
    content: str,
    context: Optional[dict] = None,
    confidence: Optional[float] = None,
    decay_rate: Optional[float] = None,
    source_protocol_id: Optional[str] = None,
    source_nudge_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[UserMemory, bool]:
    """
    Insert or reinforce. Returns (memory, created). Flushes, never commits.
    """
    now = now or utcnow()
    existing = _find_duplicate(db, user_id, memory_type, content)
    if existing is not None:
        reinforce_memory(existing, context, now)
        db.flush()
        return existing, False

    days = DEFAULT_EXPIRATION_DAYS.get(memory_type)
    rate = DEFAULT_DECAY_RATE if decay_rate is None else decay_rate
    memory = UserMemory(
        user_id=user_id,
        memory_type=memory_type,
        content=content,
        context=json.dumps(context) if context is not None else None,
        confidence=DEFAULT_CONFIDENCE if confidence is None else confidence,
        evidence_count=1,
        decay_rate=min(MAX_DECAY_RATE, max(MIN_DECAY_RATE, rate)),
        source_protocol_id=source_protocol_id,
        source_nudge_id=source_nudge_id,
        created_at=now,
        last_used_at=now,
        last_decayed_at=now,
        expires_at=now + timedelta(days=days) if days is not None else None,
    )
    db.add(memory)
    db.flush()

    count = db.query(func.count(UserMemory.id)).filter(UserMemory.user_id == user_id).scalar()
    if count > settings.MAX_MEMORIES_PER_USER:
        _prune(db, user_id, now, keep_id=memory.id)
    return memory, True


def store_memory(db: Session, user_id: str, memory_type: str, content: str, **kwargs) -> tuple[UserMemory, bool]:
    memory, created = add_memory(db, user_id, memory_type, content, **kwargs)
    db.commit()
    db.refresh(memory)
    return memory, created


def memory_from_feedback(
    db: Session,
    user_id: str,
    nudge_id: str,
    protocol_id: str,
    feedback: str,
    now: Optional[datetime] = None,
) -> UserMemory:
    memory, _ = add_memory(
        db, user_id, MemoryType.nudge_feedback.value,
        f"User {feedback} nudge for protocol {protocol_id}",
        context={"nudge_id": nudge_id, "feedback": feedback},
        confidence=_FEEDBACK_CONFIDENCE[feedback],
        source_nudge_id=nudge_id,
        source_protocol_id=protocol_id,
        now=now,
    )
    return memory


def memory_from_stated_preference(
    db: Session,
    user_id: str,
    preference: str,
    is_constraint: bool = False,
    now: Optional[datetime] = None,
) -> UserMemory:
    memory_type = (
        MemoryType.preference_constraint if is_constraint else MemoryType.stated_preference
    ).value
    memory, _ = add_memory(
        db, user_id, memory_type, preference,
        confidence=_STATED_PREFERENCE_CONFIDENCE,
        decay_rate=_STATED_PREFERENCE_DECAY,
        now=now,
    )
    return memory


def memory_from_effectiveness(
    db: Session,
    user_id: str,
    protocol_id: str,
    effectiveness: str,
    now: Optional[datetime] = None,
) -> UserMemory:
    memory, _ = add_memory(
        db, user_id, MemoryType.protocol_effectiveness.value,
        f"Protocol {protocol_id} has {effectiveness} effectiveness for user",
        confidence=_EFFECTIVENESS_CONFIDENCE[effectiveness],
        source_protocol_id=protocol_id,
        now=now,
    )
    return memory


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------

def calculate_relevance(
    memory,
    protocol_id: Optional[str] = None,
    time_of_day: Optional[str] = None,
    now: Optional[datetime] = None,
) -> float:
    now = now or utcnow()
    score = memory.confidence

    if protocol_id and memory.source_protocol_id == protocol_id:
        score *= 1.5
    if (
        time_of_day
        and memory.memory_type == MemoryType.preferred_time.value
        and time_of_day in memory.content.lower()
    ):
        score *= 1.3

    last_used = as_utc(memory.last_used_at or memory.created_at)
    days_since_use = (now - last_used).total_seconds() / 86400
    if days_since_use < 7:
        score *= 1.2
    elif days_since_use > 30:
        score *= 0.8

    if (memory.evidence_count or 0) >= HIGH_EVIDENCE_THRESHOLD:
        score *= 1.1
    return min(1.0, score)


def get_relevant_memories(
    db: Session,
    user_id: str,
    protocol_id: Optional[str] = None,
    time_of_day: Optional[str] = None,
    memory_types: Optional[list[str]] = None,
    limit: Optional[int] = None,
    min_confidence: float = MIN_CONFIDENCE,
    now: Optional[datetime] = None,
) -> list[ScoredMemory]:
    now = now or utcnow()
    limit = limit or settings.MEMORY_RETRIEVAL_LIMIT

    q = db.query(UserMemory).filter(
        UserMemory.user_id == user_id,
        UserMemory.confidence >= min_confidence,
        or_(UserMemory.expires_at.is_(None), UserMemory.expires_at > now),
    )
    if memory_types:
        q = q.filter(UserMemory.memory_type.in_(memory_types))
    if protocol_id:
        q = q.filter(or_(
            UserMemory.source_protocol_id == protocol_id,
            UserMemory.source_protocol_id.is_(None),
        ))
    candidates = q.order_by(UserMemory.confidence.desc(), UserMemory.id).limit(limit * 2).all()

    scored = [
        ScoredMemory(
            id=m.id,
            memory_type=m.memory_type,
            content=m.content,
            confidence=m.confidence,
            relevance_score=calculate_relevance(m, protocol_id, time_of_day, now),
            evidence_count=m.evidence_count,
            source_protocol_id=m.source_protocol_id,
        )
        for m in candidates
    ]
    scored.sort(key=lambda s: (
        -s.relevance_score,
        MEMORY_TYPE_PRIORITY.get(s.memory_type, 99),
        -s.confidence,
        s.id,
    ))
    return scored[:limit]


def list_memories(
    db: Session,
    user_id: str,
    memory_type: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[int, list[UserMemory]]:
    q = db.query(UserMemory).filter(UserMemory.user_id == user_id)
    if memory_type:
        q = q.filter(UserMemory.memory_type == memory_type)
    total = q.count()
    items = q.order_by(UserMemory.created_at.desc(), UserMemory.id.desc()).offset(offset).limit(limit).all()
    return total, items


def memory_stats(db: Session, user_id: str) -> dict:
    rows = (
        db.query(UserMemory.memory_type, UserMemory.confidence, UserMemory.created_at)
        .filter(UserMemory.user_id == user_id)
        .all()
    )
    by_type: dict[str, int] = {}
    for row in rows:
        by_type[row.memory_type] = by_type.get(row.memory_type, 0) + 1
    created = [as_utc(r.created_at) for r in rows]
    return {
        "total": len(rows),
        "by_type": by_type,
        "avg_confidence": round(sum(r.confidence for r in rows) / len(rows), 4) if rows else 0.0,
        "oldest_memory": min(created) if created else None,
        "newest_memory": max(created) if created else None,
    }


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------

def decay_confidence(confidence: float, decay_rate: float, weeks: float) -> float:
    return max(0.0, confidence * (1 - decay_rate) ** weeks)


def apply_memory_decay(db: Session, user_id: str, now: Optional[datetime] = None) -> int:
    """Decay memories last decayed more than 24h before `now`. Returns count."""
    now = now or utcnow()
    cutoff = now - _DECAY_MIN_INTERVAL
    memories = (
        db.query(UserMemory)
        .filter(
            UserMemory.user_id == user_id,
            or_(UserMemory.last_decayed_at.is_(None), UserMemory.last_decayed_at < cutoff),
        )
        .all()
    )
    for memory in memories:
        since = as_utc(memory.last_decayed_at or memory.created_at)
        weeks = max(0.0, (now - since).total_seconds() / (7 * 86400))
        memory.confidence = decay_confidence(memory.confidence, memory.decay_rate, weeks)
        memory.last_decayed_at = now
    db.commit()
    logger.info("memory decay user=%s decayed=%d", user_id, len(memories))
    return len(memories)


def _prune(db: Session, user_id: str, now: datetime, keep_id: Optional[int] = None) -> int:
    """`keep_id` is never removed; an insert does not evict itself."""
    stale = db.query(UserMemory).filter(
        UserMemory.user_id == user_id,
        or_(
            UserMemory.confidence < MIN_CONFIDENCE,
            UserMemory.expires_at <= now,
        ),
    )
    if keep_id is not None:
        stale = stale.filter(UserMemory.id != keep_id)
    removed = stale.delete(synchronize_session="fetch")

    survivors = (
        db.query(UserMemory)
        .filter(UserMemory.user_id == user_id)
        .all()
    )
    overflow = len(survivors) - settings.MAX_MEMORIES_PER_USER
    survivors = [m for m in survivors if m.id != keep_id]
    if overflow > 0:
        survivors.sort(key=lambda m: (
            MEMORY_TYPE_PRIORITY.get(m.memory_type, 99),
            -m.confidence,
            -(m.id or 0),
        ))
        doomed = survivors[-overflow:]
        for memory in doomed:
            db.delete(memory)
        removed += len(doomed)
    db.flush()
    return removed


def prune_memories(db: Session, user_id: str, now: Optional[datetime] = None) -> int:
    removed = _prune(db, user_id, now or utcnow())
    db.commit()
    logger.info("memory prune user=%s removed=%d", user_id, removed)
    return removed


def get_memory(db: Session, user_id: str, memory_id: int) -> UserMemory:
    memory = (
        db.query(UserMemory)
        .filter(UserMemory.id == memory_id, UserMemory.user_id == user_id)
        .first()
    )
    if memory is None:
        raise MemoryNotFoundError(memory_id)
    return memory


def delete_memory(db: Session, user_id: str, memory_id: int) -> None:
    db.delete(get_memory(db, user_id, memory_id))
    db.commit()


def delete_all_memories(db: Session, user_id: str) -> int:
    deleted = (
        db.query(UserMemory)
        .filter(UserMemory.user_id == user_id)
        .delete(synchronize_session="fetch")
    )
    db.commit()
    return deleted
