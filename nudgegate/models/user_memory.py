"""
UserMemory: long-lived, decaying facts about one user.

memory_type values (see nudgegate/services/memory.py for lifetimes):
  "stated_preference"      explicit likes/dislikes, never expire
  "preference_constraint"  hard limits ("no gym access"), never expire
  "protocol_effectiveness" observed outcome of a protocol, 90 days
  "preferred_time"         when the user tends to act, 60 days
  "nudge_feedback"         completed/dismissed/snoozed events, 30 days
  "pattern_detected"       inferred behavioral pattern, 45 days

context: JSON-encoded dict stored as Text.
"""
import enum
from datetime import datetime
from sqlalchemy import Integer, String, Float, Text, DateTime, func, Index
from sqlalchemy.orm import Mapped, mapped_column

from nudgegate.db.base import Base


class MemoryType(str, enum.Enum):
    nudge_feedback = "nudge_feedback"
    protocol_effectiveness = "protocol_effectiveness"
    preferred_time = "preferred_time"
    stated_preference = "stated_preference"
    pattern_detected = "pattern_detected"
    preference_constraint = "preference_constraint"


class UserMemory(Base):
    __tablename__ = "user_memories"
    __table_args__ = (
        Index("ix_user_memories_user_type", "user_id", "memory_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    memory_type: Mapped[str] = mapped_column(String(32), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    context: Mapped[str | None] = mapped_column(Text, nullable=True)

    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    evidence_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    decay_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.05)

    source_protocol_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    source_nudge_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_decayed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
