"""
NudgeLog: audit row for every governance decision.

One row per (user_id, nudge_id); the unique constraint makes a retried
evaluation return the stored decision instead of re-deciding. `decision`
holds the full JSON response that was returned the first time.
"""
from datetime import datetime
from sqlalchemy import (
    Integer, String, Text, Float, Boolean, DateTime, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from nudgegate.db.base import Base


class NudgeLog(Base):
    __tablename__ = "nudge_logs"
    __table_args__ = (
        UniqueConstraint("user_id", "nudge_id", name="uq_nudge_log_user_nudge"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    nudge_id: Mapped[str] = mapped_column(String(128), nullable=False)
    protocol_id: Mapped[str] = mapped_column(String(128), nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False)

    delivered: Mapped[bool] = mapped_column(Boolean, nullable=False, index=True)
    suppressed_by: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rules_checked: Mapped[str] = mapped_column(Text, nullable=False, comment="JSON array of rule ids")
    was_overridden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    recovery_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mvd_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    decision: Mapped[str] = mapped_column(Text, nullable=False)
    evaluated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    feedback: Mapped[str | None] = mapped_column(String(16), nullable=True)
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    feedback_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
