"""
RecoveryScore: persisted RecoveryResult, one row per (user_id, day).

Re-scoring a corrected day overwrites the row. Structured parts
(components, edge cases, recommendations, missing inputs) are
JSON-encoded Text.
"""
from datetime import datetime, date
from sqlalchemy import Integer, String, Float, Text, Date, DateTime, func, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from nudgegate.db.base import Base


class RecoveryScore(Base):
    __tablename__ = "recovery_scores"
    __table_args__ = (UniqueConstraint("user_id", "day", name="uq_recovery_user_day"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    day: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    score: Mapped[int] = mapped_column(Integer, nullable=False)
    zone: Mapped[str] = mapped_column(String(8), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    temperature_penalty: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    data_completeness: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    components: Mapped[str] = mapped_column(Text, nullable=False, comment="JSON object keyed by component")
    edge_cases: Mapped[str] = mapped_column(Text, nullable=False, comment="JSON object")
    recommendations: Mapped[str] = mapped_column(Text, nullable=False, comment="JSON array")
    missing_inputs: Mapped[str | None] = mapped_column(Text, nullable=True, comment="JSON array")
    reasoning: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
