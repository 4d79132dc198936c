"""
UserState: fast-read per-user flags (MVD mode, delivery preferences).

One row per user, created lazily. `dashboard` is a best-effort JSON mirror
of the latest decision for UI reads; nothing in the engine reads it back.
"""
from datetime import datetime
from sqlalchemy import Integer, String, Text, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from nudgegate.db.base import Base


class UserState(Base):
    __tablename__ = "user_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)

    mvd_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    mvd_type: Mapped[str | None] = mapped_column(String(16), nullable=True)
    mvd_trigger: Mapped[str | None] = mapped_column(String(32), nullable=True)
    mvd_activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    mvd_exit_condition: Mapped[str | None] = mapped_column(String(128), nullable=True)
    mvd_last_checked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    mvd_last_deactivation_reason: Mapped[str | None] = mapped_column(String(128), nullable=True)

    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    quiet_hours_start: Mapped[int] = mapped_column(Integer, nullable=False, default=22)
    quiet_hours_end: Mapped[int] = mapped_column(Integer, nullable=False, default=6)
    primary_goal: Mapped[str | None] = mapped_column(String(32), nullable=True)

    dashboard: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
