"""
UserBaseline: rolling personal reference statistics, one row per user.

Never deleted, only refined. HRV is tracked in log space (ln ms).
`sample_count` is the cumulative number of distinct metric days and never
decreases; `confidence_level` is derived from it.
"""
from datetime import datetime
from sqlalchemy import Integer, String, Float, Boolean, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from nudgegate.db.base import Base


class UserBaseline(Base):
    __tablename__ = "user_baselines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)

    hrv_ln_mean: Mapped[float | None] = mapped_column(Float, nullable=True)
    hrv_ln_std_dev: Mapped[float | None] = mapped_column(Float, nullable=True)
    hrv_coefficient_of_variation: Mapped[float | None] = mapped_column(Float, nullable=True)
    hrv_sample_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    rhr_mean: Mapped[float | None] = mapped_column(Float, nullable=True)
    rhr_std_dev: Mapped[float | None] = mapped_column(Float, nullable=True)
    rhr_sample_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    respiratory_rate_mean: Mapped[float | None] = mapped_column(Float, nullable=True)
    respiratory_rate_std_dev: Mapped[float | None] = mapped_column(Float, nullable=True)
    respiratory_sample_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    sleep_duration_target_minutes: Mapped[float] = mapped_column(Float, nullable=False, default=420.0)
    sleep_sample_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    temperature_baseline_celsius: Mapped[float] = mapped_column(Float, nullable=False, default=36.5)

    sample_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    confidence_level: Mapped[str] = mapped_column(String(16), nullable=False, default="low")

    menstrual_cycle_tracking: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cycle_day: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
