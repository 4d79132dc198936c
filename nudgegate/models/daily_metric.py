from datetime import datetime, date
from sqlalchemy import Integer, String, Float, Date, DateTime, func, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from nudgegate.db.base import Base


class DailyMetric(Base):
    """Normalized wearable summary for one user-day. Every signal is optional."""

    __tablename__ = "daily_metrics"
    __table_args__ = (UniqueConstraint("user_id", "day", name="uq_daily_metric_user_day"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    day: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    hrv_avg: Mapped[float | None] = mapped_column(Float, nullable=True)
    rhr_avg: Mapped[float | None] = mapped_column(Float, nullable=True)
    sleep_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    sleep_efficiency: Mapped[float | None] = mapped_column(Float, nullable=True)
    deep_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    rem_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    respiratory_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    temperature_deviation: Mapped[float | None] = mapped_column(Float, nullable=True)
    steps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    active_energy: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
