import enum
from datetime import datetime, date
from sqlalchemy import Integer, String, Date, DateTime, Enum as SAEnum, func, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from nudgegate.db.base import Base


class ProtocolLogStatus(str, enum.Enum):
    completed = "completed"
    skipped = "skipped"


class ProtocolLog(Base):
    """One scheduled protocol for one user-day and whether it was done."""

    __tablename__ = "protocol_logs"
    __table_args__ = (
        UniqueConstraint("user_id", "protocol_id", "day", name="uq_protocol_log_user_protocol_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    protocol_id: Mapped[str] = mapped_column(String(128), nullable=False)
    day: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[ProtocolLogStatus] = mapped_column(
        SAEnum(ProtocolLogStatus, name="protocol_log_status"), nullable=False
    )
    logged_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
