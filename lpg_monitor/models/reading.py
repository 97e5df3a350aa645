"""
Tank reading model - level samples fetched from the telemetry service
"""

from datetime import datetime, timezone
from sqlalchemy import String, Float, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from lpg_monitor.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TankReading(Base):
    """Single level sample for a terminal."""

    __tablename__ = "tank_level"
    # A device sample repeated by later fetches is stored once
    __table_args__ = (
        UniqueConstraint("terminal_id", "timestamp", name="uq_tank_level_terminal_timestamp"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    terminal_id: Mapped[str] = mapped_column(String(50), index=True)
    serial: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Fill percentage, not clamped to 0-100
    tank_level: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Time the device attributes to the sample (null if unparseable)
    timestamp: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True
    )

    # Time the row was written
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        index=True
    )

    def __repr__(self) -> str:
        return f"<TankReading terminal={self.terminal_id} level={self.tank_level}%>"
