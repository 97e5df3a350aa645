"""
Tank info model - per-terminal site details, thresholds and alarm state
"""

from datetime import datetime
from sqlalchemy import String, Float, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from lpg_monitor.core.database import Base
from lpg_monitor.models.reading import utcnow


class TankInfo(Base):
    """Configuration record for one terminal."""

    __tablename__ = "tank_info"

    id: Mapped[int] = mapped_column(primary_key=True)
    terminal_id: Mapped[str] = mapped_column(String(50), unique=True, index=True)

    # Site details
    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    site: Mapped[str | None] = mapped_column(String(200), nullable=True)
    emirate: Mapped[str | None] = mapped_column(String(100), nullable=True)
    project_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    building_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Thresholds (percent)
    lpg_min_level: Mapped[float | None] = mapped_column(Float, nullable=True)
    lpg_max_level: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Free-form, e.g. "1000 L" or "1,000 liters"
    lpg_tank_capacity: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # One or more recipients separated by "," or ";"
    alarm_email: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Cooldown markers, written only by the alarm service
    last_min_alarm_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    last_max_alarm_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<TankInfo {self.terminal_id} ({self.title or 'untitled'})>"
