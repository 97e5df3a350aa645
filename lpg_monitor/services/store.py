"""
Tank Store - persistence of readings and per-terminal configuration
"""

import logging
from datetime import datetime

from sqlalchemy import select, update, union, and_
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lpg_monitor.models.reading import TankReading, utcnow
from lpg_monitor.models.tank_info import TankInfo
from lpg_monitor.services.alarms import CooldownPatch, ThresholdConfig
from lpg_monitor.services.consumption import parse_capacity_liters
from lpg_monitor.services.telemetry import Reading

logger = logging.getLogger(__name__)

# Fields editable through the API; cooldown markers are owned by the alarm service
TANK_INFO_FIELDS = (
    "title",
    "site",
    "emirate",
    "project_code",
    "building_name",
    "address",
    "lpg_min_level",
    "lpg_max_level",
    "lpg_tank_capacity",
    "alarm_email",
)


def tank_info_to_dict(info: TankInfo) -> dict:
    data = {"terminal_id": info.terminal_id}
    for name in TANK_INFO_FIELDS:
        data[name] = getattr(info, name)
    data["capacity_liters"] = parse_capacity_liters(info.lpg_tank_capacity)
    data["last_min_alarm_sent_at"] = (
        info.last_min_alarm_sent_at.isoformat() if info.last_min_alarm_sent_at else None
    )
    data["last_max_alarm_sent_at"] = (
        info.last_max_alarm_sent_at.isoformat() if info.last_max_alarm_sent_at else None
    )
    return data


class TankStore:
    """SQL-backed store for readings and tank configuration."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    # ==================== READINGS ====================

    async def insert_reading(self, reading: Reading) -> bool:
        """Store a reading; returns False if this device sample is already stored."""
        stmt = (
            insert(TankReading)
            .values(
                terminal_id=reading.terminal_id,
                serial=reading.serial,
                tank_level=reading.value,
                timestamp=reading.timestamp,
                recorded_at=utcnow(),
            )
            .on_conflict_do_nothing(index_elements=["terminal_id", "timestamp"])
            .returning(TankReading.id)
        )
        async with self.session_maker() as session:
            result = await session.execute(stmt)
            stored = result.scalar_one_or_none() is not None
            await session.commit()

        if stored:
            logger.debug(f"Saved reading for {reading.terminal_id}: {reading.value}")
        else:
            logger.debug(f"Reading for {reading.terminal_id} at {reading.timestamp} already stored")
        return stored

    async def query_readings_in_range(
        self, terminal_id: str, start: datetime, end: datetime
    ) -> list[tuple[datetime, float | None]]:
        """Readings with ``start <= timestamp < end``, ascending by timestamp."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(TankReading.timestamp, TankReading.tank_level)
                .where(and_(
                    TankReading.terminal_id == terminal_id,
                    TankReading.timestamp >= start,
                    TankReading.timestamp < end,
                ))
                .order_by(TankReading.timestamp, TankReading.id)
            )
            return [(row.timestamp, row.tank_level) for row in result]

    async def history(self, terminal_id: str, limit: int = 1000) -> list[TankReading]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(TankReading)
                .where(TankReading.terminal_id == terminal_id)
                .order_by(TankReading.recorded_at, TankReading.id)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_known_terminals(self, since: datetime) -> list[str]:
        """Terminals with configuration or with any reading since ``since``."""
        query = union(
            select(TankInfo.terminal_id),
            select(TankReading.terminal_id).where(TankReading.recorded_at >= since),
        )
        async with self.session_maker() as session:
            result = await session.execute(query)
            return sorted({row[0] for row in result})

    # ==================== CONFIGURATION ====================

    async def get_tank_info(self, terminal_id: str) -> TankInfo | None:
        async with self.session_maker() as session:
            result = await session.execute(
                select(TankInfo).where(TankInfo.terminal_id == terminal_id)
            )
            return result.scalar_one_or_none()

    async def list_tank_info(self) -> list[TankInfo]:
        async with self.session_maker() as session:
            result = await session.execute(select(TankInfo).order_by(TankInfo.terminal_id))
            return list(result.scalars().all())

    async def list_configured_terminals(self) -> list[str]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(TankInfo.terminal_id).order_by(TankInfo.terminal_id)
            )
            return list(result.scalars().all())

    async def upsert_tank_info(self, terminal_id: str, fields: dict) -> TankInfo:
        values = {name: fields[name] for name in TANK_INFO_FIELDS if name in fields}
        stmt = insert(TankInfo).values(terminal_id=terminal_id, updated_at=utcnow(), **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[TankInfo.terminal_id],
            set_={**values, "updated_at": stmt.excluded.updated_at},
        ).returning(TankInfo)

        async with self.session_maker() as session:
            result = await session.execute(stmt)
            info = result.scalar_one()
            await session.commit()

        logger.info(f"Updated tank info for {terminal_id}: {sorted(values)}")
        return info

    async def get_threshold_config(self, terminal_id: str) -> ThresholdConfig | None:
        info = await self.get_tank_info(terminal_id)
        if info is None:
            return None
        return ThresholdConfig(
            terminal_id=info.terminal_id,
            min_level=info.lpg_min_level,
            max_level=info.lpg_max_level,
            alarm_email=info.alarm_email,
            last_min_alarm_sent_at=info.last_min_alarm_sent_at,
            last_max_alarm_sent_at=info.last_max_alarm_sent_at,
        )

    async def update_cooldown_markers(self, terminal_id: str, patch: CooldownPatch) -> None:
        """Write both markers in one single-row update scoped to the terminal."""
        values = patch.as_values()
        if not values:
            return
        async with self.session_maker() as session:
            await session.execute(
                update(TankInfo)
                .where(TankInfo.terminal_id == terminal_id)
                .values(**values)
            )
            await session.commit()

    async def get_capacity_liters(self, terminal_id: str) -> float | None:
        info = await self.get_tank_info(terminal_id)
        if info is None:
            return None
        return parse_capacity_liters(info.lpg_tank_capacity)
