"""
Poll Scheduler - fetches tank levels on an interval
Runs as a background task alongside the API
"""

import asyncio
import logging

from lpg_monitor.services.alarms import AlarmService, FiredAlarm
from lpg_monitor.services.store import TankStore
from lpg_monitor.services.telemetry import Reading, TelemetryClient, TelemetryError

logger = logging.getLogger(__name__)


async def ingest_reading(
    reading: Reading,
    alarm_service: AlarmService,
    store: TankStore,
) -> list[FiredAlarm]:
    """Evaluate alarms for a freshly fetched reading, then persist it."""
    fired = await alarm_service.evaluate_and_maybe_alarm(reading)
    await store.insert_reading(reading)
    return fired


class PollScheduler:
    """Scheduler for periodic telemetry polling."""

    def __init__(
        self,
        client: TelemetryClient,
        alarm_service: AlarmService,
        store: TankStore,
        variable_name: str = "LIVELLO",
        interval_seconds: float = 3600,
        extra_terminals: list[str] | None = None,
    ):
        self.client = client
        self.alarm_service = alarm_service
        self.store = store
        self.variable_name = variable_name
        self.interval_seconds = interval_seconds
        self.extra_terminals = extra_terminals or []
        self.running = False

    async def start(self):
        """Start the scheduler loop."""
        self.running = True
        logger.info(f"Poll scheduler started (every {self.interval_seconds}s)")

        while self.running:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Scheduler error: {e}")

            await asyncio.sleep(self.interval_seconds)

    def stop(self):
        """Stop the scheduler."""
        self.running = False
        logger.info("Poll scheduler stopped")

    async def terminals(self) -> list[str]:
        configured = await self.store.list_configured_terminals()
        return sorted(set(configured) | set(self.extra_terminals))

    async def poll_once(self) -> int:
        """Poll every known terminal once; returns how many readings were saved."""
        saved = 0
        for terminal_id in await self.terminals():
            try:
                raw = await self.client.fetch_reading(terminal_id, self.variable_name)
            except TelemetryError as e:
                logger.warning(f"Could not fetch {terminal_id}: {e}")
                continue

            try:
                await ingest_reading(raw.to_reading(), self.alarm_service, self.store)
                saved += 1
            except Exception as e:
                logger.error(f"Error ingesting reading for {terminal_id}: {e}")

        logger.info(f"Poll cycle finished: {saved} readings saved")
        return saved
