"""
Tests for the poll scheduler.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

from lpg_monitor.services.alarms import AlarmService, ThresholdConfig
from lpg_monitor.services.scheduler import PollScheduler, ingest_reading
from lpg_monitor.services.telemetry import DeviceOffline, RawReading


def raw(terminal_id, value="15", timestamp="2026-03-10T11:00:00"):
    return RawReading(terminal_id=terminal_id, serial="SN", raw_value=value, raw_timestamp=timestamp)


class TestIngestReading:
    def test_evaluates_then_persists(self, store, mailer, clock):
        store.configs["T1"] = ThresholdConfig("T1", min_level=20, alarm_email="ops@example.com")
        service = AlarmService(store, mailer, clock=clock)

        fired = asyncio.run(ingest_reading(raw("T1").to_reading(), service, store))

        assert [f.kind for f in fired] == ["min"]
        assert len(store.readings) == 1
        assert store.readings[0].value == 15.0

    def test_null_value_is_still_persisted(self, store, mailer, clock):
        store.configs["T1"] = ThresholdConfig("T1", min_level=20, alarm_email="ops@example.com")
        service = AlarmService(store, mailer, clock=clock)

        fired = asyncio.run(ingest_reading(raw("T1", value=None).to_reading(), service, store))

        assert fired == []
        assert store.readings[0].value is None


class TestPollScheduler:
    """Tests for PollScheduler.poll_once."""

    def _scheduler(self, store, mailer, clock, client, extra=None):
        return PollScheduler(
            client=client,
            alarm_service=AlarmService(store, mailer, clock=clock),
            store=store,
            extra_terminals=extra,
        )

    def test_polls_configured_and_extra_terminals(self, store, mailer, clock):
        store.configs["T1"] = ThresholdConfig("T1")
        client = MagicMock()
        client.fetch_reading = AsyncMock(side_effect=lambda tid, name: raw(tid, value="55"))
        scheduler = self._scheduler(store, mailer, clock, client, extra=["T2", "T1"])

        saved = asyncio.run(scheduler.poll_once())

        assert saved == 2
        assert [call.args for call in client.fetch_reading.call_args_list] == [
            ("T1", "LIVELLO"),
            ("T2", "LIVELLO"),
        ]
        assert sorted(r.terminal_id for r in store.readings) == ["T1", "T2"]

    def test_offline_terminal_does_not_stop_cycle(self, store, mailer, clock):
        store.configs["T1"] = ThresholdConfig("T1")
        store.configs["T2"] = ThresholdConfig("T2")

        async def fetch(tid, name):
            if tid == "T1":
                raise DeviceOffline("no LIVELLO")
            return raw(tid)

        client = MagicMock()
        client.fetch_reading = AsyncMock(side_effect=fetch)
        scheduler = self._scheduler(store, mailer, clock, client)

        saved = asyncio.run(scheduler.poll_once())

        assert saved == 1
        assert [r.terminal_id for r in store.readings] == ["T2"]

    def test_storage_error_is_logged_and_skipped(self, store, mailer, clock):
        store.configs["T1"] = ThresholdConfig("T1")
        store.insert_reading = AsyncMock(side_effect=OSError("db down"))
        client = MagicMock()
        client.fetch_reading = AsyncMock(return_value=raw("T1"))
        scheduler = self._scheduler(store, mailer, clock, client)

        assert asyncio.run(scheduler.poll_once()) == 0

    def test_repeated_poll_of_same_sample_stores_once(self, store, mailer, clock):
        store.configs["T1"] = ThresholdConfig("T1")
        client = MagicMock()
        client.fetch_reading = AsyncMock(return_value=raw("T1", value="50"))
        scheduler = self._scheduler(store, mailer, clock, client)

        asyncio.run(scheduler.poll_once())
        asyncio.run(scheduler.poll_once())

        assert len(store.readings) == 1

    def test_stop(self, store, mailer, clock):
        scheduler = self._scheduler(store, mailer, clock, MagicMock())
        scheduler.running = True

        scheduler.stop()

        assert scheduler.running is False
