"""
Consumption Service - daily and monthly gas usage from level history

Consumption in a day is the sum of all downward steps between consecutive
readings of that day. Rises (refills, sensor noise) are ignored rather than
subtracted, so an intra-day refill neither hides earlier usage nor makes the
figure negative.
"""

import logging
import re
import time
from dataclasses import dataclass
from datetime import date, datetime, time as dt_time, timedelta, timezone
from typing import Iterable, Protocol

logger = logging.getLogger(__name__)

MIN_READINGS_PER_DAY = 3
WINDOW_DAYS = 30
KNOWN_TERMINAL_LOOKBACK_DAYS = 60

# "1,000" is a thousands separator, "2,5" a decimal comma
_THOUSANDS_RE = re.compile(r"\d{1,3}(?:,\d{3})+(?:\.\d+)?")
_NUMBER_RE = re.compile(r"\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:[.,]\d+)?")


@dataclass(frozen=True)
class DailyBucket:
    day: date
    percent_drop: float
    sample_count: int


def parse_capacity_liters(raw) -> float | None:
    """Capacity in liters from free-form input, e.g. "1000 L" or "2,5"."""
    if raw is None:
        return None
    if isinstance(raw, (int, float)):
        return float(raw) if raw > 0 else None
    match = _NUMBER_RE.search(str(raw))
    if not match:
        return None
    token = match.group(0)
    if _THOUSANDS_RE.fullmatch(token):
        value = float(token.replace(",", ""))
    else:
        value = float(token.replace(",", "."))
    return value if value > 0 else None


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def compute_daily_series(readings: Iterable[tuple[datetime | None, float | None]]) -> list[DailyBucket]:
    """Reduce ``(timestamp, value)`` samples to one bucket per UTC day.

    Samples without a timestamp or value are skipped. Input is sorted here as
    well, though callers are expected to pass ascending timestamps.
    """
    usable = sorted(
        ((_as_utc(ts), float(value)) for ts, value in readings
         if ts is not None and value is not None),
        key=lambda sample: sample[0],
    )

    buckets: list[DailyBucket] = []
    current_day: date | None = None
    prev: float | None = None
    drop = 0.0
    count = 0

    for ts, value in usable:
        day = ts.date()
        if day != current_day:
            if current_day is not None:
                buckets.append(DailyBucket(current_day, drop, count))
            current_day = day
            prev = None
            drop = 0.0
            count = 0

        if prev is not None and value < prev:
            drop += prev - value
        prev = value
        count += 1

    if current_day is not None:
        buckets.append(DailyBucket(current_day, drop, count))

    return buckets


def _round2(value: float | None) -> float | None:
    if value is None:
        return None
    return round(value, 2)


def _liters(capacity: float | None, percent: float | None) -> float | None:
    if capacity is None or percent is None:
        return None
    return capacity * percent / 100


def consumption_window(now: datetime, days: int = WINDOW_DAYS) -> tuple[datetime, datetime]:
    """The ``days`` full UTC days before today; today itself is excluded."""
    today = now.astimezone(timezone.utc).date()
    end = datetime.combine(today, dt_time.min, tzinfo=timezone.utc)
    return end - timedelta(days=days), end


def build_report(
    terminal_id: str,
    buckets: list[DailyBucket],
    window: tuple[datetime, datetime],
    capacity_liters: float | None,
    min_readings_per_day: int = MIN_READINGS_PER_DAY,
) -> dict:
    start, end = window
    yesterday = (end - timedelta(days=1)).date()

    daily = None
    for bucket in buckets:
        if bucket.day == yesterday:
            daily = {
                "date": bucket.day.isoformat(),
                "percent_drop": _round2(bucket.percent_drop),
                "liters": _round2(_liters(capacity_liters, bucket.percent_drop)),
                "samples": bucket.sample_count,
            }
            break

    # Sparse days (outages) would drag the average down
    included = [b.percent_drop for b in buckets if b.sample_count >= min_readings_per_day]
    average = sum(included) / len(included) if included else None

    # Totals keep partial days, their drops were still measured
    total = sum(b.percent_drop for b in buckets)

    return {
        "terminal_id": terminal_id,
        "capacity_liters": _round2(capacity_liters),
        "window": {"from": start.isoformat(), "to": end.isoformat()},
        "daily": daily,
        "monthly": {
            "average_percent_per_day": _round2(average),
            "average_liters_per_day": _round2(_liters(capacity_liters, average)),
            "total_percent_30d": _round2(total),
            "total_liters_30d": _round2(_liters(capacity_liters, total)),
            "days_included": len(included),
            "days_with_data": len(buckets),
        },
    }


class ReadingHistory(Protocol):
    async def query_readings_in_range(
        self, terminal_id: str, start: datetime, end: datetime
    ) -> list[tuple[datetime, float | None]]: ...

    async def get_capacity_liters(self, terminal_id: str) -> float | None: ...

    async def list_known_terminals(self, since: datetime) -> list[str]: ...


class ReportCache:
    """Small TTL cache for consumption reports."""

    def __init__(self, ttl_seconds: float = 60, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple, tuple[float, dict]] = {}

    def get(self, key: tuple) -> dict | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            return None
        return value

    def set(self, key: tuple, value: dict) -> None:
        now = self._clock()
        # Keys from earlier windows are never read again
        expired = [k for k, (stored_at, _) in self._entries.items()
                   if now - stored_at > self.ttl_seconds]
        for k in expired:
            del self._entries[k]
        self._entries[key] = (now, value)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class ConsumptionService:
    """Builds consumption reports from stored history."""

    def __init__(
        self,
        history: ReadingHistory,
        min_readings_per_day: int = MIN_READINGS_PER_DAY,
        window_days: int = WINDOW_DAYS,
        lookback_days: int = KNOWN_TERMINAL_LOOKBACK_DAYS,
        cache: ReportCache | None = None,
        clock=None,
    ):
        self.history = history
        self.min_readings_per_day = min_readings_per_day
        self.window_days = window_days
        self.lookback_days = lookback_days
        self.cache = cache
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def report(self, terminal_id: str) -> dict:
        window = consumption_window(self._clock(), self.window_days)
        key = (terminal_id, window[0], window[1])

        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        readings = await self.history.query_readings_in_range(terminal_id, *window)
        capacity = await self.history.get_capacity_liters(terminal_id)
        buckets = compute_daily_series(readings)
        result = build_report(terminal_id, buckets, window, capacity, self.min_readings_per_day)

        if self.cache is not None:
            self.cache.set(key, result)
        return result

    async def report_all(self) -> dict:
        since = self._clock() - timedelta(days=self.lookback_days)
        terminals = await self.history.list_known_terminals(since)
        logger.debug(f"Building consumption reports for {len(terminals)} terminals")
        rows = [await self.report(terminal_id) for terminal_id in terminals]
        return {"rows": rows}

    async def get_consumption_report(self, terminal_id: str | None = None) -> dict:
        """Report for one terminal, or ``{"rows": [...]}`` for all of them."""
        if terminal_id:
            return await self.report(terminal_id)
        return await self.report_all()
