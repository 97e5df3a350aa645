"""
Alarm Service - threshold alarms for tank levels

Each terminal has two independent rate-limited alarms ("min" and "max").
An alarm fires when the level crosses its bound and the cooldown since the
last delivered email has elapsed. Re-entering the safe band clears the
cooldown so the next crossing alarms immediately.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Protocol

from lpg_monitor.services.mailer import MailerError
from lpg_monitor.services.telemetry import Reading

logger = logging.getLogger(__name__)

DEFAULT_THROTTLE = timedelta(minutes=60)


@dataclass
class ThresholdConfig:
    """Per-terminal alarm configuration and cooldown state."""

    terminal_id: str
    min_level: float | None = None
    max_level: float | None = None
    alarm_email: str | None = None
    last_min_alarm_sent_at: datetime | None = None
    last_max_alarm_sent_at: datetime | None = None

    @property
    def recipients(self) -> list[str]:
        if not self.alarm_email:
            return []
        return [addr.strip() for addr in re.split(r"[,;]", self.alarm_email) if addr.strip()]


@dataclass
class AlarmNotification:
    """An alarm email that is due to be sent."""

    kind: str  # "min" or "max"
    terminal_id: str
    value: float
    threshold: float
    recipients: list[str]
    subject: str
    body: str
    created_at: datetime


@dataclass
class CooldownPatch:
    """Partial update of the cooldown markers.

    A field left as ``None`` is untouched; ``clear_*`` resets the marker.
    """

    min_sent_at: datetime | None = None
    max_sent_at: datetime | None = None
    clear_min: bool = False
    clear_max: bool = False

    @property
    def is_empty(self) -> bool:
        return not (self.min_sent_at or self.max_sent_at or self.clear_min or self.clear_max)

    def as_values(self) -> dict[str, datetime | None]:
        """Column values to write, keyed by ThresholdConfig field name."""
        values: dict[str, datetime | None] = {}
        if self.clear_min:
            values["last_min_alarm_sent_at"] = None
        if self.clear_max:
            values["last_max_alarm_sent_at"] = None
        if self.min_sent_at is not None:
            values["last_min_alarm_sent_at"] = self.min_sent_at
        if self.max_sent_at is not None:
            values["last_max_alarm_sent_at"] = self.max_sent_at
        return values


@dataclass
class Evaluation:
    notifications: list[AlarmNotification] = field(default_factory=list)
    patch: CooldownPatch = field(default_factory=CooldownPatch)


@dataclass
class FiredAlarm:
    """An alarm that was actually delivered."""

    kind: str
    terminal_id: str
    value: float
    threshold: float
    sent_at: datetime

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "terminal_id": self.terminal_id,
            "value": self.value,
            "threshold": self.threshold,
            "sent_at": self.sent_at.isoformat(),
        }


def cooldown_elapsed(last_sent_at: datetime | None, now: datetime, throttle: timedelta) -> bool:
    if last_sent_at is None:
        return True
    return now - last_sent_at >= throttle


def _build_notification(
    kind: str,
    reading: Reading,
    threshold: float,
    recipients: list[str],
    now: datetime,
) -> AlarmNotification:
    if kind == "min":
        label = "below minimum"
    else:
        label = "above maximum"

    subject = (
        f"[LPG Alarm] Terminal {reading.terminal_id} level {reading.value:g}% "
        f"{label} {threshold:g}%"
    )
    body = (
        f"Tank level alarm\n\n"
        f"Terminal: {reading.terminal_id}\n"
        f"Serial: {reading.serial or '-'}\n"
        f"Level: {reading.value:g}%\n"
        f"Threshold ({kind}): {threshold:g}%\n"
        f"Reading time: {reading.timestamp.isoformat()}\n"
        f"Alarm time: {now.isoformat()}\n"
    )
    return AlarmNotification(
        kind=kind,
        terminal_id=reading.terminal_id,
        value=reading.value,
        threshold=threshold,
        recipients=recipients,
        subject=subject,
        body=body,
        created_at=now,
    )


def evaluate(
    reading: Reading,
    config: ThresholdConfig | None,
    now: datetime,
    throttle: timedelta = DEFAULT_THROTTLE,
) -> Evaluation:
    """Decide which alarms are due for ``reading`` and how the cooldown changes.

    The returned patch only carries clears; markers for fired alarms are set
    by the caller once delivery succeeded.
    """
    result = Evaluation()

    if reading.value is None or reading.timestamp is None:
        return result
    if config is None or not config.recipients:
        return result

    value = reading.value
    min_level = config.min_level
    max_level = config.max_level

    # The two checks are independent, inverted bounds may fire both
    if min_level is not None and value < min_level:
        if cooldown_elapsed(config.last_min_alarm_sent_at, now, throttle):
            result.notifications.append(
                _build_notification("min", reading, min_level, config.recipients, now)
            )

    if max_level is not None and value > max_level:
        if cooldown_elapsed(config.last_max_alarm_sent_at, now, throttle):
            result.notifications.append(
                _build_notification("max", reading, max_level, config.recipients, now)
            )

    if min_level is not None and max_level is not None:
        if min_level <= value <= max_level:
            result.patch.clear_min = True
            result.patch.clear_max = True
    elif min_level is not None:
        if value >= min_level:
            result.patch.clear_min = True
    elif max_level is not None:
        if value <= max_level:
            result.patch.clear_max = True

    # Nothing to clear if the markers are already unset
    if config.last_min_alarm_sent_at is None:
        result.patch.clear_min = False
    if config.last_max_alarm_sent_at is None:
        result.patch.clear_max = False

    return result


class ThresholdConfigStore(Protocol):
    async def get_threshold_config(self, terminal_id: str) -> ThresholdConfig | None: ...

    async def update_cooldown_markers(self, terminal_id: str, patch: CooldownPatch) -> None: ...


class Mailer(Protocol):
    async def send_email(self, to: list[str], subject: str, body: str) -> None: ...


class AlarmService:
    """Runs the evaluator against stored config, sends emails, persists markers."""

    def __init__(
        self,
        store: ThresholdConfigStore,
        mailer: Mailer | None,
        throttle: timedelta = DEFAULT_THROTTLE,
        clock=None,
    ):
        self.store = store
        self.mailer = mailer
        self.throttle = throttle
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, terminal_id: str) -> asyncio.Lock:
        lock = self._locks.get(terminal_id)
        if lock is None:
            lock = self._locks[terminal_id] = asyncio.Lock()
        return lock

    async def evaluate_and_maybe_alarm(self, reading: Reading) -> list[FiredAlarm]:
        """Evaluate a new reading; returns the alarms that were delivered."""
        if reading.value is None or reading.timestamp is None:
            logger.debug(f"Skipping alarm check for {reading.terminal_id}: unusable reading")
            return []

        # Serialise per terminal so a double poll cannot send twice
        async with self._lock_for(reading.terminal_id):
            config = await self.store.get_threshold_config(reading.terminal_id)
            now = self._clock()
            evaluation = evaluate(reading, config, now, self.throttle)

            fired: list[FiredAlarm] = []
            for notification in evaluation.notifications:
                if await self._deliver(notification):
                    if notification.kind == "min":
                        evaluation.patch.min_sent_at = now
                    else:
                        evaluation.patch.max_sent_at = now
                    fired.append(FiredAlarm(
                        kind=notification.kind,
                        terminal_id=notification.terminal_id,
                        value=notification.value,
                        threshold=notification.threshold,
                        sent_at=now,
                    ))

            if not evaluation.patch.is_empty:
                await self.store.update_cooldown_markers(reading.terminal_id, evaluation.patch)

            return fired

    async def _deliver(self, notification: AlarmNotification) -> bool:
        if self.mailer is None:
            logger.info(
                f"No email transport configured, not sending {notification.kind} alarm "
                f"for {notification.terminal_id}: {notification.subject}"
            )
            return False

        logger.warning(
            f"Sending {notification.kind} alarm for {notification.terminal_id} "
            f"to {', '.join(notification.recipients)}"
        )
        try:
            await self.mailer.send_email(notification.recipients, notification.subject, notification.body)
        except MailerError as e:
            logger.error(f"Failed to send {notification.kind} alarm for {notification.terminal_id}: {e}")
            return False
        return True
