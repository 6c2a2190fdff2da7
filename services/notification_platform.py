"""
Notification facility.

NotificationPlatform is the interface the scheduler talks to. The local
implementation keeps scheduled notifications in memory, works out when each
one fires from its trigger shape, and hands delivered notifications to the
event channel. The host window pumps deliver_due() from its event loop.
"""

import calendar
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import uuid4

import structlog

from models.notification import (
    TRIGGER_KINDS,
    NotificationContent,
    ScheduledNotification,
    Trigger,
)
from services.events import EventChannel, NOTIFICATION_RECEIVED, NOTIFICATION_RESPONSE
from utils.date_helpers import now as default_clock

log = structlog.get_logger(__name__)


class NotificationError(Exception):
    """The notification facility rejected a request."""


class NotificationPermissionError(NotificationError):
    """Notifications are not permitted on this device."""


class NotificationPlatform(ABC):

    @abstractmethod
    def schedule(self, content: NotificationContent, trigger: Optional[Trigger]) -> str:
        """
        Schedule a notification.

        Args:
            content: Title, body and data payload
            trigger: Repeating trigger shape, or None to deliver immediately

        Returns:
            The notification identifier

        Raises:
            NotificationError: If the facility rejects the request
        """

    @abstractmethod
    def cancel(self, identifier: str) -> None:
        """Cancel a scheduled notification. Unknown identifiers are ignored."""

    @abstractmethod
    def list_scheduled(self) -> list[ScheduledNotification]:
        """Return every notification still scheduled."""

    @abstractmethod
    def cancel_all(self) -> None:
        """Cancel every scheduled notification."""


def next_fire_time(
    trigger: Optional[Trigger], after: datetime, anchor: datetime
) -> Optional[datetime]:
    """First moment strictly after `after` at which the trigger fires.

    Never earlier than trigger.start. anchor is the scheduling time;
    interval triggers count from it.
    """
    if trigger is None:
        return after
    if trigger.start is not None and after < trigger.start:
        after = trigger.start - timedelta(seconds=1)

    def at(d: datetime) -> datetime:
        return datetime(d.year, d.month, d.day, trigger.hour, trigger.minute)

    if trigger.kind == "daily":
        candidate = at(after)
        if candidate <= after:
            candidate += timedelta(days=1)
        return candidate

    if trigger.kind == "weekly":
        candidate = at(after) + timedelta(days=(trigger.weekday - after.weekday()) % 7)
        if candidate <= after:
            candidate += timedelta(days=7)
        return candidate

    if trigger.kind == "monthly":
        year, month = after.year, after.month
        for _ in range(48):
            if trigger.day <= calendar.monthrange(year, month)[1]:
                candidate = datetime(year, month, trigger.day, trigger.hour, trigger.minute)
                if candidate > after:
                    return candidate
            month += 1
            if month > 12:
                year, month = year + 1, 1
        return None

    if trigger.kind == "yearly":
        for year in range(after.year, after.year + 9):
            if trigger.day <= calendar.monthrange(year, trigger.month)[1]:
                candidate = datetime(year, trigger.month, trigger.day, trigger.hour, trigger.minute)
                if candidate > after:
                    return candidate
        return None

    if trigger.kind == "interval":
        step = timedelta(seconds=max(1, trigger.seconds or 0))
        candidate = anchor + step
        if candidate > after:
            return candidate
        if not trigger.repeats:
            return None
        return anchor + step * ((after - anchor) // step + 1)

    return None


def _validate_trigger(trigger: Trigger) -> None:
    if trigger.kind not in TRIGGER_KINDS:
        raise NotificationError(f"Unknown trigger kind: {trigger.kind}")
    if not (0 <= trigger.hour <= 23 and 0 <= trigger.minute <= 59):
        raise NotificationError("Trigger hour/minute out of range.")
    if trigger.kind == "weekly" and trigger.weekday not in range(7):
        raise NotificationError("Weekly trigger needs a weekday 0-6.")
    if trigger.kind in ("monthly", "yearly") and trigger.day not in range(1, 32):
        raise NotificationError("Trigger needs a day 1-31.")
    if trigger.kind == "yearly" and trigger.month not in range(1, 13):
        raise NotificationError("Yearly trigger needs a month 1-12.")
    if trigger.kind == "interval" and not trigger.seconds:
        raise NotificationError("Interval trigger needs a positive number of seconds.")


class LocalNotificationPlatform(NotificationPlatform):
    """In-process notification facility delivering through an EventChannel."""

    def __init__(
        self,
        events: EventChannel | None = None,
        clock: Callable[[], datetime] = default_clock,
        permission_granted: bool = True,
    ):
        self._events = events or EventChannel()
        self._clock = clock
        self._scheduled: dict[str, ScheduledNotification] = {}
        self._lock = threading.Lock()
        self.permission_granted = permission_granted

    @property
    def events(self) -> EventChannel:
        return self._events

    def schedule(self, content: NotificationContent, trigger: Optional[Trigger]) -> str:
        if not self.permission_granted:
            raise NotificationPermissionError("Notification permission not granted.")
        if trigger is not None:
            _validate_trigger(trigger)

        moment = self._clock()
        fire_at = next_fire_time(trigger, moment, moment)
        if fire_at is None:
            raise NotificationError(f"Trigger never fires: {trigger}")

        identifier = str(uuid4())
        with self._lock:
            self._scheduled[identifier] = ScheduledNotification(
                identifier=identifier,
                content=content,
                trigger=trigger,
                scheduled_at=moment,
                next_fire_at=fire_at,
            )
        log.debug("notification_scheduled", identifier=identifier, fire_at=fire_at.isoformat())
        return identifier

    def cancel(self, identifier: str) -> None:
        with self._lock:
            self._scheduled.pop(identifier, None)

    def list_scheduled(self) -> list[ScheduledNotification]:
        with self._lock:
            items = list(self._scheduled.values())
        return sorted(items, key=lambda n: n.next_fire_at or datetime.max)

    def cancel_all(self) -> None:
        with self._lock:
            self._scheduled.clear()

    def deliver_due(self, moment: datetime | None = None) -> list[ScheduledNotification]:
        """Deliver every notification whose fire time has come.

        One-shot notifications are removed; repeating ones move to their next
        fire time unless a handler cancelled them meanwhile.
        """
        moment = moment or self._clock()
        with self._lock:
            due = [
                n for n in self._scheduled.values()
                if n.next_fire_at is not None and n.next_fire_at <= moment
            ]
        due.sort(key=lambda n: n.next_fire_at)

        for notification in due:
            self._events.publish(NOTIFICATION_RECEIVED, notification=notification)
            with self._lock:
                current = self._scheduled.get(notification.identifier)
                if current is None:
                    continue
                if current.trigger is None or not current.trigger.repeats:
                    del self._scheduled[notification.identifier]
                else:
                    current.next_fire_at = next_fire_time(
                        current.trigger, moment, current.scheduled_at
                    )
        return due

    def respond(self, notification: ScheduledNotification) -> None:
        """User interacted with a delivered notification."""
        self._events.publish(NOTIFICATION_RESPONSE, notification=notification)
