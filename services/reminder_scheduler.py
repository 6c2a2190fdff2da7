from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog

from models.notification import NotificationContent, ScheduledNotification, Trigger
from models.transaction import Transaction
from services.events import (
    EventChannel,
    NOTIFICATION_RECEIVED,
    NOTIFICATION_RESPONSE,
    REMINDER_FIRED,
)
from services.notification_platform import NotificationPlatform
from services.notification_registry import NotificationRegistry
from utils.constants import (
    DEFAULT_REMINDER_HOUR,
    NOTIFICATION_TYPE_REMINDER,
    REMINDER_LEAD_DAYS,
)
from utils.currency import format_currency
from utils.date_helpers import (
    advance_by_frequency,
    format_datetime,
    now as default_clock,
    parse_datetime,
)

log = structlog.get_logger(__name__)


class ReminderScheduler:
    """Keeps one reminder notification per obligation, a day before it is due.

    With check_registry=False every schedule() cancels and reschedules.
    With check_registry=True an existing live reminder for the same due date
    is kept as is.
    """

    def __init__(
        self,
        platform: NotificationPlatform,
        registry: NotificationRegistry,
        lookup: Callable[[int], Optional[Transaction]],
        events: EventChannel | None = None,
        clock: Callable[[], datetime] = default_clock,
        reminder_hour: int = DEFAULT_REMINDER_HOUR,
        check_registry: bool = False,
    ):
        self._platform = platform
        self._registry = registry
        self._lookup = lookup
        self._events = events or EventChannel()
        self._clock = clock
        self._reminder_hour = reminder_hour
        self.check_registry = check_registry
        self._unsubscribers: list[Callable[[], None]] = []

    @property
    def registry(self) -> NotificationRegistry:
        return self._registry

    # ── Trigger shape ─────────────────────────────────────────────────────────

    def reminder_time(self, due_at: datetime) -> datetime:
        """One day before due_at; a midnight due time moves to the reminder hour."""
        remind_at = due_at - timedelta(days=REMINDER_LEAD_DAYS)
        if remind_at.hour == 0 and remind_at.minute == 0:
            remind_at = remind_at.replace(hour=self._reminder_hour)
        return remind_at

    def build_trigger(self, definition: Transaction) -> Trigger:
        remind_at = self.reminder_time(definition.next_due_at).replace(second=0, microsecond=0)
        hour, minute = remind_at.hour, remind_at.minute
        if definition.frequency == "daily":
            return Trigger("daily", hour=hour, minute=minute, start=remind_at)
        if definition.frequency == "weekly":
            return Trigger(
                "weekly", hour=hour, minute=minute,
                weekday=remind_at.weekday(), start=remind_at,
            )
        if definition.frequency == "monthly":
            return Trigger("monthly", hour=hour, minute=minute, day=remind_at.day, start=remind_at)
        if definition.frequency == "yearly":
            return Trigger(
                "yearly", hour=hour, minute=minute,
                day=remind_at.day, month=remind_at.month, start=remind_at,
            )
        seconds = int((remind_at - self._clock()).total_seconds())
        return Trigger("interval", seconds=max(60, seconds), repeats=True)

    def _content(self, definition: Transaction) -> NotificationContent:
        return NotificationContent(
            title=f"Reminder: {definition.label}",
            body=f"{format_currency(definition.amount)} {definition.direction} is due tomorrow",
            data={
                "type": NOTIFICATION_TYPE_REMINDER,
                "obligation_id": definition.id,
                "due_at": format_datetime(definition.next_due_at),
            },
        )

    # ── Schedule / cancel ─────────────────────────────────────────────────────

    def _live_reminder(self, definition: Transaction) -> str | None:
        if not self._registry.is_scheduled(definition.id, definition.next_due_at):
            return None
        notification_id = self._registry.notification_id_for(definition.id)
        try:
            live = {n.identifier for n in self._platform.list_scheduled()}
        except Exception:
            log.exception("reminder_lookup_failed", obligation_id=definition.id)
            return None
        return notification_id if notification_id in live else None

    def schedule(self, definition: Transaction) -> str | None:
        """Schedule the reminder for definition.next_due_at.

        Returns the notification id, or None when nothing was scheduled.
        """
        if not definition.allow_notifications or definition.is_deleted:
            self.cancel(definition.id)
            return None
        if definition.state(self._clock()) == "ended":
            self.cancel(definition.id)
            return None

        if self.check_registry:
            existing = self._live_reminder(definition)
            if existing:
                log.debug("reminder_kept", obligation_id=definition.id, notification_id=existing)
                return existing

        self.cancel(definition.id)
        try:
            trigger = self.build_trigger(definition)
            notification_id = self._platform.schedule(self._content(definition), trigger)
        except Exception:
            log.exception("reminder_schedule_failed", obligation_id=definition.id)
            return None

        self._registry.upsert(definition.id, notification_id, definition.next_due_at)
        log.info(
            "reminder_scheduled",
            obligation_id=definition.id,
            notification_id=notification_id,
            trigger=trigger.kind,
            due_at=format_datetime(definition.next_due_at),
        )
        return notification_id

    def cancel(self, obligation_id: int) -> bool:
        notification_id = self._registry.notification_id_for(obligation_id)
        if notification_id is None:
            return False
        try:
            self._platform.cancel(notification_id)
        except Exception:
            log.exception("reminder_cancel_failed", obligation_id=obligation_id)
            return False
        self._registry.remove(obligation_id)
        log.info("reminder_cancelled", obligation_id=obligation_id, notification_id=notification_id)
        return True

    def cancel_all(self) -> bool:
        try:
            self._platform.cancel_all()
        except Exception:
            log.exception("reminder_cancel_all_failed")
            return False
        self._registry.clear()
        log.info("reminders_cancelled_all")
        return True

    # ── Firing ────────────────────────────────────────────────────────────────

    def handle_reminder_fired(self, obligation_id: int, due_at: datetime | None) -> str | None:
        """Move the reminder to the cycle after due_at.

        due_at is the due date the fired reminder was scheduled for; the next
        one is computed from it, not from the stored definition.
        """
        definition = self._lookup(obligation_id)
        if definition is None:
            self.cancel(obligation_id)
            return None

        previous = due_at or definition.next_due_at
        try:
            next_due = advance_by_frequency(previous, definition.frequency)
        except (TypeError, ValueError):
            log.warning(
                "reminder_frequency_unsupported",
                obligation_id=obligation_id,
                frequency=definition.frequency,
            )
            return None

        if definition.end_at is not None and next_due > definition.end_at:
            self.cancel(obligation_id)
            log.info("reminder_series_finished", obligation_id=obligation_id)
            return None
        return self.schedule(replace(definition, next_due_at=next_due))

    def _on_notification(self, notification: ScheduledNotification, **_):
        data = notification.content.data
        if data.get("type") != NOTIFICATION_TYPE_REMINDER:
            return
        obligation_id = data.get("obligation_id")
        if obligation_id is None:
            return
        due_at = parse_datetime(data.get("due_at"))
        self._events.publish(REMINDER_FIRED, obligation_id=obligation_id, due_at=due_at)
        self.handle_reminder_fired(obligation_id, due_at)

    def listen(self) -> None:
        """Subscribe to delivered and tapped notifications."""
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self._events.subscribe(NOTIFICATION_RECEIVED, self._on_notification),
            self._events.subscribe(NOTIFICATION_RESPONSE, self._on_notification),
        ]

    def stop_listening(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
