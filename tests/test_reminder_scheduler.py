from datetime import datetime, timedelta

import pytest
from structlog.testing import capture_logs

from conftest import T0
from models.transaction import Transaction
from services.events import REMINDER_FIRED
from services.reminder_scheduler import ReminderScheduler


def make_definition(frequency="monthly", next_due_at=datetime(2025, 3, 10, 14, 30), **kwargs):
    values = dict(
        id=1, account_id=1, direction="expense", amount=20.0,
        timestamp=next_due_at, is_recurring_definition=True,
        frequency=frequency, next_due_at=next_due_at, excluded_from_balance=True,
    )
    values.update(kwargs)
    return Transaction(**values)


class TestTriggerShape:
    """Reminder one day before the due date, shaped per frequency."""

    def test_daily(self, scheduler):
        trigger = scheduler.build_trigger(make_definition("daily"))
        assert (trigger.kind, trigger.hour, trigger.minute) == ("daily", 14, 30)

    def test_weekly_uses_weekday_of_the_day_before(self, scheduler):
        # Due Monday -> remind Sunday (6).
        trigger = scheduler.build_trigger(make_definition("weekly"))
        assert (trigger.kind, trigger.weekday, trigger.hour, trigger.minute) == ("weekly", 6, 14, 30)

    def test_monthly(self, scheduler):
        trigger = scheduler.build_trigger(make_definition("monthly"))
        assert (trigger.kind, trigger.day, trigger.hour) == ("monthly", 9, 14)

    def test_monthly_due_on_the_first(self, scheduler):
        trigger = scheduler.build_trigger(make_definition("monthly", datetime(2025, 3, 1, 8)))
        assert trigger.day == 28

    def test_yearly(self, scheduler):
        trigger = scheduler.build_trigger(make_definition("yearly"))
        assert (trigger.kind, trigger.month, trigger.day) == ("yearly", 3, 9)

    def test_midnight_due_uses_reminder_hour(self, scheduler):
        trigger = scheduler.build_trigger(make_definition("weekly", T0))
        assert (trigger.hour, trigger.minute) == (9, 0)

    def test_configured_reminder_hour(self, platform, registry, recurring_dao):
        custom = ReminderScheduler(platform, registry, recurring_dao.get_by_id, reminder_hour=18)
        assert custom.build_trigger(make_definition("daily", T0)).hour == 18

    def test_unknown_frequency_falls_back_to_interval(self, scheduler, clock):
        clock.set(datetime(2025, 3, 1, 14, 30))
        trigger = scheduler.build_trigger(make_definition("quarterly"))
        assert trigger.kind == "interval"
        assert trigger.repeats
        assert trigger.seconds == 8 * 24 * 3600


class TestScheduleAndCancel:

    def test_schedule_records_reminder(self, scheduler, registry, platform):
        definition = make_definition()
        notification_id = scheduler.schedule(definition)

        assert notification_id is not None
        assert [n.identifier for n in platform.list_scheduled()] == [notification_id]
        assert registry.notification_id_for(1) == notification_id
        assert registry.is_scheduled(1, definition.next_due_at)

    def test_reschedule_replaces_previous(self, scheduler, platform):
        first = scheduler.schedule(make_definition())
        second = scheduler.schedule(make_definition())
        assert first != second
        assert [n.identifier for n in platform.list_scheduled()] == [second]

    def test_disabled_cancels_and_sync_drops_record(self, scheduler, registry, platform):
        scheduler.schedule(make_definition())
        assert scheduler.schedule(make_definition(allow_notifications=False)) is None
        assert platform.list_scheduled() == []
        registry.sync()
        assert registry.get(1) is None

    def test_ended_definition_gets_no_reminder(self, scheduler, platform):
        ended = make_definition(end_at=datetime(2025, 3, 1))
        assert scheduler.schedule(ended) is None
        assert platform.list_scheduled() == []

    def test_cancel_unknown(self, scheduler):
        assert scheduler.cancel(404) is False

    def test_cancel(self, scheduler, registry, platform):
        scheduler.schedule(make_definition())
        assert scheduler.cancel(1) is True
        assert registry.get(1) is None
        assert platform.list_scheduled() == []

    def test_permission_denied_is_logged(self, scheduler, registry, platform):
        platform.permission_granted = False
        with capture_logs() as logs:
            assert scheduler.schedule(make_definition()) is None
        assert registry.get(1) is None
        assert [e["event"] for e in logs] == ["reminder_schedule_failed"]

    def test_cancel_all(self, scheduler, registry, platform):
        scheduler.schedule(make_definition(id=1))
        scheduler.schedule(make_definition(id=2))
        assert scheduler.cancel_all() is True
        assert platform.list_scheduled() == []
        assert registry.records() == []


class TestRegistryGuard:
    """check_registry=True keeps a live reminder for an unchanged due date."""

    def test_keeps_existing(self, scheduler, platform):
        scheduler.check_registry = True
        first = scheduler.schedule(make_definition())
        assert scheduler.schedule(make_definition()) == first
        assert len(platform.list_scheduled()) == 1

    def test_due_date_change_reschedules(self, scheduler, platform):
        scheduler.check_registry = True
        first = scheduler.schedule(make_definition())
        moved = scheduler.schedule(make_definition(next_due_at=datetime(2025, 4, 10, 14, 30)))
        assert moved != first
        assert len(platform.list_scheduled()) == 1

    def test_lost_notification_reschedules(self, scheduler, platform):
        scheduler.check_registry = True
        first = scheduler.schedule(make_definition())
        platform.cancel(first)
        again = scheduler.schedule(make_definition())
        assert again not in (None, first)


class TestReminderFired:
    """Delivery or a tap moves the reminder one cycle on from the fired due date."""

    def _monthly(self, recurring, account, **kwargs):
        return recurring.create_definition(
            account.id, 49.0, "expense", "monthly", datetime(2025, 3, 10, 10, 0), **kwargs
        )

    def test_delivery_reschedules_next_cycle(self, recurring, account, platform, registry, events, clock):
        definition = self._monthly(recurring, account)
        fired = []
        events.subscribe(REMINDER_FIRED, lambda obligation_id, due_at: fired.append((obligation_id, due_at)))

        clock.set(datetime(2025, 3, 9, 10, 0))
        delivered = platform.deliver_due()

        assert len(delivered) == 1
        assert fired == [(definition.id, datetime(2025, 3, 10, 10, 0))]
        assert registry.is_scheduled(definition.id, datetime(2025, 4, 10, 10, 0))
        scheduled = platform.list_scheduled()
        assert len(scheduled) == 1
        assert scheduled[0].next_fire_at == datetime(2025, 4, 9, 10, 0)

    def test_user_response_reschedules(self, recurring, account, platform, registry):
        definition = self._monthly(recurring, account)
        platform.respond(platform.list_scheduled()[0])
        assert registry.is_scheduled(definition.id, datetime(2025, 4, 10, 10, 0))

    def test_series_past_end_is_cancelled(self, recurring, account, platform, registry, clock):
        definition = self._monthly(recurring, account, end_at=datetime(2025, 3, 31))
        clock.set(datetime(2025, 3, 9, 10, 0))
        platform.deliver_due()
        assert registry.get(definition.id) is None
        assert platform.list_scheduled() == []

    def test_deleted_obligation_is_cancelled(self, scheduler, registry, platform):
        scheduler.schedule(make_definition(id=31))
        assert scheduler.handle_reminder_fired(31, datetime(2025, 3, 10, 14, 30)) is None
        assert registry.get(31) is None
        assert platform.list_scheduled() == []

    def test_payment_notifications_are_ignored(self, processor, weekly_rent, platform, registry, clock):
        clock.set(T0)
        processor.run_due_sweep(T0)
        before = registry.notification_id_for(weekly_rent.id)
        delivered = platform.deliver_due()
        assert [n.content.title for n in delivered] == ["Payment recorded"]
        assert registry.notification_id_for(weekly_rent.id) == before


class TestFirstFireTime:
    """The first reminder fires the day before next_due_at, not at the next calendar match."""

    @pytest.mark.parametrize("frequency, due_at", [
        ("daily", datetime(2025, 3, 15, 0, 0)),
        ("weekly", datetime(2025, 4, 21, 7, 45)),
        ("monthly", datetime(2025, 6, 15, 9, 0)),
        ("yearly", datetime(2026, 2, 1, 18, 0)),
    ])
    def test_fires_one_day_before_distant_due_date(self, scheduler, platform, frequency, due_at):
        scheduler.schedule(make_definition(frequency, due_at))
        [notification] = platform.list_scheduled()
        assert notification.next_fire_at == scheduler.reminder_time(due_at)
        assert notification.next_fire_at.date() == (due_at - timedelta(days=1)).date()

    def test_nothing_delivered_before_the_day(self, scheduler, platform, registry, clock):
        due_at = datetime(2025, 3, 15, 0, 0)
        scheduler.schedule(make_definition("daily", due_at))

        clock.advance(days=1)
        assert platform.deliver_due() == []
        assert registry.is_scheduled(1, due_at)

        clock.set(datetime(2025, 3, 14, 9, 0))
        delivered = platform.deliver_due()
        assert [n.content.data["due_at"] for n in delivered] == ["2025-03-15 00:00:00"]
