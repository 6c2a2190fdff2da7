"""
Daily billing sweep.

Turns obligations due today into ledger entries, tells the user about each
recorded payment, then reconciles the reminder registry with what the
notification facility actually holds.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

import structlog

from database.db_manager import DatabaseManager
from models.notification import NotificationContent
from models.transaction import Transaction
from services.notification_platform import NotificationPlatform
from services.recurring_service import AlreadyMaterializedError, RecurringService
from services.reminder_scheduler import ReminderScheduler
from utils.constants import NOTIFICATION_TYPE_PAYMENT
from utils.currency import format_currency
from utils.date_helpers import format_datetime, now as default_clock

log = structlog.get_logger(__name__)


@dataclass
class SweepResult:
    processed: int = 0
    errors: int = 0
    skipped: int = 0          # already paid by another trigger
    occurrences: list[Transaction] = field(default_factory=list)


@dataclass
class DailyTaskResult:
    sweep: SweepResult
    records_removed: int = 0
    reminders_restored: int = 0


class BillingProcessor:
    def __init__(
        self,
        recurring_service: RecurringService,
        platform: NotificationPlatform,
        scheduler: ReminderScheduler,
        db: DatabaseManager | None = None,
        clock: Callable[[], datetime] = default_clock,
    ):
        self._recurring = recurring_service
        self._platform = platform
        self._scheduler = scheduler
        self._db = db
        self._clock = clock

    def run_due_sweep(self, as_of: datetime | None = None) -> SweepResult:
        """Materialize every obligation due on the day of as_of, one at a time.

        A failing obligation is counted and logged; the rest still run.
        """
        moment = as_of or self._clock()
        result = SweepResult()
        try:
            due = self._recurring.due_today(moment)
        except Exception:
            log.exception("due_sweep_query_failed", as_of=format_datetime(moment))
            result.errors = 1
            return result

        log.info("due_sweep_started", as_of=format_datetime(moment), due=len(due))
        for definition in due:
            try:
                occurrence = self._recurring.materialize(
                    definition.id, as_of=moment, expected_due_at=definition.next_due_at
                )
            except AlreadyMaterializedError:
                result.skipped += 1
                log.info("obligation_already_paid", obligation_id=definition.id)
                continue
            except Exception:
                result.errors += 1
                log.exception("obligation_materialize_failed", obligation_id=definition.id)
                continue

            result.processed += 1
            result.occurrences.append(occurrence)
            self.notify_payment_recorded(definition)

        log.info(
            "due_sweep_finished",
            processed=result.processed,
            errors=result.errors,
            skipped=result.skipped,
        )
        return result

    def notify_payment_recorded(self, definition: Transaction) -> str | None:
        """Immediate notification; a failure never undoes the payment."""
        content = NotificationContent(
            title="Payment recorded",
            body=f"{definition.label}: {format_currency(definition.amount)} {definition.direction} recorded",
            data={
                "type": NOTIFICATION_TYPE_PAYMENT,
                "obligation_id": definition.id,
                "amount": definition.amount,
            },
        )
        try:
            return self._platform.schedule(content, None)
        except Exception:
            log.exception("payment_notification_failed", obligation_id=definition.id)
            return None

    def restore_reminders(self) -> int:
        """Schedule reminders for live obligations the registry has no record of."""
        registry = self._scheduler.registry
        restored = 0
        for definition in self._recurring.get_all():
            if not definition.allow_notifications or definition.state(self._clock()) == "ended":
                continue
            if not registry.needs_reschedule(definition.id, definition.next_due_at):
                continue
            if self._scheduler.schedule(definition):
                restored += 1
        return restored

    def execute_daily_tasks(self, as_of: datetime | None = None) -> DailyTaskResult:
        """Due sweep, then registry sync and reminder repair."""
        moment = as_of or self._clock()
        log.info("daily_tasks_started", as_of=format_datetime(moment))
        report = DailyTaskResult(sweep=self.run_due_sweep(moment))

        report.records_removed = self._scheduler.registry.sync()
        try:
            report.reminders_restored = self.restore_reminders()
        except Exception:
            log.exception("reminder_restore_failed")

        if self._db is not None:
            self._db.set_setting("last_sweep_at", format_datetime(moment))
        log.info(
            "daily_tasks_finished",
            processed=report.sweep.processed,
            errors=report.sweep.errors,
            skipped=report.sweep.skipped,
            records_removed=report.records_removed,
            reminders_restored=report.reminders_restored,
        )
        return report
