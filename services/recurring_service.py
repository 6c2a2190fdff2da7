import sqlite3
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable

import structlog

from database.errors import NotFoundError, StorageError
from database.recurring_dao import RecurringDAO, UPDATABLE_FIELDS
from database.transaction_dao import TransactionDAO
from models.transaction import Transaction
from services.events import EventChannel, OBLIGATION_MATERIALIZED
from services.reminder_scheduler import ReminderScheduler
from utils.constants import DIRECTIONS, FREQUENCIES, UPCOMING_DAYS
from utils.date_helpers import (
    advance_by_frequency,
    end_of_day,
    format_datetime,
    now as default_clock,
    start_of_day,
)

log = structlog.get_logger(__name__)

# Changes to these fields move or drop the reminder.
REMINDER_FIELDS = ("allow_notifications", "next_due_at", "frequency", "end_at")


class AlreadyMaterializedError(ValueError):
    """The billing cycle was already paid by another trigger."""


class ObligationEndedError(ValueError):
    """The obligation is past its end date."""


class RecurringService:
    def __init__(
        self,
        recurring_dao: RecurringDAO,
        tx_dao: TransactionDAO,
        scheduler: ReminderScheduler | None = None,
        events: EventChannel | None = None,
        clock: Callable[[], datetime] = default_clock,
    ):
        self._dao = recurring_dao
        self._tx_dao = tx_dao
        self._scheduler = scheduler
        self._events = events or EventChannel()
        self._clock = clock
        # Serializes materialization across the UI and background threads.
        self._lock = tx_dao.db.lock

    def get_all(self) -> list[Transaction]:
        return self._dao.get_all()

    def get_by_id(self, definition_id: int) -> Transaction | None:
        return self._dao.get_by_id(definition_id)

    def _require(self, definition_id: int) -> Transaction:
        definition = self._dao.get_by_id(definition_id)
        if definition is None:
            raise NotFoundError(f"Obligation {definition_id} not found.")
        return definition

    # ── Definition CRUD ───────────────────────────────────────────────────────

    def create_definition(
        self,
        account_id: int,
        amount: float,
        direction: str,
        frequency: str,
        next_due_at: datetime,
        title: str = "",
        note: str | None = None,
        category_id: int | None = None,
        end_at: datetime | None = None,
        end_after_occurrences: int | None = None,
        allow_notifications: bool = True,
    ) -> Transaction:
        """
        Create a recurring obligation in the Scheduled state.

        Args:
            end_after_occurrences: Alternative to end_at; the obligation ends
                after this many payments

        Raises:
            ValueError: On invalid input
            NotFoundError: If the account does not exist
        """
        if end_after_occurrences is not None:
            if end_at is not None:
                raise ValueError("Give either an end date or a number of payments, not both.")
            if end_after_occurrences < 1:
                raise ValueError("Number of payments must be at least 1.")
            self._validate(amount, direction, frequency, next_due_at, None)
            end_at = next_due_at
            for _ in range(end_after_occurrences - 1):
                end_at = advance_by_frequency(end_at, frequency)
        self._validate(amount, direction, frequency, next_due_at, end_at)

        try:
            definition = self._dao.create(
                account_id=account_id, direction=direction, amount=amount,
                frequency=frequency, next_due_at=next_due_at, title=title.strip(),
                note=note, category_id=category_id, end_at=end_at,
                allow_notifications=allow_notifications,
            )
        except sqlite3.IntegrityError as exc:
            raise NotFoundError(f"Account {account_id} not found.") from exc

        log.info(
            "obligation_created",
            obligation_id=definition.id,
            frequency=frequency,
            next_due_at=format_datetime(next_due_at),
        )
        self._refresh_reminder(definition)
        return definition

    def update_definition(self, definition_id: int, **fields) -> Transaction:
        """Partial update; accepts any of UPDATABLE_FIELDS as keyword arguments."""
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        current = self._require(definition_id)
        merged = replace(current, **fields)
        self._validate(
            merged.amount, merged.direction, merged.frequency,
            merged.next_due_at, merged.end_at,
        )

        try:
            updated = self._dao.update(definition_id, fields)
        except sqlite3.IntegrityError as exc:
            raise NotFoundError(f"Account {merged.account_id} not found.") from exc

        log.info("obligation_updated", obligation_id=definition_id, fields=sorted(fields))
        if any(key in fields for key in REMINDER_FIELDS):
            self._refresh_reminder(updated)
        return updated

    def delete_definition(self, definition_id: int) -> None:
        """Cancel the reminder, then archive the definition."""
        self._require(definition_id)
        if self._scheduler:
            self._scheduler.cancel(definition_id)
        self._dao.soft_delete(definition_id)
        log.info("obligation_deleted", obligation_id=definition_id)

    # ── Queries ───────────────────────────────────────────────────────────────

    def due_today(self, as_of: datetime | None = None) -> list[Transaction]:
        """Live obligations whose next_due_at falls on the calendar day of as_of."""
        moment = as_of or self._clock()
        return self._dao.get_due_between(start_of_day(moment), end_of_day(moment))

    def upcoming(
        self, days_ahead: int = UPCOMING_DAYS, as_of: datetime | None = None
    ) -> list[Transaction]:
        moment = as_of or self._clock()
        return self._dao.get_due_between(moment, moment + timedelta(days=days_ahead))

    # ── Payment ───────────────────────────────────────────────────────────────

    def quick_pay(self, definition_id: int, as_of: datetime | None = None) -> Transaction:
        """Pay the current cycle now, whatever its due date."""
        return self.materialize(definition_id, as_of=as_of)

    def materialize(
        self,
        definition_id: int,
        as_of: datetime | None = None,
        expected_due_at: datetime | None = None,
    ) -> Transaction:
        """
        Record the occurrence for the current cycle and advance the schedule.

        The occurrence is timestamped as_of; next_due_at moves one frequency
        unit from the stored due date. Both writes commit together.

        Args:
            expected_due_at: The due date the caller saw; if the stored one
                has moved since, the cycle was already paid

        Raises:
            NotFoundError: Unknown or deleted obligation
            ObligationEndedError: Obligation is past its end date
            AlreadyMaterializedError: This cycle already has an occurrence
            StorageError: The write failed and was rolled back
        """
        moment = as_of or self._clock()
        with self._lock:
            definition = self._require(definition_id)
            if definition.state(moment) == "ended":
                raise ObligationEndedError(f"Obligation {definition_id} has ended.")

            due_at = definition.next_due_at
            if expected_due_at is not None and due_at != expected_due_at:
                raise AlreadyMaterializedError(
                    f"Obligation {definition_id} already advanced past "
                    f"{format_datetime(expected_due_at)}."
                )
            if self._tx_dao.occurrence_exists(definition_id, due_at):
                raise AlreadyMaterializedError(
                    f"Obligation {definition_id} already paid for {format_datetime(due_at)}."
                )

            next_due = advance_by_frequency(due_at, definition.frequency)
            ended = definition.end_at is not None and next_due > definition.end_at

            conn = self._tx_dao.db.get_connection()
            try:
                occurrence = self._tx_dao.create(
                    account_id=definition.account_id,
                    direction=definition.direction,
                    amount=definition.amount,
                    timestamp=moment,
                    title=definition.title,
                    note=definition.note,
                    category_id=definition.category_id,
                    excluded_from_balance=False,
                    source_definition_id=definition_id,
                    cycle_due_at=due_at,
                )
                self._dao.advance_schedule(definition_id, next_due, ended)
                conn.commit()
            except sqlite3.IntegrityError as exc:
                conn.rollback()
                raise AlreadyMaterializedError(
                    f"Obligation {definition_id} already paid for {format_datetime(due_at)}."
                ) from exc
            except sqlite3.Error as exc:
                conn.rollback()
                raise StorageError(f"Could not record obligation {definition_id}.") from exc

            updated = replace(definition, next_due_at=next_due, is_ended=ended)
            log.info(
                "obligation_materialized",
                obligation_id=definition_id,
                occurrence_id=occurrence.id,
                cycle_due_at=format_datetime(due_at),
                next_due_at=format_datetime(next_due),
                ended=ended,
            )
            self._refresh_reminder(updated)

        self._events.publish(OBLIGATION_MATERIALIZED, definition=updated, occurrence=occurrence)
        return occurrence

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _refresh_reminder(self, definition: Transaction) -> None:
        if self._scheduler is None:
            return
        try:
            if definition.is_ended:
                self._scheduler.cancel(definition.id)
            else:
                self._scheduler.schedule(definition)
        except Exception:
            log.exception("reminder_refresh_failed", obligation_id=definition.id)

    def _validate(self, amount, direction, frequency, next_due_at, end_at):
        if direction not in DIRECTIONS:
            raise ValueError("Direction must be income or expense.")
        if not isinstance(amount, (int, float)) or isinstance(amount, bool):
            raise ValueError("Amount must be a number.")
        if amount <= 0:
            raise ValueError("Amount must be positive.")
        if frequency not in FREQUENCIES:
            raise ValueError("Invalid frequency.")
        if not isinstance(next_due_at, datetime):
            raise ValueError("Invalid due date.")
        if end_at is not None:
            if not isinstance(end_at, datetime):
                raise ValueError("Invalid end date.")
            if end_at < next_due_at:
                raise ValueError("End date cannot be before the first due date.")
