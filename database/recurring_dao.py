import sqlite3
from datetime import datetime
from typing import Optional
from database.db_manager import DatabaseManager
from database.transaction_dao import row_to_transaction
from models.transaction import Transaction
from utils.date_helpers import format_datetime

# Columns a definition update may touch.
UPDATABLE_FIELDS = (
    "account_id", "direction", "amount", "category_id", "title", "note",
    "frequency", "next_due_at", "end_at", "allow_notifications",
)


class RecurringDAO:
    """Obligation definitions: transactions rows with is_recurring_definition = 1."""

    def __init__(self, db: DatabaseManager):
        self._db = db

    def _select(self) -> str:
        return """
            SELECT * FROM transactions
            WHERE is_recurring_definition = 1 AND is_deleted = 0
        """

    def get_all(self) -> list[Transaction]:
        conn = self._db.get_connection()
        rows = conn.execute(
            self._select() + " ORDER BY next_due_at ASC, id ASC"
        ).fetchall()
        return [row_to_transaction(r) for r in rows]

    def get_by_id(self, definition_id: int) -> Optional[Transaction]:
        conn = self._db.get_connection()
        row = conn.execute(
            self._select() + " AND id = ?", (definition_id,)
        ).fetchone()
        return row_to_transaction(row) if row else None

    def get_due_between(self, start: datetime, end: datetime) -> list[Transaction]:
        """Live (not ended) definitions whose next_due_at is within [start, end]."""
        conn = self._db.get_connection()
        rows = conn.execute(
            self._select() + """
              AND is_ended = 0
              AND next_due_at BETWEEN ? AND ?
              AND (end_at IS NULL OR next_due_at <= end_at)
            ORDER BY next_due_at ASC, id ASC""",
            (format_datetime(start), format_datetime(end)),
        ).fetchall()
        return [row_to_transaction(r) for r in rows]

    def create(
        self,
        account_id: int,
        direction: str,
        amount: float,
        frequency: str,
        next_due_at: datetime,
        title: str = "",
        note: str | None = None,
        category_id: int | None = None,
        end_at: datetime | None = None,
        allow_notifications: bool = True,
    ) -> Transaction:
        with self._db.lock:
            conn = self._db.get_connection()
            try:
                cursor = conn.execute(
                    """INSERT INTO transactions
                       (account_id, direction, amount, category_id, title, note, timestamp,
                        is_recurring_definition, frequency, next_due_at, end_at,
                        excluded_from_balance, allow_notifications)
                       VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?, ?, ?, 1, ?)""",
                    (
                        account_id, direction, amount, category_id, title, note,
                        format_datetime(next_due_at),
                        frequency,
                        format_datetime(next_due_at),
                        format_datetime(end_at) if end_at else None,
                        1 if allow_notifications else 0,
                    ),
                )
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
        return self.get_by_id(cursor.lastrowid)

    def update(self, definition_id: int, fields: dict) -> Optional[Transaction]:
        """Partial update. Unknown keys are ignored; datetimes and bools are encoded."""
        assignments: list[str] = []
        values: list = []
        for key, value in fields.items():
            if key not in UPDATABLE_FIELDS:
                continue
            if isinstance(value, datetime):
                value = format_datetime(value)
            elif isinstance(value, bool):
                value = 1 if value else 0
            assignments.append(f"{key} = ?")
            values.append(value)

        if assignments:
            # Editing the schedule revives an ended definition.
            if "next_due_at" in fields or "end_at" in fields:
                assignments.append("is_ended = 0")
            assignments.append("updated_at = datetime('now')")
            with self._db.lock:
                conn = self._db.get_connection()
                try:
                    conn.execute(
                        f"UPDATE transactions SET {', '.join(assignments)} "
                        "WHERE id = ? AND is_recurring_definition = 1",
                        values + [definition_id],
                    )
                    conn.commit()
                except sqlite3.Error:
                    conn.rollback()
                    raise
        return self.get_by_id(definition_id)

    def advance_schedule(self, definition_id: int, next_due_at: datetime, ended: bool):
        """Move next_due_at forward. Does not commit; the caller owns the transaction."""
        conn = self._db.get_connection()
        conn.execute(
            """UPDATE transactions
               SET next_due_at = ?, is_ended = ?, updated_at = datetime('now')
               WHERE id = ? AND is_recurring_definition = 1""",
            (format_datetime(next_due_at), 1 if ended else 0, definition_id),
        )

    def soft_delete(self, definition_id: int):
        with self._db.lock:
            conn = self._db.get_connection()
            conn.execute(
                """UPDATE transactions SET is_deleted = 1, updated_at = datetime('now')
                   WHERE id = ? AND is_recurring_definition = 1""",
                (definition_id,),
            )
            conn.commit()
