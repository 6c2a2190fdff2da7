from datetime import datetime
from typing import Optional
from database.db_manager import DatabaseManager
from models.transaction import Transaction
from utils.date_helpers import format_datetime, parse_datetime


def row_to_transaction(row) -> Transaction:
    return Transaction(
        id=row["id"],
        account_id=row["account_id"],
        direction=row["direction"],
        amount=row["amount"],
        timestamp=parse_datetime(row["timestamp"]),
        title=row["title"],
        note=row["note"],
        category_id=row["category_id"],
        is_recurring_definition=bool(row["is_recurring_definition"]),
        frequency=row["frequency"],
        next_due_at=parse_datetime(row["next_due_at"]),
        end_at=parse_datetime(row["end_at"]),
        excluded_from_balance=bool(row["excluded_from_balance"]),
        allow_notifications=bool(row["allow_notifications"]),
        is_ended=bool(row["is_ended"]),
        is_deleted=bool(row["is_deleted"]),
        source_definition_id=row["source_definition_id"],
        cycle_due_at=parse_datetime(row["cycle_due_at"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class TransactionDAO:
    """Realized ledger entries (is_recurring_definition = 0)."""

    def __init__(self, db: DatabaseManager):
        self._db = db

    @property
    def db(self) -> DatabaseManager:
        return self._db

    def get_by_id(self, tx_id: int) -> Optional[Transaction]:
        conn = self._db.get_connection()
        row = conn.execute(
            "SELECT * FROM transactions WHERE id = ? AND is_recurring_definition = 0",
            (tx_id,),
        ).fetchone()
        return row_to_transaction(row) if row else None

    def get_by_account(self, account_id: int) -> list[Transaction]:
        conn = self._db.get_connection()
        rows = conn.execute(
            """SELECT * FROM transactions
               WHERE account_id = ? AND is_recurring_definition = 0
               ORDER BY timestamp ASC, id ASC""",
            (account_id,),
        ).fetchall()
        return [row_to_transaction(r) for r in rows]

    def get_occurrences(self, definition_id: int) -> list[Transaction]:
        conn = self._db.get_connection()
        rows = conn.execute(
            """SELECT * FROM transactions
               WHERE source_definition_id = ?
               ORDER BY cycle_due_at ASC, id ASC""",
            (definition_id,),
        ).fetchall()
        return [row_to_transaction(r) for r in rows]

    def occurrence_exists(self, definition_id: int, cycle_due_at: datetime) -> bool:
        conn = self._db.get_connection()
        row = conn.execute(
            """SELECT COUNT(*) AS cnt FROM transactions
               WHERE source_definition_id = ? AND cycle_due_at = ?""",
            (definition_id, format_datetime(cycle_due_at)),
        ).fetchone()
        return row["cnt"] > 0

    def create(
        self,
        account_id: int,
        direction: str,
        amount: float,
        timestamp: datetime,
        title: str = "",
        note: str | None = None,
        category_id: int | None = None,
        excluded_from_balance: bool = False,
        source_definition_id: int | None = None,
        cycle_due_at: datetime | None = None,
    ) -> Transaction:
        """Insert a ledger entry. Does not commit; the caller owns the transaction."""
        conn = self._db.get_connection()
        cursor = conn.execute(
            """INSERT INTO transactions
               (account_id, direction, amount, category_id, title, note, timestamp,
                excluded_from_balance, source_definition_id, cycle_due_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                account_id, direction, amount, category_id, title, note,
                format_datetime(timestamp),
                1 if excluded_from_balance else 0,
                source_definition_id,
                format_datetime(cycle_due_at) if cycle_due_at else None,
            ),
        )
        return self.get_by_id(cursor.lastrowid)

