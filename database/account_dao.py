import sqlite3
from typing import Optional
from database.db_manager import DatabaseManager
from models.account import Account


class AccountDAO:
    def __init__(self, db: DatabaseManager):
        self._db = db

    def _row_to_model(self, row) -> Account:
        return Account(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            base_balance=row["base_balance"],
            created_at=row["created_at"],
        )

    def get_all(self) -> list[Account]:
        conn = self._db.get_connection()
        rows = conn.execute("SELECT * FROM accounts ORDER BY name").fetchall()
        return [self._row_to_model(r) for r in rows]

    def get_by_id(self, account_id: int) -> Optional[Account]:
        conn = self._db.get_connection()
        row = conn.execute(
            "SELECT * FROM accounts WHERE id = ?", (account_id,)
        ).fetchone()
        return self._row_to_model(row) if row else None

    def create(
        self,
        name: str,
        description: str = "",
        base_balance: float = 0.0,
    ) -> Account:
        with self._db.lock:
            conn = self._db.get_connection()
            try:
                cursor = conn.execute(
                    "INSERT INTO accounts(name, description, base_balance) VALUES (?, ?, ?)",
                    (name, description, base_balance),
                )
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
        return self.get_by_id(cursor.lastrowid)

    def get_balance(self, account_id: int) -> Optional[float]:
        """base_balance + non-excluded income - non-excluded expense, or None
        when the account does not exist. One aggregate statement."""
        conn = self._db.get_connection()
        row = conn.execute(
            """SELECT a.base_balance
                      + COALESCE(SUM(CASE WHEN t.direction = 'income'  THEN t.amount END), 0)
                      - COALESCE(SUM(CASE WHEN t.direction = 'expense' THEN t.amount END), 0)
                      AS balance
               FROM accounts a
               LEFT JOIN transactions t
                      ON t.account_id = a.id AND t.excluded_from_balance = 0
               WHERE a.id = ?
               GROUP BY a.id""",
            (account_id,),
        ).fetchone()
        return row["balance"] if row else None

    def get_balances(self) -> dict[int, float]:
        """Return {account_id: balance} for all accounts."""
        conn = self._db.get_connection()
        rows = conn.execute(
            """SELECT a.id AS account_id,
                      a.base_balance
                      + COALESCE(SUM(CASE WHEN t.direction = 'income'  THEN t.amount END), 0)
                      - COALESCE(SUM(CASE WHEN t.direction = 'expense' THEN t.amount END), 0)
                      AS balance
               FROM accounts a
               LEFT JOIN transactions t
                      ON t.account_id = a.id AND t.excluded_from_balance = 0
               GROUP BY a.id"""
        ).fetchall()
        return {r["account_id"]: r["balance"] for r in rows}
