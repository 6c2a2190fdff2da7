import sqlite3
from datetime import datetime

import structlog

from database.account_dao import AccountDAO
from database.errors import NotFoundError, StorageError
from database.transaction_dao import TransactionDAO
from models.account import Account
from models.transaction import Transaction
from utils.constants import DIRECTIONS

log = structlog.get_logger(__name__)


class LedgerService:
    """Accounts and their derived balances.

    A balance is never stored: every read sums the account's history,
    skipping rows with excluded_from_balance set.
    """

    def __init__(self, account_dao: AccountDAO, tx_dao: TransactionDAO):
        self._account_dao = account_dao
        self._tx_dao = tx_dao

    def get_accounts(self) -> list[Account]:
        return self._account_dao.get_all()

    def create_account(self, name: str, description: str = "", base_balance: float = 0.0) -> Account:
        name = name.strip()
        if not name:
            raise ValueError("Account name cannot be empty.")
        try:
            account = self._account_dao.create(name, description.strip(), base_balance)
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"An account named '{name}' already exists.") from exc
        log.info("account_created", account_id=account.id, name=name)
        return account

    def balance(self, account_id: int) -> float:
        """base_balance + income - expense over non-excluded transactions."""
        value = self._account_dao.get_balance(account_id)
        if value is None:
            raise NotFoundError(f"Account {account_id} not found.")
        return value

    def balances(self) -> dict[int, float]:
        return self._account_dao.get_balances()

    def history(self, account_id: int) -> list[Transaction]:
        if self._account_dao.get_by_id(account_id) is None:
            raise NotFoundError(f"Account {account_id} not found.")
        return self._tx_dao.get_by_account(account_id)

    def record_transaction(
        self,
        account_id: int,
        direction: str,
        amount: float,
        timestamp: datetime,
        title: str = "",
        note: str | None = None,
        category_id: int | None = None,
        excluded_from_balance: bool = False,
    ) -> Transaction:
        """Append a one-off ledger entry."""
        if direction not in DIRECTIONS:
            raise ValueError("Direction must be income or expense.")
        if amount < 0:
            raise ValueError("Amount cannot be negative.")
        if self._account_dao.get_by_id(account_id) is None:
            raise NotFoundError(f"Account {account_id} not found.")

        db = self._tx_dao.db
        with db.lock:
            conn = db.get_connection()
            try:
                tx = self._tx_dao.create(
                    account_id=account_id, direction=direction, amount=amount,
                    timestamp=timestamp, title=title.strip(), note=note,
                    category_id=category_id,
                    excluded_from_balance=excluded_from_balance,
                )
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                log.exception("transaction_record_failed", account_id=account_id)
                raise StorageError(f"Could not record transaction for account {account_id}.") from exc
        return tx
