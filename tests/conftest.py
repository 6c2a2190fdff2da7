"""
Shared fixtures: a fresh SQLite file per test, a controllable clock and the
services wired the way main.build_app wires them.
"""
from datetime import datetime, timedelta

import pytest

from database.account_dao import AccountDAO
from database.db_manager import DatabaseManager
from database.kv_store import KeyValueStore
from database.recurring_dao import RecurringDAO
from database.transaction_dao import TransactionDAO
from services.billing_processor import BillingProcessor
from services.events import EventChannel
from services.ledger_service import LedgerService
from services.notification_platform import LocalNotificationPlatform
from services.notification_registry import NotificationRegistry
from services.recurring_service import RecurringService
from services.reminder_scheduler import ReminderScheduler

# Monday, midnight.
T0 = datetime(2025, 3, 10, 0, 0, 0)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def set(self, value: datetime):
        self.current = value

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(T0 - timedelta(days=5))


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(str(tmp_path / "ledger.db"))
    manager.initialize()
    yield manager
    manager.close()


@pytest.fixture
def account_dao(db):
    return AccountDAO(db)


@pytest.fixture
def tx_dao(db):
    return TransactionDAO(db)


@pytest.fixture
def recurring_dao(db):
    return RecurringDAO(db)


@pytest.fixture
def kv_store(db):
    return KeyValueStore(db)


@pytest.fixture
def events():
    return EventChannel()


@pytest.fixture
def platform(events, clock):
    return LocalNotificationPlatform(events, clock=clock)


@pytest.fixture
def registry(kv_store, platform, clock):
    return NotificationRegistry(kv_store, platform, clock=clock)


@pytest.fixture
def scheduler(platform, registry, recurring_dao, events, clock):
    reminder_scheduler = ReminderScheduler(
        platform, registry, recurring_dao.get_by_id, events, clock=clock
    )
    reminder_scheduler.listen()
    yield reminder_scheduler
    reminder_scheduler.stop_listening()


@pytest.fixture
def ledger(account_dao, tx_dao):
    return LedgerService(account_dao, tx_dao)


@pytest.fixture
def recurring(recurring_dao, tx_dao, scheduler, events, clock):
    return RecurringService(recurring_dao, tx_dao, scheduler, events, clock=clock)


@pytest.fixture
def processor(recurring, platform, scheduler, db, clock):
    return BillingProcessor(recurring, platform, scheduler, db, clock=clock)


@pytest.fixture
def account(ledger):
    return ledger.create_account("Checking", base_balance=1000.0)


@pytest.fixture
def weekly_rent(recurring, account):
    """Weekly 200 expense, first due at T0."""
    return recurring.create_definition(
        account_id=account.id,
        amount=200.0,
        direction="expense",
        frequency="weekly",
        next_due_at=T0,
        title="Rent",
    )
