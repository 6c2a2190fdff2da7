import argparse
import os
import sys
from dataclasses import dataclass
from datetime import timedelta

import customtkinter as ctk
import structlog

# Ensure project root is on sys.path when run directly
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from database.db_manager import DatabaseManager
from database.account_dao import AccountDAO
from database.transaction_dao import TransactionDAO
from database.recurring_dao import RecurringDAO
from database.kv_store import KeyValueStore

from services.events import EventChannel
from services.notification_platform import LocalNotificationPlatform
from services.notification_registry import NotificationRegistry
from services.reminder_scheduler import ReminderScheduler
from services.recurring_service import RecurringService
from services.ledger_service import LedgerService
from services.billing_processor import BillingProcessor
from services.background_tasks import BackgroundTaskService
from services.billing_monitor import BillingMonitor

from ui.app_window import AppWindow

from utils.app_config import RuntimeSettings, load_runtime_settings
from utils.logging_config import configure_logging

log = structlog.get_logger(__name__)


@dataclass
class App:
    db: DatabaseManager
    events: EventChannel
    platform: LocalNotificationPlatform
    scheduler: ReminderScheduler
    ledger: LedgerService
    recurring: RecurringService
    processor: BillingProcessor
    background: BackgroundTaskService
    monitor: BillingMonitor


def build_app(db: DatabaseManager, settings: RuntimeSettings, start_threads: bool = True) -> App:
    # ── DAOs ─────────────────────────────────────────────────────────────────
    account_dao = AccountDAO(db)
    tx_dao = TransactionDAO(db)
    recurring_dao = RecurringDAO(db)
    kv_store = KeyValueStore(db)

    # ── Notifications ────────────────────────────────────────────────────────
    events = EventChannel()
    platform = LocalNotificationPlatform(events)
    registry = NotificationRegistry(kv_store, platform)
    scheduler = ReminderScheduler(
        platform, registry, recurring_dao.get_by_id, events,
        reminder_hour=settings.reminder_hour,
        check_registry=settings.check_registry_before_reschedule,
    )
    scheduler.listen()

    # ── Services ─────────────────────────────────────────────────────────────
    ledger = LedgerService(account_dao, tx_dao)
    recurring = RecurringService(recurring_dao, tx_dao, scheduler, events)
    processor = BillingProcessor(recurring, platform, scheduler, db)
    background = BackgroundTaskService(start_threads=start_threads)
    monitor = BillingMonitor(
        processor.execute_daily_tasks,
        min_interval=timedelta(minutes=settings.min_check_interval_minutes),
        poll_interval=timedelta(minutes=settings.foreground_poll_minutes),
        background=background,
        background_interval=timedelta(hours=settings.background_interval_hours),
    )
    return App(db, events, platform, scheduler, ledger, recurring, processor, background, monitor)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Budget Ledger")
    parser.add_argument(
        "--sweep", action="store_true",
        help="Run the daily billing tasks once and exit (for cron/systemd timers)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    # ── Bootstrap: settings from pre-DB config ────────────────────────────────
    settings = load_runtime_settings()
    configure_logging("DEBUG" if args.verbose else settings.log_level, settings.log_json)

    # ── Database ─────────────────────────────────────────────────────────────
    db = DatabaseManager.open(db_folder=settings.db_folder)
    log.info("database_opened", path=db.db_path)

    if args.sweep:
        app = build_app(db, settings, start_threads=False)
        report = app.processor.execute_daily_tasks()
        db.close()
        return 1 if report.sweep.errors else 0

    app = build_app(db, settings)

    # ── Appearance ───────────────────────────────────────────────────────────
    ctk.set_appearance_mode(db.get_setting("appearance_mode", "system"))
    ctk.set_default_color_theme("blue")

    # ── Launch UI ────────────────────────────────────────────────────────────
    window = AppWindow(
        ledger_service=app.ledger,
        recurring_service=app.recurring,
        monitor=app.monitor,
        platform=app.platform,
        events=app.events,
    )

    def on_close():
        window.shutdown()
        app.background.shutdown()
        app.scheduler.stop_listening()
        db.close()
        window.destroy()

    window.protocol("WM_DELETE_WINDOW", on_close)
    window.mainloop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
