import threading
from datetime import datetime
from typing import Callable, Optional

import structlog

from database.kv_store import KeyValueStore
from models.reminder_record import ReminderRecord
from services.notification_platform import NotificationPlatform
from utils.constants import REGISTRY_KEY
from utils.date_helpers import format_datetime, now as default_clock

log = structlog.get_logger(__name__)


class NotificationRegistry:
    """Persisted map of obligation -> scheduled reminder.

    Stored as one JSON document under REGISTRY_KEY:
        {"records": [ReminderRecord.to_dict(), ...], "last_updated": "..."}
    One record per obligation; upsert replaces the previous one.
    """

    def __init__(
        self,
        store: KeyValueStore,
        platform: NotificationPlatform,
        clock: Callable[[], datetime] = default_clock,
    ):
        self._store = store
        self._platform = platform
        self._clock = clock
        self._lock = threading.RLock()

    # ── Persistence ───────────────────────────────────────────────────────────

    def _load(self) -> dict[int, ReminderRecord]:
        doc = self._store.get(REGISTRY_KEY, {})
        if not isinstance(doc, dict):
            return {}
        records: dict[int, ReminderRecord] = {}
        for entry in doc.get("records", []):
            record = ReminderRecord.from_dict(entry) if isinstance(entry, dict) else None
            if record is not None:
                records[record.obligation_id] = record
        return records

    def _save(self, records: dict[int, ReminderRecord]) -> None:
        self._store.set(REGISTRY_KEY, {
            "records": [r.to_dict() for r in records.values()],
            "last_updated": format_datetime(self._clock()),
        })

    # ── Queries ───────────────────────────────────────────────────────────────

    def records(self) -> list[ReminderRecord]:
        with self._lock:
            return sorted(self._load().values(), key=lambda r: r.obligation_id)

    def get(self, obligation_id: int) -> Optional[ReminderRecord]:
        with self._lock:
            return self._load().get(obligation_id)

    def notification_id_for(self, obligation_id: int) -> str | None:
        record = self.get(obligation_id)
        return record.notification_id if record else None

    def is_scheduled(self, obligation_id: int, due_at: datetime) -> bool:
        record = self.get(obligation_id)
        return record is not None and record.next_due_at == due_at

    def needs_reschedule(self, obligation_id: int, new_due_at: datetime) -> bool:
        """True when no record exists or the recorded due date differs."""
        record = self.get(obligation_id)
        if record is None:
            return True
        return record.next_due_at != new_due_at

    # ── Mutations ─────────────────────────────────────────────────────────────

    def upsert(self, obligation_id: int, notification_id: str, due_at: datetime) -> ReminderRecord:
        record = ReminderRecord(
            obligation_id=obligation_id,
            notification_id=notification_id,
            next_due_at=due_at,
            scheduled_at=self._clock(),
        )
        with self._lock:
            records = self._load()
            records[obligation_id] = record
            self._save(records)
        return record

    def remove(self, obligation_id: int) -> bool:
        with self._lock:
            records = self._load()
            if records.pop(obligation_id, None) is None:
                return False
            self._save(records)
            return True

    def clear(self) -> None:
        with self._lock:
            self._store.delete(REGISTRY_KEY)

    def sync(self) -> int:
        """Drop records whose notification is no longer on the platform.

        Best effort: failures are logged and leave the records for the next
        sync. Returns the number of records removed.
        """
        try:
            live_ids = {n.identifier for n in self._platform.list_scheduled()}
            with self._lock:
                records = self._load()
                valid = {
                    oid: r for oid, r in records.items()
                    if r.notification_id in live_ids
                }
                removed = len(records) - len(valid)
                if removed:
                    self._save(valid)
        except Exception:
            log.exception("registry_sync_failed")
            return 0
        if removed:
            log.info("registry_synced", removed=removed, remaining=len(valid))
        return removed
