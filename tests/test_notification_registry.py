from datetime import datetime

from structlog.testing import capture_logs

from models.notification import NotificationContent, Trigger
from services.notification_platform import LocalNotificationPlatform
from services.notification_registry import NotificationRegistry
from utils.constants import REGISTRY_KEY

DUE = datetime(2025, 3, 10, 10, 0)


class BrokenPlatform(LocalNotificationPlatform):
    def list_scheduled(self):
        raise RuntimeError("facility unavailable")


class TestRecords:

    def test_empty(self, registry):
        assert registry.records() == []
        assert registry.needs_reschedule(1, DUE)
        assert not registry.is_scheduled(1, DUE)
        assert registry.notification_id_for(1) is None

    def test_upsert_and_lookup(self, registry, clock):
        record = registry.upsert(1, "abc", DUE)
        assert record.scheduled_at == clock()
        assert registry.is_scheduled(1, DUE)
        assert not registry.is_scheduled(1, datetime(2025, 4, 10, 10, 0))
        assert registry.notification_id_for(1) == "abc"

    def test_upsert_supersedes(self, registry):
        registry.upsert(1, "abc", DUE)
        registry.upsert(1, "def", datetime(2025, 4, 10, 10, 0))
        assert [r.notification_id for r in registry.records()] == ["def"]

    def test_needs_reschedule_compares_due_date(self, registry):
        registry.upsert(1, "abc", DUE)
        assert not registry.needs_reschedule(1, DUE)
        assert registry.needs_reschedule(1, datetime(2025, 4, 10, 10, 0))

    def test_remove_and_clear(self, registry, kv_store):
        registry.upsert(1, "a", DUE)
        registry.upsert(2, "b", DUE)
        assert registry.remove(1) is True
        assert registry.remove(1) is False
        registry.clear()
        assert registry.records() == []
        assert kv_store.get(REGISTRY_KEY) is None

    def test_persisted_across_instances(self, registry, kv_store, platform):
        registry.upsert(7, "xyz", DUE)
        reopened = NotificationRegistry(kv_store, platform)
        assert reopened.notification_id_for(7) == "xyz"

    def test_document_shape(self, registry, kv_store):
        registry.upsert(7, "xyz", DUE)
        doc = kv_store.get(REGISTRY_KEY)
        assert doc["records"] == [{
            "obligation_id": 7,
            "notification_id": "xyz",
            "next_due_at": "2025-03-10 10:00:00",
            "scheduled_at": "2025-03-05 00:00:00",
        }]
        assert doc["last_updated"] == "2025-03-05 00:00:00"

    def test_corrupt_document_reads_empty(self, registry, kv_store):
        kv_store.set(REGISTRY_KEY, {"records": [{"obligation_id": "x"}, "junk"]})
        assert registry.records() == []
        kv_store.set(REGISTRY_KEY, ["not", "a", "dict"])
        assert registry.records() == []


class TestSync:

    def test_drops_records_without_live_notification(self, registry, platform):
        live = platform.schedule(NotificationContent("t", "b"), Trigger("daily", hour=9))
        registry.upsert(1, live, DUE)
        registry.upsert(2, "gone", DUE)

        assert registry.sync() == 1
        assert [r.obligation_id for r in registry.records()] == [1]

    def test_nothing_to_do(self, registry):
        assert registry.sync() == 0

    def test_failure_is_logged_and_keeps_records(self, kv_store, clock):
        registry = NotificationRegistry(kv_store, BrokenPlatform(clock=clock), clock=clock)
        registry.upsert(1, "abc", DUE)
        with capture_logs() as logs:
            assert registry.sync() == 0
        assert registry.notification_id_for(1) == "abc"
        assert logs[0]["event"] == "registry_sync_failed"
