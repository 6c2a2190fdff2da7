import json
from typing import Any
from database.db_manager import DatabaseManager


class KeyValueStore:
    """JSON values persisted in the app_settings table."""

    def __init__(self, db: DatabaseManager, prefix: str = "kv:"):
        self._db = db
        self._prefix = prefix

    def get(self, key: str, default: Any = None) -> Any:
        """Return the decoded value, or default on missing/corrupt data."""
        raw = self._db.get_setting(self._prefix + key, "")
        if not raw:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            return default

    def set(self, key: str, value: Any) -> None:
        self._db.set_setting(self._prefix + key, json.dumps(value))

    def delete(self, key: str) -> None:
        self._db.delete_setting(self._prefix + key)
