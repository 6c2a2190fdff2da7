import os
import sqlite3
import threading
from utils.constants import DB_FILE


class DatabaseManager:
    def __init__(self, db_path: str | None = None):
        self.db_path = db_path or DB_FILE
        self._conn: sqlite3.Connection | None = None
        # Held around every write that commits on the shared connection.
        self.lock = threading.RLock()

    def get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            # Shared by the Tk thread and the background billing thread.
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
        return self._conn

    def initialize(self):
        """Create schema and seed defaults."""
        conn = self.get_connection()
        self._create_schema(conn)
        self._migrate_schema(conn)
        self._create_indexes(conn)
        self._seed_defaults(conn)
        conn.commit()

    def _migrate_schema(self, conn: sqlite3.Connection):
        """Idempotent ALTER TABLE for columns added after initial release."""
        cols = {row[1] for row in conn.execute("PRAGMA table_info(transactions)").fetchall()}
        if "allow_notifications" not in cols:
            conn.execute(
                "ALTER TABLE transactions ADD COLUMN allow_notifications INTEGER NOT NULL DEFAULT 1"
            )
        if "is_ended" not in cols:
            conn.execute(
                "ALTER TABLE transactions ADD COLUMN is_ended INTEGER NOT NULL DEFAULT 0"
            )
        if "source_definition_id" not in cols:
            conn.execute(
                "ALTER TABLE transactions ADD COLUMN source_definition_id INTEGER "
                "REFERENCES transactions(id) ON DELETE SET NULL"
            )
        if "cycle_due_at" not in cols:
            conn.execute("ALTER TABLE transactions ADD COLUMN cycle_due_at TEXT")

    def _create_schema(self, conn: sqlite3.Connection):
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS accounts (
                id           INTEGER PRIMARY KEY AUTOINCREMENT,
                name         TEXT    NOT NULL UNIQUE,
                description  TEXT    NOT NULL DEFAULT '',
                base_balance REAL    NOT NULL DEFAULT 0.0,
                created_at   TEXT    NOT NULL DEFAULT (datetime('now'))
            );

            CREATE TABLE IF NOT EXISTS transactions (
                id                      INTEGER PRIMARY KEY AUTOINCREMENT,
                account_id              INTEGER NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
                direction               TEXT    NOT NULL CHECK(direction IN ('income','expense')),
                amount                  REAL    NOT NULL CHECK(amount >= 0),
                category_id             INTEGER,
                title                   TEXT    NOT NULL DEFAULT '',
                note                    TEXT,
                timestamp               TEXT    NOT NULL,
                is_recurring_definition INTEGER NOT NULL DEFAULT 0,
                frequency               TEXT,
                next_due_at             TEXT,
                end_at                  TEXT,
                excluded_from_balance   INTEGER NOT NULL DEFAULT 0,
                allow_notifications     INTEGER NOT NULL DEFAULT 1,
                is_ended                INTEGER NOT NULL DEFAULT 0,
                is_deleted              INTEGER NOT NULL DEFAULT 0,
                source_definition_id    INTEGER REFERENCES transactions(id) ON DELETE SET NULL,
                cycle_due_at            TEXT,
                created_at              TEXT    NOT NULL DEFAULT (datetime('now')),
                updated_at              TEXT    NOT NULL DEFAULT (datetime('now')),
                CHECK(is_recurring_definition = 0 OR excluded_from_balance = 1)
            );

            CREATE TABLE IF NOT EXISTS app_settings (
                key   TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
        """)

    def _create_indexes(self, conn: sqlite3.Connection):
        conn.executescript("""
            CREATE INDEX IF NOT EXISTS idx_transactions_account_id ON transactions(account_id);
            CREATE INDEX IF NOT EXISTS idx_transactions_next_due
                ON transactions(next_due_at) WHERE is_recurring_definition = 1;

            -- One occurrence per definition per billing cycle.
            CREATE UNIQUE INDEX IF NOT EXISTS idx_transactions_occurrence_cycle
                ON transactions(source_definition_id, cycle_due_at)
                WHERE source_definition_id IS NOT NULL;
        """)

    def _seed_defaults(self, conn: sqlite3.Connection):
        defaults = [
            ("currency_symbol", "$"),
            ("last_sweep_at", ""),
        ]
        for key, value in defaults:
            conn.execute(
                "INSERT OR IGNORE INTO app_settings(key, value) VALUES (?, ?)",
                (key, value),
            )

    def get_setting(self, key: str, default: str = "") -> str:
        conn = self.get_connection()
        row = conn.execute(
            "SELECT value FROM app_settings WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else default

    def set_setting(self, key: str, value: str):
        with self.lock:
            conn = self.get_connection()
            conn.execute(
                "INSERT OR REPLACE INTO app_settings(key, value) VALUES (?, ?)",
                (key, value),
            )
            conn.commit()

    def delete_setting(self, key: str):
        with self.lock:
            conn = self.get_connection()
            conn.execute("DELETE FROM app_settings WHERE key = ?", (key,))
            conn.commit()

    @staticmethod
    def open(db_folder: str | None = None) -> "DatabaseManager":
        """Startup factory: opens (and creates if needed) the ledger DB."""
        if db_folder:
            os.makedirs(db_folder, exist_ok=True)
            db_path = os.path.join(db_folder, DB_FILE)
        else:
            db_path = DB_FILE
        db = DatabaseManager(db_path)
        db.initialize()
        return db

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None
