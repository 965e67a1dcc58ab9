from __future__ import annotations

from contextlib import contextmanager
import sqlite3
from pathlib import Path


class Db:
    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def connect(self):
        con = sqlite3.connect(self.path, timeout=20.0)
        con.row_factory = sqlite3.Row
        try:
            yield con
            con.commit()
        except Exception:
            con.rollback()
            raise
        finally:
            con.close()

    def ensure_schema(self) -> None:
        con = sqlite3.connect(self.path, timeout=10.0)
        try:
            con.execute("PRAGMA journal_mode=WAL;")
            con.execute("PRAGMA foreign_keys=ON;")

            con.executescript(
                """
                CREATE TABLE IF NOT EXISTS app_config (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    username TEXT NOT NULL UNIQUE,
                    email TEXT NOT NULL DEFAULT '',
                    role TEXT NOT NULL,
                    password_hash TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS production_entries (
                    id TEXT PRIMARY KEY,
                    date TEXT NOT NULL,
                    category TEXT NOT NULL,
                    process TEXT NOT NULL,
                    product_name TEXT NOT NULL,
                    plan_quantity REAL NOT NULL DEFAULT 0,
                    actual_quantity REAL NOT NULL DEFAULT 0,
                    unit TEXT NOT NULL DEFAULT 'KG',
                    batch_no TEXT,
                    manpower INTEGER,
                    last_updated_by TEXT NOT NULL DEFAULT '',
                    updated_at TEXT NOT NULL DEFAULT ''
                );

                CREATE INDEX IF NOT EXISTS ix_production_entries_date
                    ON production_entries(date);

                -- Tombstones: keeps sync from re-importing locally deleted entries.
                CREATE TABLE IF NOT EXISTS deleted_entries (
                    id TEXT PRIMARY KEY,
                    deleted_at TEXT NOT NULL,
                    deleted_by TEXT NOT NULL DEFAULT ''
                );

                CREATE TABLE IF NOT EXISTS off_days (
                    id TEXT PRIMARY KEY,
                    date TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    created_by TEXT NOT NULL DEFAULT ''
                );

                CREATE TABLE IF NOT EXISTS activity_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL DEFAULT(datetime('now', 'localtime')),
                    user_id TEXT NOT NULL DEFAULT '',
                    user_name TEXT NOT NULL DEFAULT '',
                    action TEXT NOT NULL,
                    details TEXT NOT NULL DEFAULT ''
                );
                """
            )

            # production_entries v2: older databases lack batch/manpower columns
            pe_cols = [r[1] for r in con.execute("PRAGMA table_info(production_entries)").fetchall()]
            if "batch_no" not in pe_cols:
                con.execute("ALTER TABLE production_entries ADD COLUMN batch_no TEXT")
            if "manpower" not in pe_cols:
                con.execute("ALTER TABLE production_entries ADD COLUMN manpower INTEGER")

            con.execute("INSERT OR IGNORE INTO app_config(key, value) VALUES('plant_name', 'NexusMfg')")
            con.execute("INSERT OR IGNORE INTO app_config(key, value) VALUES('sheets_sync_url', '')")
            con.execute("INSERT OR IGNORE INTO app_config(key, value) VALUES('sheets_sync_timeout', '15')")
            con.commit()
        finally:
            con.close()
