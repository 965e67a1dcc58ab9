"""Tests for database schema and migrations."""

import sqlite3
import tempfile
from pathlib import Path

import pytest

from nexusmfg.data.db import Db


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    tmpdir = tempfile.mkdtemp()
    db_path = Path(tmpdir) / "test.db"
    db = Db(db_path)
    yield db, db_path

    for f in Path(tmpdir).glob("test.db*"):
        f.unlink(missing_ok=True)
    Path(tmpdir).rmdir()


def test_ensure_schema_creates_all_tables(temp_db):
    db, _ = temp_db
    db.ensure_schema()

    with db.connect() as con:
        tables = {r[0] for r in con.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()}

    assert {"app_config", "users", "production_entries", "deleted_entries", "off_days", "activity_log"} <= tables


def test_ensure_schema_is_idempotent_and_seeds_config(temp_db):
    db, _ = temp_db
    db.ensure_schema()
    with db.connect() as con:
        con.execute("UPDATE app_config SET value = 'https://example.test/sync' WHERE key = 'sheets_sync_url'")
    db.ensure_schema()

    with db.connect() as con:
        cfg = {r["key"]: r["value"] for r in con.execute("SELECT key, value FROM app_config").fetchall()}

    assert cfg["sheets_sync_url"] == "https://example.test/sync"
    assert cfg["sheets_sync_timeout"] == "15"
    assert cfg["plant_name"] == "NexusMfg"


def test_migration_adds_batch_and_manpower_columns(temp_db):
    db, db_path = temp_db
    con = sqlite3.connect(db_path)
    con.execute(
        """
        CREATE TABLE production_entries (
            id TEXT PRIMARY KEY,
            date TEXT NOT NULL,
            category TEXT NOT NULL,
            process TEXT NOT NULL,
            product_name TEXT NOT NULL,
            plan_quantity REAL NOT NULL DEFAULT 0,
            actual_quantity REAL NOT NULL DEFAULT 0,
            unit TEXT NOT NULL DEFAULT 'KG',
            last_updated_by TEXT NOT NULL DEFAULT '',
            updated_at TEXT NOT NULL DEFAULT ''
        )
        """
    )
    con.execute(
        "INSERT INTO production_entries(id, date, category, process, product_name) "
        "VALUES('old', '2024-05-01', 'Healthcare', 'Mixing', 'Legacy')"
    )
    con.commit()
    con.close()

    db.ensure_schema()

    with db.connect() as con:
        cols = {r[1] for r in con.execute("PRAGMA table_info(production_entries)").fetchall()}
        row = con.execute("SELECT * FROM production_entries WHERE id = 'old'").fetchone()

    assert {"batch_no", "manpower"} <= cols
    assert row["product_name"] == "Legacy"
    assert row["manpower"] is None


def test_connect_rolls_back_on_error(temp_db):
    db, _ = temp_db
    db.ensure_schema()

    with pytest.raises(RuntimeError):
        with db.connect() as con:
            con.execute("INSERT INTO app_config(key, value) VALUES('temp', 'x')")
            raise RuntimeError("abort")

    with db.connect() as con:
        assert con.execute("SELECT 1 FROM app_config WHERE key = 'temp'").fetchone() is None
