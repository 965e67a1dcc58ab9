from __future__ import annotations

import logging
import math
import random
import sqlite3
from datetime import date, datetime, timedelta
from uuid import uuid4

from nexusmfg.core.auth import PasslibHasher, PasswordHasher, validate_new_password
from nexusmfg.core.events import EntriesChanged, EventBus, OffDaysChanged
from nexusmfg.core.metrics import annotate_off_days, compute_monthly_metrics, efficiency, filter_entries, sort_log_rows
from nexusmfg.core.models import (
    CATEGORIES,
    PROCESSES,
    ROLES,
    UNITS,
    ActivityLog,
    EntryFilter,
    OffDay,
    ProductionEntry,
    User,
)
from nexusmfg.data.db import Db
from nexusmfg.data.excel_io import (
    coerce_date,
    entries_from_excel_bytes,
    entries_to_excel_bytes,
    parse_float_strict,
    parse_int_strict,
)

logger = logging.getLogger(__name__)


DEFAULT_PASSWORD = "password123"

DEFAULT_USERS: list[dict] = [
    {"id": "u1", "name": "Admin User", "username": "admin", "email": "admin@nexus.com", "role": "admin"},
    {"id": "u2", "name": "Manager User", "username": "manager", "email": "manager@nexus.com", "role": "manager"},
    {"id": "u3", "name": "Planner User", "username": "planner", "email": "planner@nexus.com", "role": "planner"},
    {"id": "u4", "name": "Operator User", "username": "operator", "email": "operator@nexus.com", "role": "operator"},
]

DEFAULT_OFF_DAYS: list[dict] = [
    {"id": "od1", "date": "2025-12-25", "description": "Christmas Day", "created_by": "u1"},
    {"id": "od2", "date": "2026-01-01", "description": "New Year", "created_by": "u1"},
]

DEMO_PRODUCTS = [
    "Pain Relief Gel", "Minty Fresh", "Pink Salt Fine", "Vitamin C",
    "Charcoal Paste", "Herbal Shampoo", "Skin Repair Cream",
]


def now_timestamp() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def timestamp_key(value: str | None) -> str:
    """Comparable form of a stored timestamp ('T' or ' ' separator, no zone)."""
    return str(value or "").strip().replace("T", " ")[:19]


class Repository:
    """SQLite-backed store for entries, off-days, users and the activity log.

    Writes to entries/off-days publish change events on ``bus`` so open views
    can recompute.
    """

    def __init__(self, db: Db, *, bus: EventBus | None = None, hasher: PasswordHasher | None = None):
        self.db = db
        self.bus = bus or EventBus()
        self.hasher = hasher or PasslibHasher()

    # ---------- Config ----------
    def get_config(self, *, key: str, default: str | None = None) -> str | None:
        with self.db.connect() as con:
            row = con.execute("SELECT value FROM app_config WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        return str(row["value"])

    def set_config(self, *, key: str, value: str) -> None:
        key = str(key or "").strip()
        if not key:
            raise ValueError("config key is empty")
        with self.db.connect() as con:
            con.execute(
                "INSERT INTO app_config(key, value) VALUES(?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (key, str(value)),
            )

    # ---------- Activity log ----------
    def log_activity(self, *, user: User | None, action: str, details: str = "") -> None:
        """Append to the activity log; failures are logged, never raised."""
        try:
            with self.db.connect() as con:
                con.execute(
                    "INSERT INTO activity_log(timestamp, user_id, user_name, action, details) VALUES(?, ?, ?, ?, ?)",
                    (
                        now_timestamp(),
                        user.id if user else "",
                        user.name if user else "System",
                        action,
                        details,
                    ),
                )
        except sqlite3.Error:
            logger.exception("Failed to write activity log (%s)", action)

    def list_activity(self, *, limit: int = 200) -> list[ActivityLog]:
        with self.db.connect() as con:
            rows = con.execute(
                "SELECT * FROM activity_log ORDER BY id DESC LIMIT ?", (int(limit),)
            ).fetchall()
        return [
            ActivityLog(
                id=int(r["id"]),
                timestamp=r["timestamp"],
                user_id=r["user_id"],
                user_name=r["user_name"],
                action=r["action"],
                details=r["details"],
            )
            for r in rows
        ]

    # ---------- Users ----------
    @staticmethod
    def _user_from_row(r) -> User:
        return User(
            id=r["id"],
            name=r["name"],
            username=r["username"],
            email=r["email"],
            role=r["role"],
            password_hash=r["password_hash"],
        )

    def list_users(self) -> list[User]:
        with self.db.connect() as con:
            rows = con.execute("SELECT * FROM users ORDER BY name").fetchall()
        return [self._user_from_row(r) for r in rows]

    def get_user(self, user_id: str | None) -> User | None:
        if not user_id:
            return None
        with self.db.connect() as con:
            r = con.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._user_from_row(r) if r else None

    def get_user_by_username(self, username: str) -> User | None:
        u = str(username or "").strip().lower()
        if not u:
            return None
        with self.db.connect() as con:
            r = con.execute("SELECT * FROM users WHERE LOWER(username) = ?", (u,)).fetchone()
        return self._user_from_row(r) if r else None

    def create_user(self, *, name: str, username: str, email: str = "", role: str, password: str) -> User:
        name = str(name or "").strip()
        username = str(username or "").strip()
        if not name or not username:
            raise ValueError("Name and username are required")
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role!r}")
        validate_new_password(new_password=password, confirm_password=password)
        if self.get_user_by_username(username) is not None:
            raise ValueError(f"Username already exists: {username}")

        user = User(
            id=f"u-{uuid4().hex[:12]}",
            name=name,
            username=username,
            email=str(email or "").strip(),
            role=role,
            password_hash=self.hasher.hash(password),
        )
        with self.db.connect() as con:
            con.execute(
                "INSERT INTO users(id, name, username, email, role, password_hash) VALUES(?, ?, ?, ?, ?, ?)",
                (user.id, user.name, user.username, user.email, user.role, user.password_hash),
            )
        return user

    def update_user(self, *, user_id: str, name: str, email: str, role: str) -> User:
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role!r}")
        current = self.get_user(user_id)
        if current is None:
            raise ValueError(f"User not found: {user_id}")
        if current.role == "admin" and role != "admin" and self._count_admins() <= 1:
            raise ValueError("Cannot demote the last admin")
        with self.db.connect() as con:
            con.execute(
                "UPDATE users SET name = ?, email = ?, role = ? WHERE id = ?",
                (str(name or current.name).strip(), str(email or "").strip(), role, user_id),
            )
        return self.get_user(user_id)  # type: ignore[return-value]

    def delete_user(self, *, user_id: str) -> None:
        current = self.get_user(user_id)
        if current is None:
            return
        if current.role == "admin" and self._count_admins() <= 1:
            raise ValueError("Cannot delete the last admin")
        with self.db.connect() as con:
            con.execute("DELETE FROM users WHERE id = ?", (user_id,))

    def _count_admins(self) -> int:
        with self.db.connect() as con:
            return int(con.execute("SELECT COUNT(*) FROM users WHERE role = 'admin'").fetchone()[0])

    def set_password(self, *, user_id: str, new_password: str) -> None:
        validate_new_password(new_password=new_password, confirm_password=new_password)
        with self.db.connect() as con:
            cur = con.execute(
                "UPDATE users SET password_hash = ? WHERE id = ?",
                (self.hasher.hash(new_password), user_id),
            )
            if cur.rowcount == 0:
                raise ValueError(f"User not found: {user_id}")

    def authenticate(self, *, username: str, password: str) -> User | None:
        user = self.get_user_by_username(username)
        if user is None or not self.hasher.verify(password, user.password_hash):
            logger.info("Failed login for %r", username)
            return None
        self.log_activity(user=user, action="LOGIN", details=f"{user.username} signed in")
        return user

    def change_password(
        self,
        *,
        user_id: str,
        current_password: str,
        new_password: str,
        confirm_password: str,
    ) -> None:
        user = self.get_user(user_id)
        if user is None:
            raise ValueError(f"User not found: {user_id}")
        if new_password != confirm_password:
            raise ValueError("New passwords do not match")
        if not self.hasher.verify(current_password, user.password_hash):
            raise ValueError("Incorrect current password")
        validate_new_password(new_password=new_password, confirm_password=confirm_password)
        self.set_password(user_id=user_id, new_password=new_password)
        self.log_activity(
            user=user,
            action="CHANGE_PASSWORD",
            details="User successfully updated their account password",
        )

    # ---------- Production entries ----------
    @staticmethod
    def _entry_from_row(r) -> ProductionEntry:
        return ProductionEntry(
            id=r["id"],
            date=r["date"],
            category=r["category"],
            process=r["process"],
            product_name=r["product_name"],
            plan_quantity=float(r["plan_quantity"] or 0.0),
            actual_quantity=float(r["actual_quantity"] or 0.0),
            unit=r["unit"] or "KG",
            batch_no=r["batch_no"],
            manpower=None if r["manpower"] is None else int(r["manpower"]),
            last_updated_by=r["last_updated_by"] or "",
            updated_at=r["updated_at"] or "",
        )

    @staticmethod
    def validate_entry(entry: ProductionEntry) -> None:
        if not str(entry.id or "").strip():
            raise ValueError("Entry id is empty")
        if coerce_date(entry.date) != entry.date:
            raise ValueError(f"Date must be YYYY-MM-DD: {entry.date!r}")
        if entry.category not in CATEGORIES:
            raise ValueError(f"Unknown category: {entry.category!r}")
        if entry.process not in PROCESSES:
            raise ValueError(f"Unknown process: {entry.process!r}")
        if entry.unit not in UNITS:
            raise ValueError(f"Unknown unit: {entry.unit!r}")
        if not str(entry.product_name or "").strip():
            raise ValueError("Product name is required")
        if not (math.isfinite(entry.plan_quantity) and math.isfinite(entry.actual_quantity)):
            raise ValueError("Quantities must be finite numbers")
        if entry.plan_quantity < 0 or entry.actual_quantity < 0:
            raise ValueError("Quantities must be non-negative")
        if entry.manpower is not None and entry.manpower < 0:
            raise ValueError("Manpower must be non-negative")

    def build_entry(self, values: dict, *, user: User | None, entry_id: str | None = None) -> ProductionEntry:
        """Coerce raw form/spreadsheet values into a validated entry.

        A missing ``entry_id`` (and no ``id`` in values) creates a new id.
        """
        plan = parse_float_strict(values.get("plan_quantity"), field="plan_quantity")
        actual = parse_float_strict(values.get("actual_quantity"), field="actual_quantity")
        manpower_raw = values.get("manpower")
        manpower = None
        if manpower_raw is not None and str(manpower_raw).strip() != "":
            manpower = parse_int_strict(manpower_raw, field="manpower")
        batch_no = str(values.get("batch_no") or "").strip() or None

        entry = ProductionEntry(
            id=str(entry_id or values.get("id") or f"e-{uuid4().hex}"),
            date=coerce_date(values.get("date")),
            category=str(values.get("category") or "").strip(),
            process=str(values.get("process") or "").strip(),
            product_name=str(values.get("product_name") or "").strip(),
            plan_quantity=plan if plan is not None else 0.0,
            actual_quantity=actual if actual is not None else 0.0,
            unit=str(values.get("unit") or "KG").strip().upper(),
            batch_no=batch_no,
            manpower=manpower,
            last_updated_by=user.id if user else "",
            updated_at=now_timestamp(),
        )
        self.validate_entry(entry)
        return entry

    def list_entries(self) -> list[ProductionEntry]:
        with self.db.connect() as con:
            rows = con.execute("SELECT * FROM production_entries ORDER BY date DESC, rowid").fetchall()
        return [self._entry_from_row(r) for r in rows]

    def get_entry(self, entry_id: str) -> ProductionEntry | None:
        with self.db.connect() as con:
            r = con.execute("SELECT * FROM production_entries WHERE id = ?", (entry_id,)).fetchone()
        return self._entry_from_row(r) if r else None

    def count_entries(self) -> int:
        with self.db.connect() as con:
            return int(con.execute("SELECT COUNT(*) FROM production_entries").fetchone()[0])

    def _write_entry(self, con, entry: ProductionEntry) -> bool:
        """Insert or fully replace by id. Returns True when the id already existed."""
        # Writing an id again revives it.
        con.execute("DELETE FROM deleted_entries WHERE id = ?", (entry.id,))
        existed = con.execute("SELECT 1 FROM production_entries WHERE id = ?", (entry.id,)).fetchone() is not None
        con.execute(
            """
            INSERT INTO production_entries(
                id, date, category, process, product_name, plan_quantity, actual_quantity,
                unit, batch_no, manpower, last_updated_by, updated_at
            ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                date=excluded.date,
                category=excluded.category,
                process=excluded.process,
                product_name=excluded.product_name,
                plan_quantity=excluded.plan_quantity,
                actual_quantity=excluded.actual_quantity,
                unit=excluded.unit,
                batch_no=excluded.batch_no,
                manpower=excluded.manpower,
                last_updated_by=excluded.last_updated_by,
                updated_at=excluded.updated_at
            """.strip(),
            (
                entry.id,
                entry.date,
                entry.category,
                entry.process,
                entry.product_name,
                float(entry.plan_quantity),
                float(entry.actual_quantity),
                entry.unit,
                entry.batch_no,
                entry.manpower,
                entry.last_updated_by,
                entry.updated_at,
            ),
        )
        return existed

    def upsert_entry(self, entry: ProductionEntry, *, user: User | None = None) -> ProductionEntry:
        self.validate_entry(entry)
        with self.db.connect() as con:
            existed = self._write_entry(con, entry)

        action = "update" if existed else "create"
        self.log_activity(
            user=user,
            action="UPDATE_RECORD" if existed else "CREATE_RECORD",
            details=f"{entry.product_name} ({entry.date}) {entry.process}: {entry.actual_quantity:g}/{entry.plan_quantity:g} {entry.unit}",
        )
        self.bus.publish(EntriesChanged(action=action, entry_id=entry.id))
        return entry

    def upsert_entries(self, entries: list[ProductionEntry], *, action: str = "import") -> int:
        """Bulk write; publishes a single change event."""
        for e in entries:
            self.validate_entry(e)
        if not entries:
            return 0
        with self.db.connect() as con:
            for e in entries:
                self._write_entry(con, e)
        self.bus.publish(EntriesChanged(action=action))
        return len(entries)

    def delete_entry(self, entry_id: str, *, user: User | None = None) -> ProductionEntry | None:
        existing = self.get_entry(entry_id)
        if existing is not None:
            with self.db.connect() as con:
                con.execute("DELETE FROM production_entries WHERE id = ?", (entry_id,))
                con.execute(
                    "INSERT OR REPLACE INTO deleted_entries(id, deleted_at, deleted_by) VALUES(?, ?, ?)",
                    (entry_id, now_timestamp(), user.id if user else ""),
                )
            self.log_activity(
                user=user,
                action="DELETE_RECORD",
                details=f"Record deleted from reports: {existing.product_name} ({existing.date})",
            )
        # Views refresh either way.
        self.bus.publish(EntriesChanged(action="delete", entry_id=entry_id))
        return existing

    def list_deleted_entry_ids(self) -> set[str]:
        with self.db.connect() as con:
            return {r["id"] for r in con.execute("SELECT id FROM deleted_entries").fetchall()}

    def import_entries_excel_bytes(self, *, content: bytes, user: User | None) -> dict:
        """Import entries from an .xlsx sheet. Valid rows are written, bad rows reported."""
        rows = entries_from_excel_bytes(content)
        valid: list[ProductionEntry] = []
        errors: list[dict] = []
        for idx, raw in enumerate(rows, start=2):  # row 1 is the header
            try:
                valid.append(self.build_entry(raw, user=user))
            except ValueError as ex:
                errors.append({"row": idx, "error": str(ex)})

        imported = self.upsert_entries(valid, action="import")
        self.log_activity(
            user=user,
            action="IMPORT_RECORDS",
            details=f"Imported {imported} records ({len(errors)} rejected)",
        )
        logger.info("Imported %d entries, %d rejected", imported, len(errors))
        return {"imported": imported, "errors": errors}

    # ---------- Reports ----------
    def get_log_rows(self, *, entry_filter: EntryFilter | None = None) -> list[dict]:
        """Production log rows (newest first) with the off-day annotation."""
        entries = sort_log_rows(filter_entries(self.list_entries(), entry_filter))
        rows: list[dict] = []
        for e, is_off in annotate_off_days(entries, self.list_off_days()):
            rows.append(
                {
                    "id": e.id,
                    "date": e.date,
                    "status": "Holiday Shift" if is_off else "Normal",
                    "is_off_day": is_off,
                    "category": e.category,
                    "process": e.process,
                    "product_name": e.product_name,
                    "plan_quantity": e.plan_quantity,
                    "actual_quantity": e.actual_quantity,
                    "unit": e.unit,
                    "efficiency": efficiency(e.plan_quantity, e.actual_quantity),
                    "batch_no": e.batch_no or "",
                    "manpower": e.manpower,
                }
            )
        return rows

    def export_report_xlsx(self, *, entry_filter: EntryFilter | None = None, view: str = "daily") -> bytes:
        if view == "daily":
            rows = [
                {
                    "Date": r["date"],
                    "Status": r["status"],
                    "Category": r["category"],
                    "Process": r["process"],
                    "Product": r["product_name"],
                    "Plan": r["plan_quantity"],
                    "Actual": r["actual_quantity"],
                    "Unit": r["unit"],
                    "Efficiency %": r["efficiency"],
                    "Batch No": r["batch_no"],
                    "Manpower": r["manpower"],
                }
                for r in self.get_log_rows(entry_filter=entry_filter)
            ]
        else:
            rows = [
                {
                    "Month": m.month,
                    "Total Plan": m.plan,
                    "Total Actual": m.actual,
                    "Overall Efficiency %": m.efficiency,
                }
                for m in compute_monthly_metrics(self.list_entries(), entry_filter)
            ]
        return entries_to_excel_bytes(rows, view=view)

    # ---------- Off days ----------
    def list_off_days(self) -> list[OffDay]:
        with self.db.connect() as con:
            rows = con.execute("SELECT * FROM off_days ORDER BY date").fetchall()
        return [
            OffDay(id=r["id"], date=r["date"], description=r["description"], created_by=r["created_by"])
            for r in rows
        ]

    def add_off_day(self, *, date_value, description: str, user: User | None) -> OffDay:
        iso = coerce_date(date_value)
        if any(od.date == iso for od in self.list_off_days()):
            raise ValueError(f"{iso} is already marked as an off-day")
        od = OffDay(
            id=f"od-{uuid4().hex[:12]}",
            date=iso,
            description=str(description or "").strip() or "Holiday",
            created_by=user.id if user else "",
        )
        self.upsert_off_day(od)
        self.log_activity(user=user, action="ADD_OFF_DAY", details=f"{od.date}: {od.description}")
        return od

    def upsert_off_day(self, off_day: OffDay, *, notify: bool = True) -> OffDay:
        if coerce_date(off_day.date) != off_day.date:
            raise ValueError(f"Date must be YYYY-MM-DD: {off_day.date!r}")
        with self.db.connect() as con:
            con.execute(
                """
                INSERT INTO off_days(id, date, description, created_by) VALUES(?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    date=excluded.date, description=excluded.description, created_by=excluded.created_by
                """.strip(),
                (off_day.id, off_day.date, off_day.description, off_day.created_by),
            )
        if notify:
            self.bus.publish(OffDaysChanged(action="upsert", off_day_id=off_day.id))
        return off_day

    def delete_off_day(self, *, off_day_id: str, user: User | None = None) -> None:
        with self.db.connect() as con:
            r = con.execute("SELECT date, description FROM off_days WHERE id = ?", (off_day_id,)).fetchone()
            con.execute("DELETE FROM off_days WHERE id = ?", (off_day_id,))
        if r is not None:
            self.log_activity(user=user, action="DELETE_OFF_DAY", details=f"{r['date']}: {r['description']}")
        self.bus.publish(OffDaysChanged(action="delete", off_day_id=off_day_id))

    # ---------- Seed ----------
    def seed_defaults(self) -> None:
        """Seed default users and off-days, only into empty tables."""
        with self.db.connect() as con:
            users_count = int(con.execute("SELECT COUNT(*) FROM users").fetchone()[0])
            if users_count == 0:
                default_hash = self.hasher.hash(DEFAULT_PASSWORD)
                con.executemany(
                    "INSERT OR IGNORE INTO users(id, name, username, email, role, password_hash) VALUES(?, ?, ?, ?, ?, ?)",
                    [(u["id"], u["name"], u["username"], u["email"], u["role"], default_hash) for u in DEFAULT_USERS],
                )
                logger.info("Seeded %d default users", len(DEFAULT_USERS))

            off_count = int(con.execute("SELECT COUNT(*) FROM off_days").fetchone()[0])
            if off_count == 0:
                con.executemany(
                    "INSERT OR IGNORE INTO off_days(id, date, description, created_by) VALUES(?, ?, ?, ?)",
                    [(o["id"], o["date"], o["description"], o["created_by"]) for o in DEFAULT_OFF_DAYS],
                )

    def seed_demo_entries(
        self,
        *,
        days: int = 30,
        today: date | None = None,
        rng: random.Random | None = None,
    ) -> int:
        """Fill an empty entry table with random demo production. Returns rows written."""
        if self.count_entries() > 0:
            return 0
        rng = rng or random.Random()
        base = today or date.today()
        stamp = now_timestamp()
        entries: list[ProductionEntry] = []
        for i in range(days):
            d = (base - timedelta(days=i)).isoformat()
            for idx, product in enumerate(DEMO_PRODUCTS):
                if rng.random() > 0.8:
                    continue
                plan = rng.randint(500, 999)
                actual = int(plan * (0.8 + rng.random() * 0.2))
                entries.append(
                    ProductionEntry(
                        id=f"seed-{i}-{idx}",
                        date=d,
                        category=CATEGORIES[idx % len(CATEGORIES)],
                        process=PROCESSES[idx % len(PROCESSES)],
                        product_name=product,
                        plan_quantity=float(plan),
                        actual_quantity=float(actual),
                        unit="KG" if idx % 2 == 0 else "PCS",
                        batch_no=f"B-{d.replace('-', '')}-{idx}",
                        manpower=rng.randint(3, 7),
                        last_updated_by="u1",
                        updated_at=stamp,
                    )
                )
        return self.upsert_entries(entries, action="seed")
