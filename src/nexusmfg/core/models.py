from __future__ import annotations

from dataclasses import dataclass, field


CATEGORIES: tuple[str, ...] = ("Healthcare", "Toothpaste", "Rocksalt", "Cosmetic")
PROCESSES: tuple[str, ...] = ("Mixing", "Encapsulation", "Filling", "Sorting", "Packing")
UNITS: tuple[str, ...] = ("KG", "PCS")
ROLES: tuple[str, ...] = ("admin", "manager", "planner", "operator")

ALL = "All"


@dataclass(frozen=True)
class ProductionEntry:
    id: str
    date: str  # YYYY-MM-DD
    category: str
    process: str
    product_name: str
    plan_quantity: float
    actual_quantity: float
    unit: str = "KG"
    batch_no: str | None = None
    manpower: int | None = None
    last_updated_by: str = ""
    updated_at: str = ""


@dataclass(frozen=True)
class OffDay:
    id: str
    date: str  # YYYY-MM-DD
    description: str
    created_by: str = ""


@dataclass(frozen=True)
class User:
    id: str
    name: str
    username: str
    email: str
    role: str
    password_hash: str = field(default="", repr=False)


@dataclass(frozen=True)
class ActivityLog:
    id: int
    timestamp: str
    user_id: str
    user_name: str
    action: str
    details: str


@dataclass(frozen=True)
class EntryFilter:
    """Filter applied before aggregation.

    Any unset field matches everything. ``category``/``process`` also accept
    ``"All"`` as "no filter".
    """

    category: str | None = ALL
    date_start: str | None = None
    date_end: str | None = None
    process: str | None = None


@dataclass(frozen=True)
class GroupTotals:
    key: str
    plan: float = 0.0
    actual: float = 0.0
    manpower: int = 0
    count: int = 0
