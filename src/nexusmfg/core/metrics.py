"""Production metrics pipeline: filter -> aggregate -> derive.

Every function here is pure. Inputs are never mutated and nothing is cached
between calls, so calling a function twice on the same entries yields the
same output.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, Iterator

from nexusmfg.core.models import ALL, PROCESSES, EntryFilter, GroupTotals, OffDay, ProductionEntry


GREAT_THRESHOLD = 95.0
HEALTHY_THRESHOLD = 85.0
# Bar colouring uses its own threshold, independent of the status bands.
AT_RISK_THRESHOLD = 90.0

STATUS_GREAT = "Great"
STATUS_HEALTHY = "Healthy"
STATUS_NEEDS_CHECK = "Needs Check"


def round1(value: float) -> float:
    """Round to one decimal, halves away from zero (same as JS ``toFixed(1)``).

    Non-finite input is returned unchanged.
    """
    if not math.isfinite(value):
        return float(value)
    return float(Decimal(value).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def efficiency(plan: float, actual: float) -> float:
    if plan > 0:
        return round1(actual / plan * 100)
    return 0.0


def intensity(actual: float, manpower: float) -> float:
    """Units produced per worker."""
    if manpower > 0:
        return round1(actual / manpower)
    return 0.0


def shortfall(total_plan: float, total_actual: float) -> float:
    return max(0.0, float(total_plan) - float(total_actual))


def status_band(eff: float) -> str:
    if eff >= GREAT_THRESHOLD:
        return STATUS_GREAT
    if eff >= HEALTHY_THRESHOLD:
        return STATUS_HEALTHY
    return STATUS_NEEDS_CHECK


def is_at_risk(eff: float) -> bool:
    return eff < AT_RISK_THRESHOLD


# ---------------------------------------------------------------------------
# Derived rows
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ProcessMetric:
    process: str
    plan: float = 0.0
    actual: float = 0.0
    manpower: int = 0
    count: int = 0

    @property
    def efficiency(self) -> float:
        return efficiency(self.plan, self.actual)

    @property
    def intensity(self) -> float:
        return intensity(self.actual, self.manpower)

    @property
    def status(self) -> str:
        return status_band(self.efficiency)

    @property
    def at_risk(self) -> bool:
        return is_at_risk(self.efficiency)

    def as_row(self) -> dict:
        return {
            "process": self.process,
            "plan": self.plan,
            "actual": self.actual,
            "manpower": self.manpower,
            "count": self.count,
            "efficiency": self.efficiency,
            "intensity": self.intensity,
            "status": self.status,
            "at_risk": self.at_risk,
        }


@dataclass(frozen=True)
class MonthlyMetric:
    month: str  # YYYY-MM
    plan: float = 0.0
    actual: float = 0.0
    manpower: int = 0
    count: int = 0

    @property
    def efficiency(self) -> float:
        return efficiency(self.plan, self.actual)

    def as_row(self) -> dict:
        return {
            "month": self.month,
            "plan": self.plan,
            "actual": self.actual,
            "count": self.count,
            "efficiency": self.efficiency,
        }


@dataclass(frozen=True)
class DailyMetric:
    date: str
    plan: float = 0.0
    actual: float = 0.0
    count: int = 0

    @property
    def efficiency(self) -> float:
        return efficiency(self.plan, self.actual)


@dataclass(frozen=True)
class AggregateSummary:
    total_plan: float = 0.0
    total_actual: float = 0.0
    total_manpower: int = 0
    avg_efficiency: float = 0.0

    @property
    def shortfall(self) -> float:
        return shortfall(self.total_plan, self.total_actual)


# ---------------------------------------------------------------------------
# Filter stage
# ---------------------------------------------------------------------------
def _is_unset(value: str | None) -> bool:
    return value is None or not str(value).strip() or str(value).strip().lower() == ALL.lower()


def filter_entries(
    entries: Iterable[ProductionEntry],
    entry_filter: EntryFilter | None = None,
) -> Iterator[ProductionEntry]:
    """Yield entries matching every set field of ``entry_filter``.

    Dates are compared as ISO strings; YYYY-MM-DD sorts chronologically.
    """
    f = entry_filter or EntryFilter()
    category = None if _is_unset(f.category) else f.category
    process = None if _is_unset(f.process) else f.process
    start = f.date_start or None
    end = f.date_end or None

    for e in entries:
        if e is None:
            continue
        if category is not None and e.category != category:
            continue
        if process is not None and e.process != process:
            continue
        if start is not None and not (e.date and e.date >= start):
            continue
        if end is not None and not (e.date and e.date <= end):
            continue
        yield e


# ---------------------------------------------------------------------------
# Aggregation stage
# ---------------------------------------------------------------------------
def process_key(entry: ProductionEntry) -> str | None:
    return entry.process or None


def month_key(entry: ProductionEntry) -> str | None:
    return entry.date[:7] if entry.date else None


def date_key(entry: ProductionEntry) -> str | None:
    return entry.date or None


def aggregate_entries(
    entries: Iterable[ProductionEntry],
    key_func: Callable[[ProductionEntry], str | None],
    *,
    seed_keys: Iterable[str] | None = None,
) -> dict[str, GroupTotals]:
    """Sum plan/actual/manpower/count per group key.

    With ``seed_keys`` every seeded key is present (zero when idle) and entries
    whose key is not seeded are dropped. Without it, only keys seen in the
    input appear, in order of first appearance. Entries with no key are skipped.
    """
    sums: dict[str, list] = {}
    closed = seed_keys is not None
    for k in seed_keys or ():
        sums[k] = [0.0, 0.0, 0, 0]

    for e in entries:
        k = key_func(e)
        if k is None:
            continue
        acc = sums.get(k)
        if acc is None:
            if closed:
                continue
            acc = sums[k] = [0.0, 0.0, 0, 0]
        acc[0] += float(e.plan_quantity or 0)
        acc[1] += float(e.actual_quantity or 0)
        acc[2] += int(e.manpower or 0)
        acc[3] += 1

    return {
        k: GroupTotals(key=k, plan=plan, actual=actual, manpower=manpower, count=count)
        for k, (plan, actual, manpower, count) in sums.items()
    }


# ---------------------------------------------------------------------------
# Pipeline entry points
# ---------------------------------------------------------------------------
def compute_process_metrics(
    entries: Iterable[ProductionEntry],
    entry_filter: EntryFilter | None = None,
    *,
    processes: Iterable[str] = PROCESSES,
) -> list[ProcessMetric]:
    """Leaderboard rows: every known process, sorted by efficiency descending.

    ``sorted`` is stable, so processes with equal efficiency keep the canonical
    process order.
    """
    groups = aggregate_entries(filter_entries(entries, entry_filter), process_key, seed_keys=processes)
    rows = [
        ProcessMetric(process=g.key, plan=g.plan, actual=g.actual, manpower=g.manpower, count=g.count)
        for g in groups.values()
    ]
    return sorted(rows, key=lambda m: m.efficiency, reverse=True)


def compute_monthly_metrics(
    entries: Iterable[ProductionEntry],
    entry_filter: EntryFilter | None = None,
) -> list[MonthlyMetric]:
    """One row per month with at least one entry, newest month first."""
    groups = aggregate_entries(filter_entries(entries, entry_filter), month_key)
    rows = [
        MonthlyMetric(month=g.key, plan=g.plan, actual=g.actual, manpower=g.manpower, count=g.count)
        for g in groups.values()
    ]
    return sorted(rows, key=lambda m: m.month, reverse=True)


def compute_daily_trend(
    entries: Iterable[ProductionEntry],
    entry_filter: EntryFilter | None = None,
) -> list[DailyMetric]:
    """Plan vs. actual per day, oldest first (chart order)."""
    groups = aggregate_entries(filter_entries(entries, entry_filter), date_key)
    rows = [DailyMetric(date=g.key, plan=g.plan, actual=g.actual, count=g.count) for g in groups.values()]
    return sorted(rows, key=lambda m: m.date)


def compute_aggregate_summary(metrics: Iterable[ProcessMetric | MonthlyMetric]) -> AggregateSummary:
    total_plan = 0.0
    total_actual = 0.0
    total_manpower = 0
    for m in metrics:
        total_plan += m.plan
        total_actual += m.actual
        total_manpower += int(m.manpower or 0)
    avg = (total_actual / total_plan) * 100 if total_plan > 0 else 0.0
    return AggregateSummary(
        total_plan=total_plan,
        total_actual=total_actual,
        total_manpower=total_manpower,
        avg_efficiency=avg,
    )


def annotate_off_days(
    entries: Iterable[ProductionEntry],
    off_days: Iterable[OffDay],
) -> list[tuple[ProductionEntry, bool]]:
    """Pair each entry with whether its date is an off-day (display only)."""
    off_dates = {od.date for od in off_days if od.date}
    return [(e, bool(e.date) and e.date in off_dates) for e in entries]


def sort_log_rows(entries: Iterable[ProductionEntry]) -> list[ProductionEntry]:
    """Production log order: newest date first."""
    return sorted(entries, key=lambda e: e.date or "", reverse=True)
