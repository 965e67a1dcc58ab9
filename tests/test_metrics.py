from __future__ import annotations

import pytest

from nexusmfg.core.metrics import (
    AggregateSummary,
    aggregate_entries,
    annotate_off_days,
    compute_aggregate_summary,
    compute_daily_trend,
    compute_monthly_metrics,
    compute_process_metrics,
    efficiency,
    filter_entries,
    intensity,
    is_at_risk,
    month_key,
    process_key,
    round1,
    shortfall,
    sort_log_rows,
    status_band,
)
from nexusmfg.core.models import PROCESSES, EntryFilter, OffDay, ProductionEntry


def _entry(
    id: str,
    *,
    date: str = "2025-01-05",
    category: str = "Healthcare",
    process: str = "Mixing",
    plan: float = 100.0,
    actual: float = 90.0,
    manpower: int | None = None,
) -> ProductionEntry:
    return ProductionEntry(
        id=id,
        date=date,
        category=category,
        process=process,
        product_name=f"Product {id}",
        plan_quantity=plan,
        actual_quantity=actual,
        manpower=manpower,
    )


@pytest.fixture
def entries() -> list[ProductionEntry]:
    return [
        _entry("a", date="2025-01-05", category="Healthcare", process="Mixing", plan=1000, actual=950, manpower=5),
        _entry("b", date="2025-01-20", category="Toothpaste", process="Filling", plan=500, actual=400, manpower=4),
        _entry("c", date="2025-02-03", category="Healthcare", process="Packing", plan=200, actual=210),
        _entry("d", date="2025-02-10", category="Cosmetic", process="Mixing", plan=300, actual=240, manpower=2),
        _entry("e", date="2025-03-01", category="Rocksalt", process="Encapsulation", plan=0, actual=50),
    ]


def test_efficiency_and_intensity_zero_policy():
    assert efficiency(0, 100) == 0.0
    assert efficiency(1000, 950) == 95.0
    assert intensity(50, 0) == 0.0
    assert intensity(50, 5) == 10.0


def test_round1_rounds_halves_away_from_zero():
    assert round1(0.25) == 0.3
    assert round1(12.35) == 12.3  # binary 12.35 is just below the half
    assert efficiency(3, 1) == 33.3
    assert efficiency(3, 2) == 66.7


def test_efficiency_may_exceed_100():
    assert efficiency(200, 210) == 105.0


def test_status_bands():
    assert status_band(95.0) == "Great"
    assert status_band(94.9) == "Healthy"
    assert status_band(85.0) == "Healthy"
    assert status_band(84.9) == "Needs Check"


def test_at_risk_threshold_is_independent_of_status():
    assert is_at_risk(89.9)
    assert not is_at_risk(90.0)
    # Healthy band but still at risk.
    assert status_band(88.0) == "Healthy" and is_at_risk(88.0)


def test_shortfall_never_negative():
    assert shortfall(100, 80) == 20
    assert shortfall(100, 120) == 0


def test_filter_all_category_matches_everything(entries):
    assert list(filter_entries(entries, EntryFilter(category="All"))) == entries
    assert list(filter_entries(entries, EntryFilter(category="all"))) == entries
    assert list(filter_entries(entries, None)) == entries


def test_filter_is_conjunctive(entries):
    f = EntryFilter(category="Healthcare", date_start="2025-01-01", date_end="2025-01-31")
    assert [e.id for e in filter_entries(entries, f)] == ["a"]

    f = EntryFilter(process="Mixing")
    assert [e.id for e in filter_entries(entries, f)] == ["a", "d"]


def test_filter_date_bounds_are_inclusive(entries):
    f = EntryFilter(date_start="2025-01-20", date_end="2025-02-03")
    assert [e.id for e in filter_entries(entries, f)] == ["b", "c"]


def test_widening_date_range_never_removes_entries(entries):
    narrow = {e.id for e in filter_entries(entries, EntryFilter(date_start="2025-01-15", date_end="2025-02-05"))}
    wide = {e.id for e in filter_entries(entries, EntryFilter(date_start="2025-01-01", date_end="2025-02-28"))}
    assert narrow <= wide


def test_filter_is_lazy_and_restartable(entries):
    gen = filter_entries(entries, EntryFilter(category="Healthcare"))
    assert iter(gen) is gen
    assert len(list(gen)) == 2
    assert list(gen) == []
    assert len(list(filter_entries(entries, EntryFilter(category="Healthcare")))) == 2


def test_filter_does_not_mutate_input(entries):
    before = list(entries)
    list(filter_entries(entries, EntryFilter(category="Cosmetic")))
    assert entries == before


def test_aggregate_conserves_sums(entries):
    groups = aggregate_entries(entries, month_key)
    assert sum(g.plan for g in groups.values()) == sum(e.plan_quantity for e in entries)
    assert sum(g.actual for g in groups.values()) == sum(e.actual_quantity for e in entries)
    assert sum(g.manpower for g in groups.values()) == sum(e.manpower or 0 for e in entries)
    assert sum(g.count for g in groups.values()) == len(entries)


def test_aggregate_keeps_first_appearance_order(entries):
    assert list(aggregate_entries(entries, month_key)) == ["2025-01", "2025-02", "2025-03"]


def test_aggregate_seeded_view_drops_unknown_keys():
    rows = [_entry("x", process="Mixing"), _entry("y", process="Welding")]
    groups = aggregate_entries(rows, process_key, seed_keys=PROCESSES)
    assert list(groups) == list(PROCESSES)
    assert groups["Mixing"].count == 1
    assert "Welding" not in groups


def test_process_metrics_always_include_every_process():
    metrics = compute_process_metrics([_entry("x", process="Mixing")])
    assert {m.process for m in metrics} == set(PROCESSES)
    sorting = next(m for m in metrics if m.process == "Sorting")
    assert (sorting.plan, sorting.actual, sorting.count, sorting.efficiency) == (0.0, 0.0, 0, 0.0)


def test_process_metrics_ignore_unknown_process():
    metrics = compute_process_metrics([_entry("x", process="Welding", plan=100, actual=100)])
    assert sum(m.count for m in metrics) == 0


def test_leaderboard_sort_is_stable():
    rows = [
        _entry("a", process="Mixing", plan=100, actual=80),
        _entry("b", process="Encapsulation", plan=100, actual=95),
        _entry("c", process="Filling", plan=100, actual=95),
    ]
    metrics = compute_process_metrics(rows, processes=("Mixing", "Encapsulation", "Filling"))
    assert [m.process for m in metrics] == ["Encapsulation", "Filling", "Mixing"]


def test_process_metric_derived_fields(entries):
    mixing = next(m for m in compute_process_metrics(entries) if m.process == "Mixing")
    assert mixing.plan == 1300
    assert mixing.actual == 1190
    assert mixing.manpower == 7
    assert mixing.efficiency == 91.5
    assert mixing.intensity == 170.0
    assert mixing.status == "Healthy"
    assert not mixing.at_risk
    row = mixing.as_row()
    assert row["efficiency"] == 91.5 and row["status"] == "Healthy"


def test_monthly_grouping_and_order(entries):
    metrics = compute_monthly_metrics(entries)
    assert [m.month for m in metrics] == ["2025-03", "2025-02", "2025-01"]
    jan = metrics[-1]
    assert jan.count == 2
    assert jan.plan == 1500
    assert jan.efficiency == 90.0


def test_monthly_view_only_has_months_with_entries():
    assert compute_monthly_metrics([]) == []


def test_daily_trend_oldest_first(entries):
    trend = compute_daily_trend(entries, EntryFilter(date_start="2025-01-01", date_end="2025-02-28"))
    assert [d.date for d in trend] == ["2025-01-05", "2025-01-20", "2025-02-03", "2025-02-10"]
    assert trend[0].efficiency == 95.0


def test_aggregate_summary(entries):
    summary = compute_aggregate_summary(compute_process_metrics(entries))
    assert summary.total_plan == 2000
    assert summary.total_actual == 1850
    assert summary.total_manpower == 11
    assert summary.avg_efficiency == pytest.approx(92.5)
    assert summary.shortfall == 150


def test_aggregate_summary_empty():
    summary = compute_aggregate_summary([])
    assert summary == AggregateSummary()
    assert summary.avg_efficiency == 0.0
    assert summary.shortfall == 0.0


def test_pipeline_is_idempotent(entries):
    f = EntryFilter(category="Healthcare")
    assert compute_process_metrics(entries, f) == compute_process_metrics(entries, f)
    assert compute_monthly_metrics(entries, f) == compute_monthly_metrics(entries, f)


def test_off_days_annotate_without_excluding(entries):
    off = [OffDay(id="od1", date="2025-01-20", description="Holiday")]
    annotated = annotate_off_days(entries, off)
    assert len(annotated) == len(entries)
    assert [e.id for e, is_off in annotated if is_off] == ["b"]


def test_sort_log_rows_newest_first(entries):
    assert [e.id for e in sort_log_rows(entries)] == ["e", "d", "c", "b", "a"]


def test_round1_passes_non_finite_through():
    assert round1(float("inf")) == float("inf")
    assert round1(float("-inf")) == float("-inf")
    assert round1(float("nan")) != round1(float("nan"))


def test_process_metrics_survive_infinite_quantity():
    metrics = compute_process_metrics([_entry("x", process="Mixing", plan=100, actual=float("inf"))])
    mixing = next(m for m in metrics if m.process == "Mixing")
    assert mixing.efficiency == float("inf")
