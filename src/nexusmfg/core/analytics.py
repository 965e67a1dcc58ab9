from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Protocol

from nexusmfg.core.events import EntriesChanged, EventBus
from nexusmfg.core.metrics import (
    AggregateSummary,
    MonthlyMetric,
    ProcessMetric,
    compute_aggregate_summary,
    compute_monthly_metrics,
    compute_process_metrics,
)
from nexusmfg.core.models import EntryFilter, ProductionEntry

logger = logging.getLogger(__name__)


class EntrySource(Protocol):
    def list_entries(self) -> list[ProductionEntry]: ...


@dataclass(frozen=True)
class AnalyticsSnapshot:
    entry_filter: EntryFilter
    process_metrics: list[ProcessMetric] = field(default_factory=list)
    monthly_metrics: list[MonthlyMetric] = field(default_factory=list)
    summary: AggregateSummary = field(default_factory=AggregateSummary)


class AnalyticsView:
    """Live analytics over a store.

    Every ``EntriesChanged`` event (or filter change) re-reads the full entry
    list and recomputes all outputs synchronously; there is no delta update.
    """

    def __init__(self, store: EntrySource, bus: EventBus, entry_filter: EntryFilter | None = None):
        self.store = store
        self.bus = bus
        self.entry_filter = entry_filter or EntryFilter()
        self._listeners: list[Callable[[AnalyticsSnapshot], None]] = []
        self.snapshot = self.recompute()
        self._unsubscribe = bus.subscribe(EntriesChanged, self._on_entries_changed)

    def on_update(self, listener: Callable[[AnalyticsSnapshot], None]) -> None:
        self._listeners.append(listener)

    def set_filter(self, entry_filter: EntryFilter) -> AnalyticsSnapshot:
        self.entry_filter = entry_filter
        return self.refresh()

    def recompute(self) -> AnalyticsSnapshot:
        entries = self.store.list_entries()
        process_metrics = compute_process_metrics(entries, self.entry_filter)
        return AnalyticsSnapshot(
            entry_filter=self.entry_filter,
            process_metrics=process_metrics,
            monthly_metrics=compute_monthly_metrics(entries, self.entry_filter),
            summary=compute_aggregate_summary(process_metrics),
        )

    def refresh(self) -> AnalyticsSnapshot:
        self.snapshot = self.recompute()
        for listener in list(self._listeners):
            listener(self.snapshot)
        return self.snapshot

    def close(self) -> None:
        self._unsubscribe()
        self._listeners.clear()

    def _on_entries_changed(self, event: EntriesChanged) -> None:
        logger.debug("Recomputing analytics after %s (%s)", event.action, event.entry_id)
        self.refresh()
