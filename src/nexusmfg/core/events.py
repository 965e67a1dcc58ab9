"""Typed in-process event channel.

Publishers and subscribers agree on the payload dataclass; a handler is only
called for the exact event type it subscribed to.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from nexusmfg.core.models import ProductionEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntriesChanged:
    action: str  # "create" | "update" | "delete" | "import" | "sync"
    entry_id: str | None = None


@dataclass(frozen=True)
class OffDaysChanged:
    action: str
    off_day_id: str | None = None


@dataclass(frozen=True)
class Notification:
    message: str
    kind: str = "success"  # "success" | "info" | "warning" | "error"


@dataclass(frozen=True)
class EditEntryRequested:
    entry: ProductionEntry


E = TypeVar("E")
Handler = Callable[[Any], None]


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = {}

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """Register ``handler`` and return a function that unregisters it."""
        self._handlers.setdefault(event_type, []).append(handler)

        def _unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def publish(self, event: Any) -> None:
        # Copy: handlers may unsubscribe while we iterate.
        for handler in list(self._handlers.get(type(event), [])):
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", type(event).__name__)

    def handler_count(self, event_type: type) -> int:
        return len(self._handlers.get(event_type, []))
