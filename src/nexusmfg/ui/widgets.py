from __future__ import annotations

from contextlib import contextmanager
from typing import Callable

from nicegui import ui

from nexusmfg.core.auth import can
from nexusmfg.core.models import User


AT_RISK_COLOR = "#f43f5e"
ON_TRACK_COLOR = "#4f46e5"
EFFICIENCY_LINE_COLOR = "#f59e0b"

NOTIFY_COLORS = {
    "success": "positive",
    "info": "info",
    "warning": "warning",
    "error": "negative",
}


def apply_theme() -> None:
    """Apply a lightweight global theme."""
    ui.colors(
        primary="#4f46e5",  # indigo-600
        secondary="#0ea5e9",  # sky-500
        positive="#059669",  # emerald-600
        negative="#e11d48",  # rose-600
        warning="#f59e0b",  # amber-500
    )

    ui.add_css(
        """
        body { background: #f8fafc; }
        .nx-container { max-width: 1280px; margin: 0 auto; padding: 16px; }
        .nx-subtitle { color: #475569; }
        .nx-header { border-bottom: 1px solid rgba(15, 23, 42, 0.08); }
        .nx-kpi { border: 1px solid rgba(15, 23, 42, 0.08); min-width: 200px; }
        .nx-kpi .nx-kpi-label { font-size: 11px; font-weight: 800; letter-spacing: .12em; text-transform: uppercase; color: #94a3b8; }
        .nx-kpi .nx-kpi-value { font-size: 28px; font-weight: 800; color: #0f172a; }
        .nx-offday { background: rgba(245, 158, 11, 0.08); }
        """
    )


def search_filter(search) -> Callable[[object], None]:
    """Bind ``search`` to whichever table was attached last.

    The value-change handler is registered once; refreshing a table only
    retargets it.
    """
    target: dict[str, object] = {}

    def on_change(e) -> None:
        table = target.get("table")
        if table is not None:
            table.filter = e.value or ""

    search.on_value_change(on_change)

    def attach(table) -> None:
        target["table"] = table
        table.filter = search.value or ""

    return attach


@contextmanager
def page_container():
    with ui.element("div").classes("nx-container"):
        yield


def notify(message: str, kind: str = "success") -> None:
    ui.notify(message, color=NOTIFY_COLORS.get(kind, "primary"))


def kpi_card(label: str, value: str, caption: str | None = None) -> None:
    with ui.card().classes("nx-kpi p-4"):
        ui.label(label).classes("nx-kpi-label")
        ui.label(value).classes("nx-kpi-value")
        if caption:
            ui.label(caption).classes("text-xs text-slate-500")


def fmt_qty(value: float | None) -> str:
    return f"{float(value or 0.0):,.0f}"


def fmt_pct(value: float | None) -> str:
    return f"{float(value or 0.0):.1f}%"


def render_nav(
    *,
    user: User,
    active: str | None = None,
    on_sync: Callable[[], None] | None = None,
    on_off_days: Callable[[], None] | None = None,
    on_change_password: Callable[[], None] | None = None,
    on_logout: Callable[[], None] | None = None,
) -> None:
    apply_theme()
    active_key = active or "dashboard"
    sections: list[tuple[str, str, str]] = [
        ("dashboard", "Dashboard", "/"),
        ("reports", "Reports", "/reports"),
        ("process", "Process Analytics", "/process-analytics"),
        ("logs", "Activity", "/logs"),
    ]
    if can(user, "manage_users"):
        sections.append(("users", "Users", "/users"))

    with ui.header().classes("nx-header bg-white text-slate-900"):
        with ui.row().classes("w-full items-center justify-between gap-4 px-4 py-2"):
            with ui.row().classes("items-center gap-3"):
                ui.icon("factory", color="primary").classes("text-3xl")
                with ui.column().classes("gap-0"):
                    ui.label("NexusMfg").classes("text-xl font-semibold leading-none")
                    ui.label("Production Control System").classes("text-xs text-slate-500")
            with ui.row().classes("items-center gap-1"):
                for key, label, path in sections:
                    props = "dense no-caps color=primary" + (" unelevated" if key == active_key else " flat")
                    ui.button(label, on_click=lambda p=path: ui.navigate.to(p)).props(props)

                if on_sync is not None:
                    ui.button(icon="cloud_sync", on_click=on_sync).props("flat round dense color=primary").tooltip(
                        "Sync with spreadsheet"
                    )

                with ui.button(icon="account_circle").props("flat round dense color=primary"):
                    with ui.menu().props("auto-close"):
                        with ui.column().classes("px-4 py-2 gap-0"):
                            ui.label(user.name).classes("font-semibold")
                            ui.label(user.role.upper()).classes("text-xs text-indigo-500 font-bold")
                        ui.separator()
                        if on_off_days is not None and can(user, "manage_off_days"):
                            ui.menu_item("Public Holidays", on_click=on_off_days)
                        if on_change_password is not None:
                            ui.menu_item("Change Password", on_click=on_change_password)
                        if on_logout is not None:
                            ui.menu_item("Logout", on_click=on_logout)


def status_badge_slot(table, *, column: str = "status") -> None:
    """Render the status column as a coloured badge."""
    table.add_slot(
        f"body-cell-{column}",
        r"""
<q-td :props="props">
  <q-badge v-if="props.value === 'Great'" color="positive" :label="props.value" />
  <q-badge v-else-if="props.value === 'Healthy'" color="primary" :label="props.value" />
  <q-badge v-else color="negative" :label="props.value" />
</q-td>
""",
    )


def holiday_badge_slot(table, *, column: str = "status") -> None:
    table.add_slot(
        f"body-cell-{column}",
        r"""
<q-td :props="props">
  <q-badge v-if="props.row.is_off_day" color="warning" text-color="dark" :label="props.value" />
  <span v-else class="text-slate-500">{{ props.value }}</span>
</q-td>
""",
    )


def row_actions_slot(table, actions: list[tuple[str, str, str]], *, column: str = "actions") -> None:
    """Render icon buttons per row; each click emits ``event`` with the row dict.

    ``actions`` holds ``(event, icon, color)`` tuples. Listen with ``table.on(event, ...)``.
    """
    buttons = "\n".join(
        f"""  <q-btn flat round dense icon="{icon}" color="{color}" @click="$parent.$emit('{event}', props.row)" />"""
        for event, icon, color in actions
    )
    table.add_slot(f"body-cell-{column}", f'<q-td :props="props" class="text-right">\n{buttons}\n</q-td>')


def row_from_event(args) -> dict | None:
    """Find the row dict in (possibly nested) table event args."""
    if isinstance(args, dict):
        if isinstance(args.get("row"), dict):
            return args["row"]
        if "id" in args:
            return args
    if isinstance(args, (list, tuple)):
        for item in args:
            row = row_from_event(item)
            if row is not None:
                return row
    return None
