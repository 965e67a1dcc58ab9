from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, timedelta
from typing import Callable

from nicegui import app, ui

from nexusmfg.core.analytics import AnalyticsView
from nexusmfg.core.auth import can
from nexusmfg.core.events import EditEntryRequested, EntriesChanged, EventBus, Notification, OffDaysChanged
from nexusmfg.core.metrics import (
    AT_RISK_THRESHOLD,
    compute_aggregate_summary,
    compute_daily_trend,
    compute_monthly_metrics,
    compute_process_metrics,
)
from nexusmfg.core.models import ALL, CATEGORIES, PROCESSES, ROLES, UNITS, EntryFilter, ProductionEntry, User
from nexusmfg.data.repository import Repository
from nexusmfg.data.sheets_sync import SheetsSyncClient, SyncError, run_sync
from nexusmfg.ui.widgets import (
    AT_RISK_COLOR,
    EFFICIENCY_LINE_COLOR,
    ON_TRACK_COLOR,
    apply_theme,
    fmt_pct,
    fmt_qty,
    holiday_badge_slot,
    kpi_card,
    notify,
    page_container,
    render_nav,
    row_actions_slot,
    row_from_event,
    search_filter,
    status_badge_slot,
)

logger = logging.getLogger(__name__)

TREND_DAYS = 30
ANALYTICS_DEFAULT_DAYS = 30


def register_pages(repo: Repository) -> None:
    def current_user() -> User | None:
        return repo.get_user(app.storage.user.get("user_id"))

    def require_user() -> User | None:
        user = current_user()
        if user is None:
            ui.navigate.to("/login")
        return user

    def watch_store(handler: Callable[[], None]) -> None:
        """Call ``handler`` on entry/off-day changes until this client disconnects."""
        unsubscribers = [
            repo.bus.subscribe(EntriesChanged, lambda _ev: handler()),
            repo.bus.subscribe(OffDaysChanged, lambda _ev: handler()),
        ]

        def _detach() -> None:
            for unsub in unsubscribers:
                unsub()

        ui.context.client.on_disconnect(_detach)

    # ---------- Entry form ----------
    def entry_form(entry: ProductionEntry | None = None) -> dict:
        fields: dict = {}
        with ui.row().classes("w-full items-end gap-4"):
            fields["date"] = (
                ui.input("Date", value=entry.date if entry else date.today().isoformat())
                .props("outlined dense type=date")
                .classes("w-44")
            )
            fields["category"] = (
                ui.select(list(CATEGORIES), value=entry.category if entry else CATEGORIES[0], label="Category")
                .props("outlined dense")
                .classes("w-44")
            )
            fields["process"] = (
                ui.select(list(PROCESSES), value=entry.process if entry else PROCESSES[0], label="Process")
                .props("outlined dense")
                .classes("w-44")
            )
        with ui.row().classes("w-full items-end gap-4"):
            fields["product_name"] = (
                ui.input("Product", value=entry.product_name if entry else "").props("outlined dense").classes("w-72")
            )
            fields["batch_no"] = (
                ui.input("Batch No", value=(entry.batch_no or "") if entry else "").props("outlined dense").classes("w-44")
            )
        with ui.row().classes("w-full items-end gap-4"):
            fields["plan_quantity"] = (
                ui.number("Plan", value=entry.plan_quantity if entry else None, min=0)
                .props("outlined dense")
                .classes("w-36")
            )
            fields["actual_quantity"] = (
                ui.number("Actual", value=entry.actual_quantity if entry else None, min=0)
                .props("outlined dense")
                .classes("w-36")
            )
            fields["unit"] = (
                ui.select(list(UNITS), value=entry.unit if entry else UNITS[0], label="Unit")
                .props("outlined dense")
                .classes("w-28")
            )
            fields["manpower"] = (
                ui.number("Manpower", value=entry.manpower if entry else None, min=0, step=1)
                .props("outlined dense")
                .classes("w-36")
            )
        return fields

    def save_entry(fields: dict, *, user: User, page_bus: EventBus, entry_id: str | None = None) -> bool:
        values = {key: el.value for key, el in fields.items()}
        try:
            entry = repo.build_entry(values, user=user, entry_id=entry_id)
            repo.upsert_entry(entry, user=user)
        except ValueError as ex:
            page_bus.publish(Notification(str(ex), kind="error"))
            return False
        page_bus.publish(Notification("RECORD UPDATED" if entry_id else "PRODUCTION LOGGED"))
        return True

    # ---------- Dialogs ----------
    def open_entry_dialog(*, user: User, page_bus: EventBus, entry: ProductionEntry) -> None:
        if not can(user, "edit_entry"):
            page_bus.publish(Notification("Only admins and managers can edit records", kind="error"))
            return

        dialog = ui.dialog().props("persistent")
        with dialog:
            with ui.card().classes("bg-white p-6").style("width: 92vw; max-width: 760px;"):
                ui.label("Edit production record").classes("text-xl font-semibold")
                ui.label(f"Last updated {entry.updated_at or '-'}").classes("text-sm text-slate-500")
                ui.separator()
                fields = entry_form(entry)
                ui.separator()
                with ui.row().classes("w-full justify-end gap-2"):
                    ui.button("Cancel", on_click=dialog.close).props("flat")

                    def do_save() -> None:
                        if save_entry(fields, user=user, page_bus=page_bus, entry_id=entry.id):
                            dialog.close()

                    ui.button("Save", on_click=do_save).props("unelevated color=primary")
        dialog.open()

    def open_delete_dialog(*, user: User, page_bus: EventBus, row: dict) -> None:
        if not can(user, "delete_entry"):
            page_bus.publish(Notification("Only admins and managers can delete records", kind="error"))
            return

        dialog = ui.dialog()
        with dialog:
            with ui.card().classes("bg-white p-6"):
                ui.label("Delete this record?").classes("text-lg font-semibold")
                ui.label(f"{row.get('product_name')} ({row.get('date')}, {row.get('process')})").classes(
                    "text-slate-600"
                )
                with ui.row().classes("w-full justify-end gap-2 pt-2"):
                    ui.button("Cancel", on_click=dialog.close).props("flat")

                    def do_delete() -> None:
                        repo.delete_entry(str(row.get("id")), user=user)
                        dialog.close()
                        page_bus.publish(Notification("RECORD DELETED", kind="info"))

                    ui.button("Delete", color="negative", on_click=do_delete).props("unelevated")
        dialog.open()

    def open_off_days_dialog(*, user: User, page_bus: EventBus) -> None:
        dialog = ui.dialog()
        with dialog:
            with ui.card().classes("bg-white p-6").style("width: 92vw; max-width: 560px;"):
                ui.label("Public Holidays").classes("text-xl font-semibold")
                ui.label("Entries on these dates are shown as holiday shifts.").classes("text-sm text-slate-600")
                ui.separator()

                @ui.refreshable
                def off_day_list() -> None:
                    off_days = repo.list_off_days()
                    if not off_days:
                        ui.label("No off-days configured.").classes("text-sm text-slate-500")
                    for od in off_days:
                        with ui.row().classes("w-full items-center justify-between"):
                            with ui.column().classes("gap-0"):
                                ui.label(od.date).classes("font-mono")
                                ui.label(od.description).classes("text-sm text-slate-600")
                            ui.button(
                                icon="delete",
                                on_click=lambda od_id=od.id: remove(od_id),
                            ).props("flat round dense color=negative")

                def remove(off_day_id: str) -> None:
                    repo.delete_off_day(off_day_id=off_day_id, user=user)
                    page_bus.publish(Notification("OFF-DAY REMOVED", kind="info"))
                    off_day_list.refresh()

                off_day_list()
                ui.separator()

                with ui.row().classes("w-full items-end gap-2"):
                    day_in = ui.input("Date", value=date.today().isoformat()).props("outlined dense type=date")
                    desc_in = ui.input("Description").props("outlined dense").classes("grow")

                    def add() -> None:
                        try:
                            repo.add_off_day(date_value=day_in.value, description=desc_in.value, user=user)
                        except ValueError as ex:
                            page_bus.publish(Notification(str(ex), kind="error"))
                            return
                        desc_in.value = ""
                        page_bus.publish(Notification("OFF-DAY ADDED"))
                        off_day_list.refresh()

                    ui.button("Add", on_click=add).props("unelevated color=primary")

                with ui.row().classes("w-full justify-end pt-2"):
                    ui.button("Close", on_click=dialog.close).props("flat")
        dialog.open()

    def open_change_password_dialog(*, user: User, page_bus: EventBus) -> None:
        dialog = ui.dialog().props("persistent")
        with dialog:
            with ui.card().classes("bg-white p-6").style("width: 92vw; max-width: 420px;"):
                ui.label("Change Password").classes("text-xl font-semibold")
                current_in = ui.input("Current password", password=True).props("outlined dense").classes("w-full")
                new_in = ui.input("New password", password=True, password_toggle_button=True).props(
                    "outlined dense"
                ).classes("w-full")
                confirm_in = ui.input("Confirm new password", password=True).props("outlined dense").classes("w-full")
                error_label = ui.label("").classes("text-sm text-rose-600")

                with ui.row().classes("w-full justify-end gap-2 pt-2"):
                    ui.button("Cancel", on_click=dialog.close).props("flat")

                    def submit() -> None:
                        try:
                            repo.change_password(
                                user_id=user.id,
                                current_password=current_in.value or "",
                                new_password=new_in.value or "",
                                confirm_password=confirm_in.value or "",
                            )
                        except ValueError as ex:
                            error_label.text = str(ex)
                            return
                        dialog.close()
                        page_bus.publish(Notification("PASSWORD UPDATED"))

                    ui.button("Update", on_click=submit).props("unelevated color=primary")
        dialog.open()

    # ---------- Shell ----------
    def page_shell(user: User, *, active: str) -> EventBus:
        """Header, dialogs and the per-page event bus."""
        page_bus = EventBus()
        page_bus.subscribe(Notification, lambda n: notify(n.message, n.kind))
        page_bus.subscribe(
            EditEntryRequested,
            lambda ev: open_entry_dialog(user=user, page_bus=page_bus, entry=ev.entry),
        )

        async def do_sync() -> None:
            client = SheetsSyncClient.from_repository(repo)
            if not client.is_enabled():
                page_bus.publish(
                    Notification("DATABASE NOT CONFIGURED. SET THE SYNC URL IN USER MANAGEMENT.", kind="warning")
                )
                return
            page_bus.publish(Notification("SYNCING...", kind="info"))
            try:
                result = await run_sync(client, repo)
            except SyncError as ex:
                logger.warning("Manual sync failed: %s", ex)
                page_bus.publish(Notification("SYNC FAILED - CHECK CONNECTION", kind="warning"))
                return
            repo.log_activity(
                user=user,
                action="SYNC",
                details=f"Merged {result.merged_entries} records and {result.merged_off_days} off-days",
            )
            page_bus.publish(Notification("CLOUD DATA SYNCHRONIZED"))

        def do_logout() -> None:
            repo.log_activity(user=user, action="LOGOUT", details=f"{user.username} signed out")
            app.storage.user.pop("user_id", None)
            ui.navigate.to("/login")

        render_nav(
            user=user,
            active=active,
            on_sync=do_sync,
            on_off_days=lambda: open_off_days_dialog(user=user, page_bus=page_bus),
            on_change_password=lambda: open_change_password_dialog(user=user, page_bus=page_bus),
            on_logout=do_logout,
        )
        return page_bus

    # ---------- Pages ----------
    @ui.page("/login")
    def login() -> None:
        apply_theme()
        if current_user() is not None:
            ui.navigate.to("/")
            return

        plant = repo.get_config(key="plant_name", default="NexusMfg") or "NexusMfg"
        with ui.column().classes("w-full items-center pt-24"):
            with ui.card().classes("p-8 w-[min(420px,92vw)] gap-3"):
                with ui.row().classes("items-center gap-3"):
                    ui.icon("factory", color="primary").classes("text-4xl")
                    with ui.column().classes("gap-0"):
                        ui.label(plant).classes("text-2xl font-semibold")
                        ui.label("Sign in to continue").classes("nx-subtitle")
                username_in = ui.input("Username").props("outlined dense autofocus").classes("w-full")
                password_in = ui.input("Password", password=True, password_toggle_button=True).props(
                    "outlined dense"
                ).classes("w-full")

                def do_login() -> None:
                    user = repo.authenticate(username=username_in.value or "", password=password_in.value or "")
                    if user is None:
                        password_in.value = ""
                        notify("Invalid username or password", "error")
                        return
                    app.storage.user["user_id"] = user.id
                    ui.navigate.to("/")

                password_in.on("keydown.enter", do_login)
                ui.button("Sign in", on_click=do_login).props("unelevated color=primary").classes("w-full")

    @ui.page("/")
    def dashboard() -> None:
        user = require_user()
        if user is None:
            return
        page_bus = page_shell(user, active="dashboard")

        with page_container():
            with ui.row().classes("w-full items-end justify-between"):
                with ui.column().classes("gap-0"):
                    ui.label("Production Overview").classes("text-2xl font-semibold")
                    ui.label(f"Welcome back, {user.name}.").classes("nx-subtitle")
                category = (
                    ui.select([ALL, *CATEGORIES], value=ALL, label="Category", on_change=lambda _e: overview.refresh())
                    .props("outlined dense")
                    .classes("w-48")
                )

            @ui.refreshable
            def overview() -> None:
                entries = repo.list_entries()
                entry_filter = EntryFilter(category=category.value or ALL)
                summary = compute_aggregate_summary(compute_process_metrics(entries, entry_filter))

                with ui.row().classes("w-full gap-4 pt-2"):
                    kpi_card("Total Plan", fmt_qty(summary.total_plan))
                    kpi_card("Total Actual", fmt_qty(summary.total_actual))
                    kpi_card("Avg Efficiency", fmt_pct(summary.avg_efficiency))
                    kpi_card("Manpower", fmt_qty(summary.total_manpower))
                    kpi_card("Shortfall", fmt_qty(summary.shortfall), caption="Planned but not produced")

                start = (date.today() - timedelta(days=TREND_DAYS - 1)).isoformat()
                trend = compute_daily_trend(entries, replace(entry_filter, date_start=start))

                ui.label(f"Daily output (last {TREND_DAYS} days)").classes("text-lg font-semibold pt-4")
                if not trend:
                    ui.label("No production logged in this period.").classes("text-sm text-slate-500")
                ui.echart(
                    {
                        "tooltip": {"trigger": "axis"},
                        "legend": {"data": ["Plan", "Actual", "Efficiency %"]},
                        "grid": {"left": 55, "right": 55, "top": 40, "bottom": 45},
                        "xAxis": {"type": "category", "data": [d.date for d in trend]},
                        "yAxis": [
                            {"type": "value", "name": "qty"},
                            {"type": "value", "name": "%", "min": 0},
                        ],
                        "series": [
                            {"name": "Plan", "type": "bar", "data": [d.plan for d in trend], "color": "#cbd5e1"},
                            {"name": "Actual", "type": "bar", "data": [d.actual for d in trend], "color": ON_TRACK_COLOR},
                            {
                                "name": "Efficiency %",
                                "type": "line",
                                "yAxisIndex": 1,
                                "smooth": True,
                                "data": [d.efficiency for d in trend],
                                "color": EFFICIENCY_LINE_COLOR,
                            },
                        ],
                    }
                ).classes("w-full h-80")

            overview()
            watch_store(overview.refresh)

            if can(user, "log_entry"):
                with ui.card().classes("p-4 w-full"):
                    ui.label("Log Production").classes("text-lg font-semibold")
                    fields = entry_form()

                    def submit() -> None:
                        if not save_entry(fields, user=user, page_bus=page_bus):
                            return
                        for key in ("product_name", "batch_no"):
                            fields[key].value = ""
                        for key in ("plan_quantity", "actual_quantity", "manpower"):
                            fields[key].value = None

                    with ui.row().classes("w-full justify-end"):
                        ui.button("Submit", icon="add", on_click=submit).props("unelevated color=primary")

    @ui.page("/reports")
    def reports() -> None:
        user = require_user()
        if user is None:
            return
        page_bus = page_shell(user, active="reports")
        can_modify = can(user, "edit_entry")

        with page_container():
            ui.label("Production Log").classes("text-2xl font-semibold")
            ui.label("Daily records and monthly totals. Holiday shifts are highlighted.").classes("nx-subtitle")

            def refresh_log(*_args) -> None:
                log_view.refresh()

            with ui.row().classes("w-full items-end gap-3 pt-2"):
                view = ui.toggle({"daily": "Daily", "monthly": "Monthly"}, value="daily", on_change=refresh_log)
                category = ui.select([ALL, *CATEGORIES], value=ALL, label="Category", on_change=refresh_log).props(
                    "outlined dense"
                ).classes("w-44")
                process = ui.select([ALL, *PROCESSES], value=ALL, label="Process", on_change=refresh_log).props(
                    "outlined dense"
                ).classes("w-44")
                date_start = ui.input("From", on_change=refresh_log).props("outlined dense type=date").classes("w-40")
                date_end = ui.input("To", on_change=refresh_log).props("outlined dense type=date").classes("w-40")

                def reset_filters() -> None:
                    category.value = ALL
                    process.value = ALL
                    date_start.value = ""
                    date_end.value = ""

                ui.button("Reset", icon="filter_alt_off", on_click=reset_filters).props("flat")

            def current_filter() -> EntryFilter:
                return EntryFilter(
                    category=category.value or ALL,
                    date_start=date_start.value or None,
                    date_end=date_end.value or None,
                    process=process.value or ALL,
                )

            with ui.row().classes("w-full items-center justify-end gap-2"):

                def download() -> None:
                    content = repo.export_report_xlsx(entry_filter=current_filter(), view=view.value)
                    ui.download.content(content, f"production_{view.value}_{date.today().isoformat()}.xlsx")

                ui.button("Download .xlsx", icon="download", on_click=download).props("outline color=primary")

                if can_modify:

                    async def handle_upload(e) -> None:
                        try:
                            content = await e.file.read()
                            result = repo.import_entries_excel_bytes(content=content, user=user)
                        except Exception as ex:
                            notify(f"Error importing: {ex}", "error")
                            return
                        errors = result["errors"]
                        notify(f"Imported {result['imported']} records", "success" if not errors else "warning")
                        if errors:
                            sample = "; ".join(f"row {err['row']}: {err['error']}" for err in errors[:3])
                            notify(f"{len(errors)} rows rejected ({sample})", "warning")

                    ui.upload(label="Import .xlsx", on_upload=handle_upload, auto_upload=True).props(
                        "accept=.xlsx max-files=1 flat bordered"
                    ).classes("w-64")

            @ui.refreshable
            def log_view() -> None:
                entry_filter = current_filter()
                if view.value == "monthly":
                    metrics = compute_monthly_metrics(repo.list_entries(), entry_filter)
                    summary = compute_aggregate_summary(metrics)
                    with ui.row().classes("w-full gap-4"):
                        kpi_card("Months", str(len(metrics)))
                        kpi_card("Overall Efficiency", fmt_pct(summary.avg_efficiency))
                    rows = []
                    for m in metrics:
                        r = m.as_row()
                        r["plan_fmt"] = fmt_qty(m.plan)
                        r["actual_fmt"] = fmt_qty(m.actual)
                        r["efficiency_fmt"] = fmt_pct(m.efficiency)
                        rows.append(r)
                    ui.table(
                        columns=[
                            {"name": "month", "label": "Month", "field": "month", "align": "left"},
                            {"name": "plan", "label": "Total Plan", "field": "plan_fmt", "align": "right"},
                            {"name": "actual", "label": "Total Actual", "field": "actual_fmt", "align": "right"},
                            {"name": "count", "label": "Records", "field": "count", "align": "right"},
                            {"name": "efficiency", "label": "Efficiency", "field": "efficiency_fmt", "align": "right"},
                        ],
                        rows=rows,
                        row_key="month",
                    ).classes("w-full").props("dense flat bordered")
                    return

                rows = repo.get_log_rows(entry_filter=entry_filter)
                for r in rows:
                    r["plan_fmt"] = fmt_qty(r["plan_quantity"])
                    r["actual_fmt"] = fmt_qty(r["actual_quantity"])
                    r["efficiency_fmt"] = fmt_pct(r["efficiency"])

                columns = [
                    {"name": "date", "label": "Date", "field": "date", "align": "left", "sortable": True},
                    {"name": "status", "label": "Status", "field": "status", "align": "left"},
                    {"name": "category", "label": "Category", "field": "category", "align": "left"},
                    {"name": "process", "label": "Process", "field": "process", "align": "left"},
                    {"name": "product_name", "label": "Product", "field": "product_name", "align": "left"},
                    {"name": "plan", "label": "Plan", "field": "plan_fmt", "align": "right"},
                    {"name": "actual", "label": "Actual", "field": "actual_fmt", "align": "right"},
                    {"name": "unit", "label": "Unit", "field": "unit", "align": "left"},
                    {"name": "efficiency", "label": "Eff.", "field": "efficiency_fmt", "align": "right"},
                    {"name": "batch_no", "label": "Batch", "field": "batch_no", "align": "left"},
                    {"name": "manpower", "label": "MP", "field": "manpower", "align": "right"},
                ]
                if can_modify:
                    columns.append({"name": "actions", "label": "", "field": "id", "align": "right"})

                ui.label(f"{len(rows)} records").classes("text-sm text-slate-500")
                tbl = ui.table(columns=columns, rows=rows, row_key="id", pagination=25).classes("w-full")
                tbl.props("dense flat bordered")
                holiday_badge_slot(tbl)

                if can_modify:
                    row_actions_slot(tbl, [("edit", "edit", "primary"), ("delete", "delete", "negative")])

                    def on_edit(e) -> None:
                        row = row_from_event(getattr(e, "args", None))
                        entry = repo.get_entry(str(row.get("id"))) if row else None
                        if entry is None:
                            notify("Record no longer exists", "warning")
                            return
                        page_bus.publish(EditEntryRequested(entry))

                    def on_delete(e) -> None:
                        row = row_from_event(getattr(e, "args", None))
                        if row is not None:
                            open_delete_dialog(user=user, page_bus=page_bus, row=row)

                    tbl.on("edit", on_edit)
                    tbl.on("delete", on_delete)

            log_view()
            watch_store(log_view.refresh)

    @ui.page("/process-analytics")
    def process_analytics() -> None:
        user = require_user()
        if user is None:
            return
        page_shell(user, active="process")

        today = date.today()
        analytics = AnalyticsView(
            repo,
            repo.bus,
            EntryFilter(
                date_start=(today - timedelta(days=ANALYTICS_DEFAULT_DAYS - 1)).isoformat(),
                date_end=today.isoformat(),
            ),
        )
        ui.context.client.on_disconnect(analytics.close)

        with page_container():
            ui.label("Process Analytics").classes("text-2xl font-semibold")
            ui.label(
                f"Efficiency leaderboard. Processes below {AT_RISK_THRESHOLD:.0f}% are flagged at risk."
            ).classes("nx-subtitle")

            def apply_filter(*_args) -> None:
                analytics.set_filter(
                    EntryFilter(
                        category=category.value or ALL,
                        date_start=date_start.value or None,
                        date_end=date_end.value or None,
                    )
                )

            with ui.row().classes("w-full items-end gap-3 pt-2"):
                category = ui.select([ALL, *CATEGORIES], value=ALL, label="Category", on_change=apply_filter).props(
                    "outlined dense"
                ).classes("w-44")
                date_start = ui.input(
                    "From", value=analytics.entry_filter.date_start, on_change=apply_filter
                ).props("outlined dense type=date").classes("w-40")
                date_end = ui.input("To", value=analytics.entry_filter.date_end, on_change=apply_filter).props(
                    "outlined dense type=date"
                ).classes("w-40")

            @ui.refreshable
            def leaderboard() -> None:
                snap = analytics.snapshot
                metrics = snap.process_metrics
                at_risk = [m.process for m in metrics if m.at_risk and m.plan > 0]

                with ui.row().classes("w-full gap-4"):
                    kpi_card("Avg Efficiency", fmt_pct(snap.summary.avg_efficiency))
                    kpi_card("Total Actual", fmt_qty(snap.summary.total_actual))
                    kpi_card("Shortfall", fmt_qty(snap.summary.shortfall))
                    kpi_card("At Risk", str(len(at_risk)), caption=", ".join(at_risk) or None)

                ui.echart(
                    {
                        "tooltip": {"trigger": "axis"},
                        "legend": {"data": ["Plan", "Actual", "Efficiency %"]},
                        "grid": {"left": 55, "right": 55, "top": 40, "bottom": 45},
                        "xAxis": {"type": "category", "data": [m.process for m in metrics]},
                        "yAxis": [
                            {"type": "value", "name": "qty"},
                            {"type": "value", "name": "%", "min": 0},
                        ],
                        "series": [
                            {"name": "Plan", "type": "bar", "data": [m.plan for m in metrics], "color": "#cbd5e1"},
                            {
                                "name": "Actual",
                                "type": "bar",
                                "color": ON_TRACK_COLOR,
                                "data": [
                                    {
                                        "value": m.actual,
                                        "itemStyle": {"color": AT_RISK_COLOR if m.at_risk else ON_TRACK_COLOR},
                                    }
                                    for m in metrics
                                ],
                            },
                            {
                                "name": "Efficiency %",
                                "type": "line",
                                "yAxisIndex": 1,
                                "data": [m.efficiency for m in metrics],
                                "color": EFFICIENCY_LINE_COLOR,
                                "markLine": {
                                    "silent": True,
                                    "symbol": "none",
                                    "lineStyle": {"type": "dashed", "color": AT_RISK_COLOR},
                                    "data": [{"yAxis": AT_RISK_THRESHOLD}],
                                },
                            },
                        ],
                    }
                ).classes("w-full h-80")

                rows = []
                for m in metrics:
                    r = m.as_row()
                    r["plan_fmt"] = fmt_qty(m.plan)
                    r["actual_fmt"] = fmt_qty(m.actual)
                    r["efficiency_fmt"] = fmt_pct(m.efficiency)
                    rows.append(r)
                tbl = ui.table(
                    columns=[
                        {"name": "process", "label": "Process", "field": "process", "align": "left"},
                        {"name": "plan", "label": "Plan", "field": "plan_fmt", "align": "right"},
                        {"name": "actual", "label": "Actual", "field": "actual_fmt", "align": "right"},
                        {"name": "manpower", "label": "Manpower", "field": "manpower", "align": "right"},
                        {"name": "intensity", "label": "Output / Worker", "field": "intensity", "align": "right"},
                        {"name": "efficiency", "label": "Efficiency", "field": "efficiency_fmt", "align": "right"},
                        {"name": "status", "label": "Status", "field": "status", "align": "left"},
                    ],
                    rows=rows,
                    row_key="process",
                ).classes("w-full")
                tbl.props("dense flat bordered")
                status_badge_slot(tbl)

            leaderboard()
            analytics.on_update(lambda _snap: leaderboard.refresh())
            # Off-days do not change the numbers; only entry changes reach AnalyticsView.

    @ui.page("/users")
    def users_page() -> None:
        user = require_user()
        if user is None:
            return
        if not can(user, "manage_users"):
            notify("Only admins can manage users", "error")
            ui.navigate.to("/")
            return
        page_bus = page_shell(user, active="users")

        def open_user_dialog(existing: User | None) -> None:
            dialog = ui.dialog().props("persistent")
            with dialog:
                with ui.card().classes("bg-white p-6").style("width: 92vw; max-width: 520px;"):
                    ui.label("Edit user" if existing else "Add user").classes("text-xl font-semibold")
                    name_in = ui.input("Name", value=existing.name if existing else "").props("outlined dense").classes(
                        "w-full"
                    )
                    username_in = ui.input("Username", value=existing.username if existing else "").props(
                        "outlined dense"
                    ).classes("w-full")
                    if existing:
                        username_in.disable()
                    email_in = ui.input("Email", value=existing.email if existing else "").props(
                        "outlined dense"
                    ).classes("w-full")
                    role_in = ui.select(list(ROLES), value=existing.role if existing else "operator", label="Role").props(
                        "outlined dense"
                    ).classes("w-full")
                    password_in = None
                    if existing is None:
                        password_in = ui.input("Password", password=True, password_toggle_button=True).props(
                            "outlined dense"
                        ).classes("w-full")

                    with ui.row().classes("w-full justify-end gap-2 pt-2"):
                        ui.button("Cancel", on_click=dialog.close).props("flat")

                        def do_save() -> None:
                            try:
                                if existing is None:
                                    saved = repo.create_user(
                                        name=name_in.value,
                                        username=username_in.value,
                                        email=email_in.value,
                                        role=role_in.value,
                                        password=password_in.value or "",
                                    )
                                    action = "CREATE_USER"
                                else:
                                    saved = repo.update_user(
                                        user_id=existing.id,
                                        name=name_in.value,
                                        email=email_in.value,
                                        role=role_in.value,
                                    )
                                    action = "UPDATE_USER"
                            except ValueError as ex:
                                page_bus.publish(Notification(str(ex), kind="error"))
                                return
                            repo.log_activity(user=user, action=action, details=f"{saved.username} ({saved.role})")
                            dialog.close()
                            page_bus.publish(Notification("USER SAVED"))
                            user_table.refresh()

                        ui.button("Save", on_click=do_save).props("unelevated color=primary")
            dialog.open()

        def open_reset_dialog(target: User) -> None:
            dialog = ui.dialog()
            with dialog:
                with ui.card().classes("bg-white p-6").style("width: 92vw; max-width: 420px;"):
                    ui.label(f"Reset password for {target.username}").classes("text-lg font-semibold")
                    password_in = ui.input("New password", password=True, password_toggle_button=True).props(
                        "outlined dense"
                    ).classes("w-full")
                    with ui.row().classes("w-full justify-end gap-2 pt-2"):
                        ui.button("Cancel", on_click=dialog.close).props("flat")

                        def do_reset() -> None:
                            try:
                                repo.set_password(user_id=target.id, new_password=password_in.value or "")
                            except ValueError as ex:
                                page_bus.publish(Notification(str(ex), kind="error"))
                                return
                            repo.log_activity(user=user, action="RESET_PASSWORD", details=target.username)
                            dialog.close()
                            page_bus.publish(Notification("PASSWORD RESET"))

                        ui.button("Reset", on_click=do_reset).props("unelevated color=primary")
            dialog.open()

        def delete_user(target: User) -> None:
            if target.id == user.id:
                page_bus.publish(Notification("You cannot delete your own account", kind="error"))
                return
            try:
                repo.delete_user(user_id=target.id)
            except ValueError as ex:
                page_bus.publish(Notification(str(ex), kind="error"))
                return
            repo.log_activity(user=user, action="DELETE_USER", details=target.username)
            page_bus.publish(Notification("USER DELETED", kind="info"))
            user_table.refresh()

        def target_from_event(e) -> User | None:
            row = row_from_event(getattr(e, "args", None))
            return repo.get_user(str(row.get("id"))) if row else None

        with page_container():
            with ui.row().classes("w-full items-end justify-between"):
                with ui.column().classes("gap-0"):
                    ui.label("User Management").classes("text-2xl font-semibold")
                    ui.label("Accounts, roles and spreadsheet sync.").classes("nx-subtitle")
                ui.button("Add user", icon="person_add", on_click=lambda: open_user_dialog(None)).props(
                    "unelevated color=primary"
                )

            @ui.refreshable
            def user_table() -> None:
                rows = [
                    {"id": u.id, "name": u.name, "username": u.username, "email": u.email, "role": u.role}
                    for u in repo.list_users()
                ]
                tbl = ui.table(
                    columns=[
                        {"name": "name", "label": "Name", "field": "name", "align": "left"},
                        {"name": "username", "label": "Username", "field": "username", "align": "left"},
                        {"name": "email", "label": "Email", "field": "email", "align": "left"},
                        {"name": "role", "label": "Role", "field": "role", "align": "left"},
                        {"name": "actions", "label": "", "field": "id", "align": "right"},
                    ],
                    rows=rows,
                    row_key="id",
                ).classes("w-full")
                tbl.props("dense flat bordered")
                row_actions_slot(
                    tbl,
                    [("edit", "edit", "primary"), ("reset", "key", "secondary"), ("remove", "delete", "negative")],
                )

                def _with_target(fn: Callable[[User], None]):
                    def _handler(e) -> None:
                        target = target_from_event(e)
                        if target is None:
                            notify("User no longer exists", "warning")
                            return
                        fn(target)

                    return _handler

                tbl.on("edit", _with_target(open_user_dialog))
                tbl.on("reset", _with_target(open_reset_dialog))
                tbl.on("remove", _with_target(delete_user))

            user_table()

            ui.separator().classes("my-4")

            with ui.card().classes("p-4 w-[min(720px,100%)]"):
                ui.label("Settings").classes("text-lg font-semibold")
                ui.label("The sync endpoint reads and writes the shared production spreadsheet.").classes(
                    "text-sm text-slate-600"
                )
                plant_in = ui.input("Plant name", value=repo.get_config(key="plant_name", default="NexusMfg")).props(
                    "outlined dense"
                ).classes("w-full")
                url_in = ui.input(
                    "Spreadsheet sync URL", value=repo.get_config(key="sheets_sync_url", default="")
                ).props("outlined dense clearable").classes("w-full")
                try:
                    timeout_value = float(repo.get_config(key="sheets_sync_timeout", default="15") or 15)
                except ValueError:
                    timeout_value = 15.0
                timeout_in = ui.number("Timeout (s)", value=timeout_value, min=1, max=120, step=1).props(
                    "outlined dense"
                ).classes("w-40")

                def save_settings() -> None:
                    url = str(url_in.value or "").strip()
                    if url and not url.startswith(("http://", "https://")):
                        page_bus.publish(Notification("Sync URL must start with http:// or https://", kind="error"))
                        return
                    repo.set_config(key="plant_name", value=str(plant_in.value or "").strip() or "NexusMfg")
                    repo.set_config(key="sheets_sync_url", value=url)
                    repo.set_config(key="sheets_sync_timeout", value=str(int(timeout_in.value or 15)))
                    repo.log_activity(user=user, action="UPDATE_SETTINGS", details=f"sync url {'set' if url else 'cleared'}")
                    page_bus.publish(Notification("SETTINGS SAVED"))

                with ui.row().classes("w-full justify-end"):
                    ui.button("Save", on_click=save_settings).props("unelevated color=primary")

    @ui.page("/logs")
    def logs_page() -> None:
        user = require_user()
        if user is None:
            return
        page_shell(user, active="logs")

        with page_container():
            with ui.row().classes("w-full items-end justify-between"):
                with ui.column().classes("gap-0"):
                    ui.label("Activity Log").classes("text-2xl font-semibold")
                    ui.label("Most recent first.").classes("nx-subtitle")
                search = ui.input("Search").props("outlined dense clearable").classes("w-64")
            attach_search = search_filter(search)

            @ui.refreshable
            def log_table() -> None:
                rows = [
                    {
                        "id": a.id,
                        "timestamp": a.timestamp,
                        "user_name": a.user_name,
                        "action": a.action,
                        "details": a.details,
                    }
                    for a in repo.list_activity(limit=500)
                ]
                tbl = ui.table(
                    columns=[
                        {"name": "timestamp", "label": "Time", "field": "timestamp", "align": "left"},
                        {"name": "user_name", "label": "User", "field": "user_name", "align": "left"},
                        {"name": "action", "label": "Action", "field": "action", "align": "left"},
                        {"name": "details", "label": "Details", "field": "details", "align": "left"},
                    ],
                    rows=rows,
                    row_key="id",
                    pagination=50,
                ).classes("w-full")
                tbl.props("dense flat bordered")
                attach_search(tbl)

            log_table()
            watch_store(log_table.refresh)
