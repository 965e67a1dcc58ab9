"""Best-effort sync with a spreadsheet-backed HTTP endpoint.

The endpoint (typically a published Apps Script web app) speaks JSON:

    GET  <url>?action=read   -> {"entries": [...], "offDays": [...]}
    POST <url>               <- {"action": "write", "entries": [...], "offDays": [...], "deletedIds": [...]}

Records use the spreadsheet's camelCase column names.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Iterable

import requests

from nexusmfg.core.events import OffDaysChanged
from nexusmfg.core.models import OffDay, ProductionEntry
from nexusmfg.data.repository import Repository, timestamp_key

logger = logging.getLogger(__name__)


class SyncError(RuntimeError):
    pass


@dataclass(frozen=True)
class SyncResult:
    pulled_entries: int = 0
    merged_entries: int = 0
    merged_off_days: int = 0
    pushed_entries: int = 0
    pushed_off_days: int = 0
    rejected: int = 0
    skipped_deleted: int = 0


def entry_to_payload(e: ProductionEntry) -> dict:
    return {
        "id": e.id,
        "date": e.date,
        "category": e.category,
        "process": e.process,
        "productName": e.product_name,
        "planQuantity": e.plan_quantity,
        "actualQuantity": e.actual_quantity,
        "unit": e.unit,
        "batchNo": e.batch_no or "",
        "manpower": e.manpower,
        "lastUpdatedBy": e.last_updated_by,
        "updatedAt": e.updated_at,
    }


def entry_from_payload(d: dict) -> dict:
    """Map a remote record to the raw values accepted by Repository.build_entry."""
    return {
        "id": d.get("id"),
        "date": d.get("date"),
        "category": d.get("category"),
        "process": d.get("process"),
        "product_name": d.get("productName"),
        "plan_quantity": d.get("planQuantity"),
        "actual_quantity": d.get("actualQuantity"),
        "unit": d.get("unit"),
        "batch_no": d.get("batchNo"),
        "manpower": d.get("manpower"),
    }


def off_day_to_payload(od: OffDay) -> dict:
    return {"id": od.id, "date": od.date, "description": od.description, "createdBy": od.created_by}


class SheetsSyncClient:
    def __init__(self, url: str | None, *, timeout: float = 15.0, session: requests.Session | None = None):
        self.url = str(url or "").strip()
        self.timeout = float(timeout)
        self.session = session or requests.Session()

    @classmethod
    def from_repository(cls, repo: Repository) -> "SheetsSyncClient":
        url = repo.get_config(key="sheets_sync_url", default="") or ""
        try:
            timeout = float(repo.get_config(key="sheets_sync_timeout", default="15") or 15)
        except ValueError:
            timeout = 15.0
        return cls(url, timeout=timeout)

    def is_enabled(self) -> bool:
        return self.url.startswith("http://") or self.url.startswith("https://")

    def _require_enabled(self) -> None:
        if not self.is_enabled():
            raise SyncError("Sync endpoint not configured")

    def pull(self) -> dict:
        self._require_enabled()
        try:
            resp = self.session.get(self.url, params={"action": "read"}, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as ex:
            raise SyncError(f"Pull failed: {ex}") from ex
        except ValueError as ex:
            raise SyncError("Pull returned invalid JSON") from ex

        if not isinstance(data, dict):
            raise SyncError("Pull returned an unexpected payload")
        entries = data.get("entries") or []
        off_days = data.get("offDays") or []
        if not isinstance(entries, list) or not isinstance(off_days, list):
            raise SyncError("Pull returned an unexpected payload")
        return {"entries": entries, "offDays": off_days}

    def push(
        self,
        *,
        entries: list[ProductionEntry],
        off_days: list[OffDay],
        deleted_ids: Iterable[str] = (),
    ) -> None:
        self._require_enabled()
        payload = {
            "action": "write",
            "entries": [entry_to_payload(e) for e in entries],
            "offDays": [off_day_to_payload(od) for od in off_days],
            "deletedIds": sorted(deleted_ids),
        }
        try:
            resp = self.session.post(self.url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as ex:
            raise SyncError(f"Push failed: {ex}") from ex

    def merge_remote(self, repo: Repository, remote: dict) -> SyncResult:
        """Merge pulled records into ``repo``.

        Entries merge by id: the remote copy wins only if its ``updatedAt`` is
        newer (or the id is unknown locally). Remote off-days are added when
        their id is missing locally.
        Ids deleted locally are never re-imported.
        """
        local = {e.id: e for e in repo.list_entries()}
        deleted_ids = repo.list_deleted_entry_ids()

        merged: list[ProductionEntry] = []
        skipped_deleted = 0
        rejected = 0
        for raw in remote["entries"]:
            if not isinstance(raw, dict) or not raw.get("id"):
                rejected += 1
                continue
            if str(raw["id"]) in deleted_ids:
                skipped_deleted += 1
                continue
            current = local.get(str(raw["id"]))
            remote_ts = timestamp_key(raw.get("updatedAt"))
            if current is not None and timestamp_key(current.updated_at) >= remote_ts:
                continue
            try:
                built = repo.build_entry(entry_from_payload(raw), user=None)
            except ValueError as ex:
                logger.warning("Skipping remote entry %s: %s", raw.get("id"), ex)
                rejected += 1
                continue
            # Keep the remote author/timestamp so the next sync compares equal.
            merged.append(
                replace(
                    built,
                    last_updated_by=str(raw.get("lastUpdatedBy") or ""),
                    updated_at=str(raw.get("updatedAt") or built.updated_at),
                )
            )

        if merged:
            repo.upsert_entries(merged, action="sync")

        local_off_ids = {od.id for od in repo.list_off_days()}
        merged_off = 0
        for raw in remote["offDays"]:
            if not isinstance(raw, dict) or not raw.get("id") or str(raw["id"]) in local_off_ids:
                continue
            try:
                repo.upsert_off_day(
                    OffDay(
                        id=str(raw["id"]),
                        date=str(raw.get("date") or ""),
                        description=str(raw.get("description") or ""),
                        created_by=str(raw.get("createdBy") or ""),
                    ),
                    notify=False,
                )
                merged_off += 1
            except ValueError as ex:
                logger.warning("Skipping remote off-day %s: %s", raw.get("id"), ex)
                rejected += 1

        if merged_off:
            repo.bus.publish(OffDaysChanged(action="sync"))

        return SyncResult(
            pulled_entries=len(remote["entries"]),
            merged_entries=len(merged),
            merged_off_days=merged_off,
            rejected=rejected,
            skipped_deleted=skipped_deleted,
        )

    def push_snapshot(self, repo: Repository) -> tuple[int, int]:
        entries = repo.list_entries()
        off_days = repo.list_off_days()
        self.push(entries=entries, off_days=off_days, deleted_ids=repo.list_deleted_entry_ids())
        return len(entries), len(off_days)

    def sync(self, repo: Repository) -> SyncResult:
        """Pull, merge newer remote records into ``repo``, then push the local snapshot."""
        merged = self.merge_remote(repo, self.pull())
        pushed_entries, pushed_off_days = self.push_snapshot(repo)
        result = replace(merged, pushed_entries=pushed_entries, pushed_off_days=pushed_off_days)
        logger.info("Sync finished: %s", result)
        return result


async def run_sync(client: SheetsSyncClient, repo: Repository) -> SyncResult:
    """Like ``SheetsSyncClient.sync`` but with the HTTP round-trips off the event loop.

    The merge runs on the calling loop so change events reach UI handlers there.
    """
    remote = await asyncio.to_thread(client.pull)
    merged = client.merge_remote(repo, remote)
    pushed_entries, pushed_off_days = await asyncio.to_thread(client.push_snapshot, repo)
    result = replace(merged, pushed_entries=pushed_entries, pushed_off_days=pushed_off_days)
    logger.info("Sync finished: %s", result)
    return result
