from __future__ import annotations

import asyncio

import pytest
import requests

from nexusmfg.core.events import EntriesChanged, EventBus, OffDaysChanged
from nexusmfg.data.db import Db
from nexusmfg.data.repository import Repository
from nexusmfg.data.sheets_sync import SheetsSyncClient, SyncError, entry_to_payload, run_sync

URL = "https://script.example.test/exec"


class FakeResponse:
    def __init__(self, payload=None, status: int = 200):
        self.payload = payload
        self.status = status

    def raise_for_status(self) -> None:
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    def __init__(self, payload=None, *, status: int = 200, fail: Exception | None = None):
        self.payload = payload if payload is not None else {"entries": [], "offDays": []}
        self.status = status
        self.fail = fail
        self.gets: list[dict] = []
        self.posts: list[dict] = []

    def get(self, url, params=None, timeout=None):
        if self.fail is not None:
            raise self.fail
        self.gets.append({"url": url, "params": params, "timeout": timeout})
        return FakeResponse(self.payload, self.status)

    def post(self, url, json=None, timeout=None):
        if self.fail is not None:
            raise self.fail
        self.posts.append({"url": url, "json": json, "timeout": timeout})
        return FakeResponse({"status": "ok"}, self.status)


@pytest.fixture
def repo(tmp_path) -> Repository:
    db = Db(tmp_path / "sync.db")
    db.ensure_schema()
    r = Repository(db, bus=EventBus())
    r.seed_defaults()
    return r


def _remote_entry(id: str, *, updated_at: str, actual: float = 90.0, **overrides) -> dict:
    d = {
        "id": id,
        "date": "2025-01-05",
        "category": "Healthcare",
        "process": "Mixing",
        "productName": "Gel",
        "planQuantity": 100,
        "actualQuantity": actual,
        "unit": "KG",
        "batchNo": "",
        "manpower": 2,
        "lastUpdatedBy": "u2",
        "updatedAt": updated_at,
    }
    d.update(overrides)
    return d


def test_client_without_url_is_disabled():
    client = SheetsSyncClient("", session=FakeSession())
    assert not client.is_enabled()
    assert not SheetsSyncClient("ftp://nope", session=FakeSession()).is_enabled()
    with pytest.raises(SyncError, match="not configured"):
        client.pull()


def test_from_repository_reads_config(repo):
    repo.set_config(key="sheets_sync_url", value=URL)
    repo.set_config(key="sheets_sync_timeout", value="7")
    client = SheetsSyncClient.from_repository(repo)
    assert client.is_enabled()
    assert client.url == URL
    assert client.timeout == 7.0


def test_pull_sends_read_action():
    session = FakeSession({"entries": [_remote_entry("r1", updated_at="2025-01-05 10:00:00")], "offDays": []})
    data = SheetsSyncClient(URL, timeout=3, session=session).pull()
    assert session.gets == [{"url": URL, "params": {"action": "read"}, "timeout": 3.0}]
    assert len(data["entries"]) == 1


def test_pull_wraps_http_errors():
    client = SheetsSyncClient(URL, session=FakeSession(status=500))
    with pytest.raises(SyncError, match="Pull failed"):
        client.pull()

    client = SheetsSyncClient(URL, session=FakeSession(fail=requests.ConnectionError("offline")))
    with pytest.raises(SyncError):
        client.pull()


def test_pull_rejects_malformed_payload():
    with pytest.raises(SyncError, match="invalid JSON"):
        SheetsSyncClient(URL, session=FakeSession(ValueError("bad json"))).pull()
    with pytest.raises(SyncError, match="unexpected payload"):
        SheetsSyncClient(URL, session=FakeSession(["not", "a", "dict"])).pull()


def test_sync_merges_newest_updated_at(repo):
    local_old = repo.build_entry(
        {"date": "2025-01-05", "category": "Healthcare", "process": "Mixing", "product_name": "Gel",
         "plan_quantity": 100, "actual_quantity": 50},
        user=None,
        entry_id="shared-old",
    )
    repo.upsert_entry(local_old)
    local_new = repo.build_entry(
        {"date": "2025-01-05", "category": "Healthcare", "process": "Filling", "product_name": "Gel",
         "plan_quantity": 100, "actual_quantity": 60},
        user=None,
        entry_id="shared-new",
    )
    repo.upsert_entry(local_new)

    session = FakeSession(
        {
            "entries": [
                # Remote is newer: wins.
                _remote_entry("shared-old", updated_at="2999-01-01T00:00:00", actual=99),
                # Remote is older: local kept.
                _remote_entry("shared-new", updated_at="2000-01-01 00:00:00", actual=1),
                # Unknown locally: added.
                _remote_entry("remote-only", updated_at="2025-01-05 08:00:00", process="Packing"),
                # Broken records are counted, not raised.
                _remote_entry("bad", updated_at="2999-01-01 00:00:00", category="Nope"),
                {"no": "id"},
            ],
            "offDays": [
                {"id": "od9", "date": "2026-05-01", "description": "Labour Day", "createdBy": "u1"},
                {"id": "od1", "date": "2025-12-25", "description": "Christmas Day", "createdBy": "u1"},
            ],
        }
    )
    events: list = []
    repo.bus.subscribe(EntriesChanged, events.append)
    repo.bus.subscribe(OffDaysChanged, events.append)

    result = SheetsSyncClient(URL, session=session).sync(repo)

    assert result.pulled_entries == 5
    assert result.merged_entries == 2
    assert result.merged_off_days == 1
    assert result.rejected == 2

    assert repo.get_entry("shared-old").actual_quantity == 99
    assert repo.get_entry("shared-old").updated_at == "2999-01-01T00:00:00"
    assert repo.get_entry("shared-old").last_updated_by == "u2"
    assert repo.get_entry("shared-new").actual_quantity == 60
    assert repo.get_entry("remote-only").process == "Packing"
    assert repo.get_entry("bad") is None
    assert "2026-05-01" in {od.date for od in repo.list_off_days()}

    assert events == [EntriesChanged(action="sync"), OffDaysChanged(action="sync")]

    pushed = session.posts[0]["json"]
    assert pushed["action"] == "write"
    assert pushed["deletedIds"] == []
    assert {e["id"] for e in pushed["entries"]} == {"shared-old", "shared-new", "remote-only"}
    assert len(pushed["offDays"]) == 3
    assert result.pushed_entries == 3


def test_sync_is_stable_on_second_run(repo):
    remote = {"entries": [_remote_entry("r1", updated_at="2025-01-05 08:00:00")], "offDays": []}
    client = SheetsSyncClient(URL, session=FakeSession(remote))
    assert client.sync(repo).merged_entries == 1
    assert client.sync(repo).merged_entries == 0


def test_push_failure_raises_sync_error(repo):
    client = SheetsSyncClient(URL, session=FakeSession(status=503))
    with pytest.raises(SyncError):
        client.push(entries=repo.list_entries(), off_days=repo.list_off_days())


def test_entry_payload_uses_camel_case(repo):
    entry = repo.build_entry(
        {"date": "2025-01-05", "category": "Healthcare", "process": "Mixing", "product_name": "Gel",
         "plan_quantity": 10, "actual_quantity": 9, "batch_no": "B1", "manpower": 2},
        user=None,
        entry_id="e1",
    )
    payload = entry_to_payload(entry)
    assert payload["productName"] == "Gel"
    assert payload["planQuantity"] == 10
    assert payload["batchNo"] == "B1"
    assert "product_name" not in payload


def test_run_sync_matches_blocking_sync(repo):
    remote = {"entries": [_remote_entry("r1", updated_at="2025-01-05 08:00:00")], "offDays": []}
    session = FakeSession(remote)

    result = asyncio.run(run_sync(SheetsSyncClient(URL, session=session), repo))

    assert result.merged_entries == 1
    assert result.pushed_entries == 1
    assert len(session.posts) == 1


class SheetEndpoint:
    """Spreadsheet stand-in: serves back whatever was last written."""

    def __init__(self, *, honour_deletions: bool = True):
        self.honour_deletions = honour_deletions
        self.entries: dict[str, dict] = {}
        self.off_days: list[dict] = []
        self.posts: list[dict] = []

    def get(self, url, params=None, timeout=None):
        return FakeResponse({"entries": list(self.entries.values()), "offDays": list(self.off_days)})

    def post(self, url, json=None, timeout=None):
        self.posts.append(json)
        for e in json["entries"]:
            self.entries[e["id"]] = e
        if self.honour_deletions:
            for entry_id in json["deletedIds"]:
                self.entries.pop(entry_id, None)
        self.off_days = list(json["offDays"])
        return FakeResponse({"status": "ok"})


def _local_entry(repo, entry_id: str):
    return repo.build_entry(
        {"date": "2025-01-05", "category": "Healthcare", "process": "Mixing", "product_name": "Gel",
         "plan_quantity": 100, "actual_quantity": 90},
        user=None,
        entry_id=entry_id,
    )


def test_local_delete_is_not_restored_by_next_sync(repo):
    endpoint = SheetEndpoint()
    client = SheetsSyncClient(URL, session=endpoint)
    repo.upsert_entry(_local_entry(repo, "e1"))

    client.sync(repo)
    assert "e1" in endpoint.entries

    repo.delete_entry("e1")
    result = client.sync(repo)

    assert [e.id for e in repo.list_entries()] == []
    assert result.skipped_deleted == 1
    assert result.merged_entries == 0
    pushed = endpoint.posts[-1]
    assert pushed["deletedIds"] == ["e1"]
    assert pushed["entries"] == []
    assert "e1" not in endpoint.entries

    # Once the sheet has dropped it there is nothing left to skip.
    assert client.sync(repo).skipped_deleted == 0
    assert repo.list_entries() == []


def test_local_delete_survives_endpoint_that_ignores_deletions(repo):
    endpoint = SheetEndpoint(honour_deletions=False)
    client = SheetsSyncClient(URL, session=endpoint)
    repo.upsert_entry(_local_entry(repo, "e1"))
    repo.upsert_entry(_local_entry(repo, "e2"))
    client.sync(repo)

    repo.delete_entry("e1")
    for _ in range(2):
        client.sync(repo)

    assert [e.id for e in repo.list_entries()] == ["e2"]
    assert "e1" in endpoint.entries


def test_rewriting_deleted_id_locally_lets_it_sync_again(repo):
    endpoint = SheetEndpoint()
    client = SheetsSyncClient(URL, session=endpoint)
    entry = _local_entry(repo, "e1")
    repo.upsert_entry(entry)
    repo.delete_entry("e1")
    client.sync(repo)

    repo.upsert_entry(entry)
    client.sync(repo)

    assert endpoint.posts[-1]["deletedIds"] == []
    assert "e1" in endpoint.entries
    assert repo.get_entry("e1") is not None
