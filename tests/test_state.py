"""Tests for kb_sync.sync.state: the durable sync state file."""

import asyncio
import json
from datetime import datetime, timezone

import pytest

from kb_sync.errors import KBSyncError
from kb_sync.sync.state import SyncRecord, SyncStateStore


def make_record(remote_id="file-1", memberships=("Alpha",)):
    return SyncRecord(
        remote_document_id=remote_id,
        uploaded_name="a_12345678.md",
        content_fingerprint="12345678" * 8,
        source_modified_at=1700000000.5,
        memberships=list(memberships),
        last_synced_at=datetime(2026, 1, 2, tzinfo=timezone.utc),
    )


class TestLoad:
    def test_missing_file_is_empty_state(self, tmp_path):
        store = SyncStateStore(tmp_path / "missing.json")

        state = store.load()

        assert state.records == {}
        assert store.all_ids() == set()

    def test_empty_file_is_empty_state(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("")

        assert SyncStateStore(path).load().records == {}

    def test_corrupt_file_is_reported(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")

        with pytest.raises(KBSyncError, match="corrupt"):
            SyncStateStore(path).load()

    def test_clear_resets_a_corrupt_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")

        assert SyncStateStore(path).clear() == 0
        assert SyncStateStore(path).load().records == {}


class TestRecords:
    def test_put_persists_across_instances(self, state_path):
        SyncStateStore(state_path).put("a.md", make_record())

        record = SyncStateStore(state_path).get("a.md")

        assert record == make_record()
        assert record.membership_set == frozenset({"Alpha"})

    def test_get_returns_a_copy(self, store):
        store.put("a.md", make_record())

        record = store.get("a.md")
        record.memberships.append("Mutated")

        assert store.get("a.md").memberships == ["Alpha"]

    def test_commit_writes_record_and_declared_together(self, store, state_path):
        store.commit("a.md", make_record(), frozenset({"Alpha", "Beta"}))

        raw = json.loads(state_path.read_text())

        assert raw["records"]["a.md"]["remote_document_id"] == "file-1"
        assert raw["declared"]["a.md"] == ["Alpha", "Beta"]

    def test_delete_forgets_record_and_snapshot(self, store, state_path):
        store.commit("a.md", make_record(), {"Alpha"})
        store.commit("b.md", make_record("file-2"), {"Beta"})

        store.delete("a.md")

        reloaded = SyncStateStore(state_path)
        assert reloaded.get("a.md") is None
        assert reloaded.get_declared("a.md") is None
        assert reloaded.all_ids() == {"b.md"}

    def test_delete_unknown_is_a_no_op(self, store, state_path):
        store.delete("nope.md")

        assert not state_path.exists()

    def test_declared_snapshot_without_record(self, store):
        store.put_declared("a.md", {"Beta", "Alpha"})

        assert store.get_declared("a.md") == frozenset({"Alpha", "Beta"})
        assert store.get("a.md") is None


class TestAtomicWrites:
    def test_no_temp_files_left_behind(self, store, state_path):
        for i in range(3):
            store.put(f"n{i}.md", make_record(f"file-{i}"))

        leftovers = [p.name for p in state_path.parent.iterdir() if p.name != state_path.name]

        assert leftovers == []

    def test_creates_parent_directories(self, tmp_path):
        path = tmp_path / "deep" / "er" / "state.json"

        SyncStateStore(path).put("a.md", make_record())

        assert path.exists()


class TestAsyncWrites:
    @pytest.mark.asyncio
    async def test_commit_and_delete_persist(self, store, state_path):
        await store.commit_async("a.md", make_record(), {"Alpha"})
        await store.commit_async("b.md", make_record("file-2"), {"Beta"})
        await store.delete_async("a.md")

        reloaded = SyncStateStore(state_path)

        assert reloaded.all_ids() == {"b.md"}
        assert reloaded.get("b.md") == make_record("file-2")
        assert reloaded.get_declared("b.md") == frozenset({"Beta"})

    @pytest.mark.asyncio
    async def test_concurrent_commits_all_land(self, store, state_path):
        await asyncio.gather(
            *(store.commit_async(f"n{i}.md", make_record(f"file-{i}"), {"Alpha"}) for i in range(8))
        )

        reloaded = SyncStateStore(state_path)

        assert reloaded.all_ids() == {f"n{i}.md" for i in range(8)}
        leftovers = [p.name for p in state_path.parent.iterdir() if p.name != state_path.name]
        assert leftovers == []

    @pytest.mark.asyncio
    async def test_delete_of_unknown_identity_does_not_write(self, store, state_path):
        await store.delete_async("nope.md")

        assert not state_path.exists()


class TestClear:
    def test_clear_drops_everything_and_reports_count(self, store, state_path):
        store.commit("a.md", make_record(), {"Alpha"})
        store.commit("b.md", make_record("file-2"), {"Beta"})

        assert store.clear() == 2

        reloaded = SyncStateStore(state_path)
        assert reloaded.all_ids() == set()
        assert reloaded.get_declared("a.md") is None
