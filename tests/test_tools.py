"""Tests for the MCP tool layer, called directly without a transport."""

import inspect

import pytest

from conftest import FakeRemote, FakeSource, strip_tags
from kb_sync.errors import TransientRemoteError
from kb_sync.sync.conditions import StaticConditions
from kb_sync.sync.directory import CollectionDirectory
from kb_sync.sync.engine import ReconciliationEngine
from kb_sync.sync.scheduler import SyncScheduler
from kb_sync.tools.sync_tools import register_sync_tools


class ToolCapture:
    """Stands in for FastMCP and keeps the registered tool functions."""

    def __init__(self):
        self.tools = {}

    def tool(self):
        def decorator(fn):
            self.tools[fn.__name__] = fn
            return fn

        return decorator


@pytest.fixture
def setup(store):
    remote = FakeRemote()
    source = FakeSource()
    engine = ReconciliationEngine(remote, CollectionDirectory(remote), store, source, strip_tags)
    scheduler = SyncScheduler(engine, source, StaticConditions())
    capture = ToolCapture()
    register_sync_tools(capture, scheduler, remote)
    return capture.tools, scheduler, remote, source


def test_registers_every_tool(setup):
    tools, *_ = setup

    assert set(tools) == {
        "sync_now",
        "get_sync_status",
        "list_tracked_documents",
        "force_release_sync_lock",
        "test_connection",
    }


@pytest.mark.asyncio
async def test_sync_now_reports_counts(setup):
    tools, _, _, source = setup
    source.write("a.md", "hello", ["Alpha", "Beta"], mtime=1.0)

    response = await tools["sync_now"]()

    assert response["success"] is True
    assert response["message"] == "Sync completed: 3/3 operations"
    assert response["status"]["succeeded_operations"] == 3


@pytest.mark.asyncio
async def test_sync_now_rejected_while_running(setup):
    tools, scheduler, _, _ = setup

    with scheduler._guard.hold():
        response = await tools["sync_now"]()

    assert response["success"] is False
    assert "already in progress" in response["message"]


@pytest.mark.asyncio
async def test_list_tracked_documents(setup):
    tools, _, _, source = setup
    source.write("b.md", "b", ["Beta"], mtime=1.0)
    source.write("a.md", "a", ["Alpha"], mtime=1.0)
    await tools["sync_now"]()

    documents = tools["list_tracked_documents"]()

    assert [d["identity"] for d in documents] == ["a.md", "b.md"]
    assert documents[0]["collections"] == ["Alpha"]
    assert documents[0]["last_synced"] is not None


def test_get_sync_status_idle(setup):
    tools, *_ = setup

    status = tools["get_sync_status"]()

    assert status["is_syncing"] is False
    assert status["total_operations"] == 0


@pytest.mark.asyncio
async def test_force_release(setup):
    tools, scheduler, _, _ = setup
    stuck = scheduler._guard.hold()
    stuck.__enter__()

    assert tools["force_release_sync_lock"]()["released"] is True
    assert tools["force_release_sync_lock"]()["released"] is False
    assert not scheduler.is_sync_in_progress()


@pytest.mark.asyncio
async def test_test_connection(setup):
    tools, _, remote, _ = setup
    remote.add_collection("Alpha")

    ok = await tools["test_connection"]()
    remote.fail["list"] = TransientRemoteError("connection refused")
    failed = await tools["test_connection"]()

    assert ok == {"success": True, "message": "Connection successful: 1 collection(s) visible."}
    assert failed["success"] is False


def test_tools_are_plain_coroutines_or_functions(setup):
    tools, *_ = setup

    assert inspect.iscoroutinefunction(tools["sync_now"])
    assert not inspect.iscoroutinefunction(tools["get_sync_status"])
