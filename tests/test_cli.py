"""Tests for kb_sync.cli."""

import os
import subprocess
import sys
from pathlib import Path

import pytest
from click.testing import CliRunner

from conftest import FakeRemote, FakeSource, strip_tags
from kb_sync import cli as cli_module
from kb_sync.cli import cli
from kb_sync.sync.conditions import StaticConditions
from kb_sync.sync.directory import CollectionDirectory
from kb_sync.sync.engine import ReconciliationEngine
from kb_sync.sync.scheduler import SyncScheduler
from kb_sync.sync.state import SyncRecord, SyncStateStore

SRC_DIR = Path(__file__).resolve().parents[1] / "src"

class NullClient:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None


@pytest.fixture
def env(tmp_path):
    return {
        "KB_SYNC_URL": "https://kb.example.com",
        "KB_SYNC_API_TOKEN": "sk-test",
        "KB_SYNC_VAULT_DIR": str(tmp_path),
        "KB_SYNC_STATE_FILE": ".kb-sync-state.json",
        "KB_SYNC_BATCH_SIZE": None,
    }


@pytest.fixture
def runner():
    return CliRunner()


class TestStatus:
    def test_nothing_tracked(self, runner, env):
        result = runner.invoke(cli, ["status"], env=env)

        assert result.exit_code == 0
        assert "No documents tracked yet." in result.output

    def test_lists_tracked_documents(self, runner, env, tmp_path):
        SyncStateStore(tmp_path / ".kb-sync-state.json").put(
            "notes/a.md",
            SyncRecord(remote_document_id="file-1", memberships=["Alpha", "Beta"]),
        )

        result = runner.invoke(cli, ["status"], env=env)

        assert result.exit_code == 0
        assert "1 document(s) tracked" in result.output
        assert "notes/a.md -> file-1 [Alpha, Beta]" in result.output


class TestClearState:
    def test_clears_with_confirmation(self, runner, env, tmp_path):
        path = tmp_path / ".kb-sync-state.json"
        SyncStateStore(path).put("a.md", SyncRecord(remote_document_id="file-1"))

        result = runner.invoke(cli, ["clear-state", "--yes"], env=env)

        assert result.exit_code == 0
        assert "Cleared 1 tracked document(s)." in result.output
        assert SyncStateStore(path).all_ids() == set()


class TestSync:
    def test_missing_token_fails(self, runner, env):
        env["KB_SYNC_API_TOKEN"] = ""

        result = runner.invoke(cli, ["sync"], env=env)

        assert result.exit_code == 1
        assert "KB_SYNC_API_TOKEN" in result.output

    def test_runs_one_pass(self, runner, env, tmp_path, monkeypatch):
        remote = FakeRemote()
        source = FakeSource()
        source.write("a.md", "hello", ["Alpha"], mtime=1.0)
        engine = ReconciliationEngine(
            remote,
            CollectionDirectory(remote),
            SyncStateStore(tmp_path / "state.json"),
            source,
            strip_tags,
        )
        scheduler = SyncScheduler(engine, source, StaticConditions())
        monkeypatch.setattr(
            cli_module, "build_scheduler", lambda cfg: (scheduler, NullClient())
        )

        result = runner.invoke(cli, ["sync"], env=env)

        assert result.exit_code == 0, result.output
        assert "Sync completed: 2/2 operations across 1 document(s)" in result.output
        assert remote.members_of("Alpha")


class TestSettingsErrors:
    def test_bad_setting_is_reported(self, runner, env):
        env["KB_SYNC_BATCH_SIZE"] = "many"

        result = runner.invoke(cli, ["status"], env=env)

        assert result.exit_code == 1
        assert "KB_SYNC_BATCH_SIZE must be an integer" in result.output

    def test_bad_setting_in_a_fresh_process_is_not_a_traceback(self, tmp_path):
        env = {
            key: value for key, value in os.environ.items() if not key.startswith("KB_SYNC_")
        }
        env.update(
            KB_SYNC_BATCH_SIZE="many",
            KB_SYNC_VAULT_DIR=str(tmp_path),
            PYTHONPATH=os.pathsep.join(filter(None, [str(SRC_DIR), env.get("PYTHONPATH")])),
        )

        proc = subprocess.run(
            [sys.executable, "-m", "kb_sync.cli", "status"],
            env=env,
            capture_output=True,
            text=True,
            timeout=60,
        )

        assert proc.returncode == 1
        assert "KB_SYNC_BATCH_SIZE must be an integer, got 'many'" in proc.stderr
        assert "Traceback" not in proc.stderr

    def test_watch_rejects_non_positive_interval(self, runner, env):
        result = runner.invoke(cli, ["watch", "--interval", "0"], env=env)

        assert result.exit_code == 1
        assert "must be positive" in result.output


class TestConnection:
    def test_missing_token(self, runner, env):
        env["KB_SYNC_API_TOKEN"] = ""

        result = runner.invoke(cli, ["test-connection"], env=env)

        assert result.exit_code == 1
        assert "Connection failed" in result.output
