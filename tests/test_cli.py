"""Tests for the brainsync CLI against a local-only data directory."""

import json

import pytest
from typer.testing import CliRunner

from brainsync.cli import app

runner = CliRunner()


@pytest.fixture
def store(tmp_path, monkeypatch):
    monkeypatch.setenv("BRAINSYNC_HOME", str(tmp_path))
    for name in ("BRAINSYNC_API_URL", "BRAINSYNC_API_KEY", "BRAINSYNC_OWNER_ID"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


def invoke(store, *args):
    return runner.invoke(app, ["--store", str(store), *args])


class TestCli:

    def test_put_then_get(self, store):
        result = invoke(store, "put", "tasks", "1", "--field", "title=Write report", "-f", "priority=3")
        assert result.exit_code == 0, result.output
        assert "tasks/1: saved" in result.output
        assert "not synced" not in result.output

        result = invoke(store, "get", "tasks", "1")
        assert result.exit_code == 0, result.output
        assert "title: Write report" in result.output
        assert "priority: 3" in result.output
        assert (store / "brainsync.toml").exists()

    def test_json_output(self, store):
        invoke(store, "put", "notes", "n1", "-f", 'tags=["a","b"]')
        result = invoke(store, "--json", "get", "notes", "n1")
        assert result.exit_code == 0, result.output
        doc = json.loads(result.output)
        assert doc["tags"] == ["a", "b"]
        assert doc["ownerId"] == "local"

    def test_merge(self, store):
        invoke(store, "put", "tasks", "1", "-f", "title=a", "-f", "status=todo")
        invoke(store, "put", "tasks", "1", "--merge", "-f", "status=done")
        result = invoke(store, "--json", "get", "tasks", "1")
        doc = json.loads(result.output)
        assert doc["title"] == "a"
        assert doc["status"] == "done"

    def test_add_without_id(self, store):
        result = invoke(store, "--json", "put", "tasks", "-f", "title=new")
        assert result.exit_code == 0, result.output
        out = json.loads(result.output)
        assert out["id"].startswith("local_")
        assert out["synced"] is True

    def test_list(self, store):
        invoke(store, "put", "tasks", "1", "-f", "title=first")
        invoke(store, "put", "tasks", "2", "-f", "title=second")
        result = invoke(store, "list", "tasks")
        assert result.exit_code == 0, result.output
        lines = result.output.strip().splitlines()
        assert "second" in lines[0]
        assert "first" in lines[1]

    def test_list_empty(self, store):
        result = invoke(store, "list", "goals")
        assert result.exit_code == 0
        assert "No documents found." in result.output

    def test_delete(self, store):
        invoke(store, "put", "tasks", "1", "-f", "title=a")
        result = invoke(store, "delete", "tasks", "1")
        assert result.exit_code == 0, result.output
        result = invoke(store, "get", "tasks", "1")
        assert result.exit_code == 1
        assert "Not found" in result.output

    def test_sync_without_remote_has_nothing_to_push(self, store):
        invoke(store, "put", "tasks", "1", "-f", "title=a")
        invoke(store, "delete", "tasks", "1")
        result = invoke(store, "sync")
        assert result.exit_code == 0, result.output
        assert "Pushed 0, failed 0" in result.output

    def test_status(self, store):
        invoke(store, "put", "tasks", "1", "-f", "title=a")
        result = invoke(store, "status")
        assert result.exit_code == 0, result.output
        assert "connection: disconnected" in result.output
        assert "unsynced:   0" in result.output
        assert "tasks/1" not in result.output

    def test_bad_field(self, store):
        result = invoke(store, "put", "tasks", "1", "-f", "oops")
        assert result.exit_code == 1
        assert "key=value" in result.output

    def test_bad_collection(self, store):
        result = invoke(store, "get", "Tasks", "1")
        assert result.exit_code == 1
        assert "Error" in result.output
