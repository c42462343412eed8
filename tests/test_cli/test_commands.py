"""Tests for the figfix CLI."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from figfix.cli.main import cli

DESIGN = {
    "readOnly": False,
    "nodes": {
        "1:1": {"name": "Card", "layoutMode": "NONE"},
        "1:2": {"name": "Frame 3"},
    },
}

VIOLATIONS = {
    "violations": [
        {"id": "v1", "projectId": "proj-1", "nodeId": "1:1", "fixType": "ADD_AUTO_LAYOUT",
         "category": "AUTO_LAYOUT", "severity": "MAJOR",
         "snapshot": {"name": "Card", "layoutMode": "NONE"}},
        {"id": "v2", "projectId": "proj-1", "nodeId": "1:2", "ruleId": "NON_SEMANTIC_NAME",
         "severity": "MINOR", "snapshot": {"name": "Frame 3"}},
    ]
}


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    (tmp_path / "design.json").write_text(json.dumps(DESIGN))
    (tmp_path / "violations.json").write_text(json.dumps(VIOLATIONS))
    return tmp_path


@pytest.fixture
def run(workspace: Path):
    runner = CliRunner()

    def _run(*args: str, input: str | None = None):
        return runner.invoke(cli, ["--workspace", str(workspace), *args], input=input)

    return _run


def _nodes(workspace: Path) -> dict:
    return json.loads((workspace / "design.json").read_text())["nodes"]


def _history(run) -> list[dict]:
    result = run("history", "list", "proj-1", "--json")
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)["records"]


class TestPreviewCommand:
    def test_shows_items_and_score(self, run, workspace: Path):
        result = run("preview", "proj-1", "v1", "v2")

        assert result.exit_code == 0, result.output
        assert "v1" in result.output
        assert "ADD_AUTO_LAYOUT" in result.output
        assert "93" in result.output
        assert _nodes(workspace) == DESIGN["nodes"]

    def test_unknown_violation_exits_nonzero(self, run):
        result = run("preview", "proj-1", "nope")
        assert result.exit_code == 1
        assert "VALIDATION_ERROR" in result.output

    def test_requires_ids(self, run):
        result = run("preview", "proj-1")
        assert result.exit_code != 0


class TestExecuteCommand:
    def test_execute_with_yes(self, run, workspace: Path):
        result = run("execute", "proj-1", "v1", "v2", "--yes", "--actor", "alex")

        assert result.exit_code == 0, result.output
        assert "2 fixes applied" in result.output
        nodes = _nodes(workspace)
        assert nodes["1:1"]["layoutMode"] == "HORIZONTAL"
        assert nodes["1:2"]["name"] == "Section"

        records = _history(run)
        assert len(records) == 1
        assert records[0]["actorId"] == "alex"
        assert records[0]["fixedViolations"] == ["v1", "v2"]

    def test_declining_confirmation_changes_nothing(self, run, workspace: Path):
        result = run("execute", "proj-1", "v1", input="n\n")

        assert result.exit_code == 0, result.output
        assert "Cancelled" in result.output
        assert _nodes(workspace) == DESIGN["nodes"]
        assert _history(run) == []

    def test_confirming_applies(self, run, workspace: Path):
        result = run("execute", "proj-1", "v2", input="y\n")
        assert result.exit_code == 0, result.output
        assert _nodes(workspace)["1:2"]["name"] == "Section"

    def test_failed_batch_exits_nonzero(self, run, workspace: Path):
        doc = dict(DESIGN, readOnly=True)
        (workspace / "design.json").write_text(json.dumps(doc))

        result = run("execute", "proj-1", "v1", "--yes")

        assert result.exit_code == 1
        assert "PERMISSION_DENIED" in result.output


class TestRollbackCommand:
    def test_rollback_restores_design(self, run, workspace: Path):
        run("execute", "proj-1", "v1", "v2", "--yes")
        history_id = _history(run)[0]["id"]

        result = run("rollback", history_id)

        assert result.exit_code == 0, result.output
        assert "1 rolled back" in result.output
        assert _nodes(workspace) == DESIGN["nodes"]
        assert _history(run)[0]["status"] == "ROLLED_BACK"

    def test_second_rollback_fails(self, run):
        run("execute", "proj-1", "v1", "--yes")
        history_id = _history(run)[0]["id"]
        run("rollback", history_id)

        result = run("rollback", history_id)
        assert result.exit_code == 1
        assert "INVALID_STATE" in result.output

    def test_unknown_history_id(self, run):
        result = run("rollback", "nope")
        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output


class TestHistoryCommand:
    def test_empty_history(self, run):
        result = run("history", "list", "proj-1")
        assert result.exit_code == 0
        assert "No fix history yet" in result.output

    def test_table_output(self, run):
        run("execute", "proj-1", "v1", "--yes")
        result = run("history", "list", "proj-1")
        assert result.exit_code == 0, result.output
        assert "COMPLETED" in result.output

    def test_status_filter_and_pagination(self, run):
        run("execute", "proj-1", "v1", "--yes")
        run("execute", "proj-1", "v2", "--yes")

        result = run("history", "list", "proj-1", "--json", "--limit", "1", "--offset", "1")
        data = json.loads(result.stdout)
        assert data["total"] == 2
        assert len(data["records"]) == 1
        assert data["records"][0]["violationIds"] == ["v1"]

        result = run("history", "list", "proj-1", "--json", "--status", "rolled_back")
        assert json.loads(result.stdout)["total"] == 0

    def test_invalid_limit(self, run):
        result = run("history", "list", "proj-1", "--limit", "500")
        assert result.exit_code == 1
        assert "VALIDATION_ERROR" in result.output


class TestHistoryShowCommand:
    def test_show_json(self, run):
        run("execute", "proj-1", "v1", "v2", "--yes")
        history_id = _history(run)[0]["id"]

        result = run("history", "show", history_id, "--json")

        assert result.exit_code == 0, result.output
        record = json.loads(result.stdout)
        assert record["id"] == history_id
        assert record["status"] == "COMPLETED"
        assert [d["violationId"] for d in record["diffs"]] == ["v1", "v2"]
        assert record["diffs"][1]["before"] == {"name": "Frame 3"}

    def test_show_text(self, run):
        run("execute", "proj-1", "v1", "--yes")
        history_id = _history(run)[0]["id"]

        result = run("history", "show", history_id)

        assert result.exit_code == 0, result.output
        assert history_id in result.output
        assert "Changes" in result.output

    def test_show_unknown_id(self, run):
        result = run("history", "show", "nope")
        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output


class TestVersion:
    def test_version_flag(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "figfix" in result.output
