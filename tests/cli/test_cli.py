"""Tests for the cronspine command line."""

import json
import os

import pytest
from typer.testing import CliRunner

from cronspine import __version__
from cronspine.cli.app import app

runner = CliRunner()


def parse_json(output: str):
    """JSON printed by a command, skipping any log lines written before it."""
    lines = output.splitlines()
    start = next(i for i, line in enumerate(lines) if line in ("[", "{", "[]"))
    return json.loads("\n".join(lines[start:]))


@pytest.fixture
def cli(tmp_path, monkeypatch):
    """Invoke the CLI against a fresh, initialised database."""
    for key in list(os.environ):
        if key.startswith("CRONSPINE_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("cronspine.cli.agent.setup_logging", lambda settings: None)
    database = str(tmp_path / "cli.db")

    def invoke(*args: str):
        return runner.invoke(app, [*args, "--database", database])

    result = invoke("db", "init")
    assert result.exit_code == 0, result.output
    return invoke


class TestTopLevel:
    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "cronspine" in result.output

    def test_help_lists_groups(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for group in ("db", "task", "schedule", "run"):
            assert group in result.output


class TestDb:
    def test_init_is_idempotent(self, cli):
        result = cli("db", "init")
        assert result.exit_code == 0
        assert "ready" in result.output

    def test_schema_version(self, cli):
        result = cli("db", "version")
        assert result.exit_code == 0
        assert "installed" in result.output


class TestSettings:
    def test_show_json(self, cli):
        result = cli("settings", "show", "--json")
        assert result.exit_code == 0
        rows = {row["setting"]: row for row in parse_json(result.output)}
        assert rows["max_threads"]["effective"] == 4
        assert rows["enabled"]["effective"] == 1

    def test_set(self, cli):
        result = cli("settings", "set", "max_threads", "8")
        assert result.exit_code == 0
        assert "max_threads = 8" in result.output

    def test_unknown_setting(self, cli):
        result = cli("settings", "set", "colour", "1")
        assert result.exit_code == 1
        assert "InvalidSettingError" in result.output


class TestTaskCommands:
    def test_add_and_list(self, cli):
        result = cli("task", "add", "heartbeat", "--handler", "noop", "--max-time", "60")
        assert result.exit_code == 0, result.output
        assert "heartbeat" in result.output

        listed = cli("task", "list", "--json")
        tasks = parse_json(listed.output)
        assert [t["name"] for t in tasks] == ["heartbeat"]
        assert tasks[0]["max_time"] == 60

    def test_bad_json_option(self, cli):
        result = cli("task", "add", "x", "--handler", "noop", "--returns", "[oops")
        assert result.exit_code == 1
        assert "--returns" in result.output

    def test_disable_then_delete(self, cli):
        cli("task", "add", "heartbeat", "--handler", "noop")
        assert "disabled" in cli("task", "disable", "heartbeat").output
        assert "unchanged" in cli("task", "disable", "heartbeat").output
        assert cli("task", "delete", "heartbeat").exit_code == 0
        assert cli("task", "delete", "heartbeat").exit_code == 1


class TestScheduleCommands:
    def test_add_list_delete(self, cli):
        cli("task", "add", "heartbeat", "--handler", "noop", "--min-frequency", "60")
        result = cli("schedule", "add", "heartbeat", "--frequency", "60", "--priority", "5")
        assert result.exit_code == 0, result.output
        assert "due" in result.output

        rows = parse_json(cli("schedule", "list", "--json").output)
        assert len(rows) == 1
        assert rows[0]["frequency"] == 60
        assert rows[0]["priority"] == 5

        assert cli("schedule", "delete", "heartbeat").exit_code == 0
        assert parse_json(cli("schedule", "list", "--json").output) == []

    def test_unknown_task(self, cli):
        result = cli("schedule", "add", "ghost", "--frequency", "60")
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_bad_arguments(self, cli):
        cli("task", "add", "heartbeat", "--handler", "noop")
        result = cli("schedule", "add", "heartbeat", "--arguments", "{nope")
        assert result.exit_code == 1


class TestAgentCommands:
    def test_run_completes(self, cli):
        cli("task", "add", "heartbeat", "--handler", "noop")
        cli("schedule", "add", "heartbeat")
        result = cli("run", "--items", "5")
        assert result.exit_code == 0, result.output
        assert "completed" in result.output
        assert "succeeded=1" in result.output

    def test_run_json(self, cli):
        result = cli("run", "--json")
        assert result.exit_code == 0, result.output
        summary = parse_json(result.output)
        assert summary["status"] == "completed"
        assert summary["processed"] == 0

    def test_run_disabled(self, cli):
        cli("settings", "set", "enabled", "0")
        result = cli("run")
        assert result.exit_code == 0
        assert "disabled" in result.output

    def test_run_bad_handler_module(self, cli):
        result = cli("run", "--handlers", "no_such_module_here")
        assert result.exit_code == 1
        assert "ConfigError" in result.output

    def test_unhang(self, cli):
        result = cli("unhang")
        assert result.exit_code == 0, result.output
        assert "recovered=0 purged=0" in result.output

    def test_log_json(self, cli):
        cli("task", "add", "heartbeat", "--handler", "noop")
        cli("schedule", "add", "heartbeat")
        result = cli("log", "--json", "--task", "heartbeat")
        assert result.exit_code == 0
        rows = parse_json(result.output)
        assert [row["type"] for row in rows] == ["InstanceAdd"]
        assert rows[0]["task"] == "heartbeat"

    def test_log_table(self, cli):
        cli("task", "add", "heartbeat", "--handler", "noop")
        result = cli("log")
        assert result.exit_code == 0
        assert "Event log" in result.output


def test_version_matches_package():
    assert __version__ == "1.0.0"
