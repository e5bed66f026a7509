"""CLI tests through typer's CliRunner.

Every command runs against a temp vault; no network is touched because the
commands exercised here never reach the research pipeline.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest
from typer.testing import CliRunner

from forage import __version__
from forage.main import app, main

runner = CliRunner()


def _invoke(vault: Path, *args: str):
    return runner.invoke(app, ["--vault-dir", str(vault), "--log-level", "error", *args])


class TestBasicCommands:
    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert "forage" in result.output.lower()

    def test_init(self, vault: Path):
        result = _invoke(vault, "init")
        assert result.exit_code == 0, result.stdout
        assert (vault / ".forage" / "state.json").exists()
        assert (vault / "Inbox" / "Findings").is_dir()

    def test_init_json(self, vault: Path):
        result = _invoke(vault, "--json", "init")
        data = json.loads(result.stdout)
        assert data["state_file"].endswith("state.json")
        assert len(data["created"]) == 3


class TestStatusAndReplay:
    def test_status_json_on_empty_workspace(self, vault: Path):
        result = _invoke(vault, "--json", "status")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["total"] == 0
        assert data["done"] == 0
        assert data["lock_pid"] is None

    def test_status_table(self, vault: Path):
        result = _invoke(vault, "status")
        assert result.exit_code == 0
        assert "Forage status" in result.stdout

    def test_replay_no_match(self, vault: Path):
        result = _invoke(vault, "--json", "replay", "letta", "code")
        assert json.loads(result.stdout) == {"match": None}

    def test_purge_json(self, vault: Path):
        (vault / "Ideas.md").write_text("nothing", encoding="utf-8")
        result = _invoke(vault, "--json", "purge")
        assert json.loads(result.stdout) == {"removed": 0, "kept": 0}


class TestRun:
    def test_dry_run_json(self, vault: Path):
        (vault / "Ideas.md").write_text("#investigate vector database comparison", encoding="utf-8")
        result = _invoke(vault, "--json", "run", "--dry-run")
        assert result.exit_code == 0, result.stdout
        data = json.loads(result.stdout)
        assert data["total"] == 1
        assert data["skips"][0]["reason"] == "dry_run"
        assert not (vault / ".forage" / "state.json").exists()

    def test_invalid_since(self, vault: Path):
        result = _invoke(vault, "run", "--since", "soon")
        assert result.exit_code != 0
        assert "Invalid --since" in str(result.exception)

    def test_missing_vault(self, tmp_path: Path):
        result = _invoke(tmp_path / "absent", "run")
        assert result.exit_code != 0
        assert "Missing vault directory" in str(result.exception)


class TestLoopStop:
    def test_stop_without_daemon(self, vault: Path):
        result = _invoke(vault, "--json", "loop", "--stop")
        assert result.exit_code == 0
        assert json.loads(result.stdout) == {"outcome": "not_running", "pid": None}


def test_main_exits_1_on_error(tmp_path: Path, monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["forage", "--vault-dir", str(tmp_path / "absent"), "--log-level", "error", "run"])
    with pytest.raises(SystemExit) as exc_info:
        main()
    assert exc_info.value.code == 1
    assert "Missing vault directory" in capsys.readouterr().err
