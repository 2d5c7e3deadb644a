"""Tests for the CLI entry point."""

import subprocess
import sys
from pathlib import Path

CLI_PATH = Path(__file__).resolve().parents[1] / "cli" / "main.py"


def _run(*args, cwd=None):
    return subprocess.run(
        [sys.executable, str(CLI_PATH), *args], cwd=cwd, capture_output=True, text=True
    )


def test_llmwatch_command_available():
    result = _run("--help")
    assert result.returncode == 0
    assert "llmwatch - LLM endpoint health monitor" in result.stdout


def test_help_shows_all_commands():
    result = _run("--help")
    assert result.returncode == 0
    for command in ["init", "run", "schedule", "dashboard", "status", "runs", "config", "delete-run"]:
        assert command in result.stdout


def test_init_writes_config(tmp_path):
    result = _run("init", cwd=str(tmp_path))
    assert result.returncode == 0
    assert (tmp_path / "llmwatch.yaml").exists()
    assert (tmp_path / ".env").exists()


def test_missing_explicit_config_exit_code_2(tmp_path):
    result = _run("--config", "missing.yaml", "status", cwd=str(tmp_path))
    assert result.returncode == 2
    assert "Config file not found" in result.stderr


def test_status_and_config_on_empty_store(tmp_path):
    db_path = tmp_path / "cli.duckdb"
    (tmp_path / "llmwatch.yaml").write_text(f"database_path: {db_path}\n")

    status = _run("status", cwd=str(tmp_path))
    assert status.returncode == 0
    assert "No runs recorded yet" in status.stdout

    bad = _run("config", "set", "max_tokens", "lots", cwd=str(tmp_path))
    assert bad.returncode == 2

    ok = _run("config", "set", "max_tokens", "900", cwd=str(tmp_path))
    assert ok.returncode == 0
    shown = _run("config", "get", cwd=str(tmp_path))
    assert "900" in shown.stdout
