# tests/unit/test_main.py — v1
"""Tests for main.py — CLI entry point."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest

from mediaindex.main import EXIT_FAILED, EXIT_LOCKED, EXIT_OK, _build_parser, main
from mediaindex.pipeline.state import QueueState, ScanRunResult


@pytest.fixture
def env(monkeypatch, tmp_path):
    """Point the CLI at a local tree in a temp dir, without a .env file."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CONTENT_ORG", "acme")
    monkeypatch.setenv("CONTENT_REPO", "site")
    monkeypatch.setenv("STORE_BACKEND", "local")
    monkeypatch.setenv("STORE_LOCAL_ROOT", str(tmp_path / "content"))
    monkeypatch.setenv("CACHE_ROOT", str(tmp_path / "cache"))
    monkeypatch.setenv("UPLOAD_DELAY_S", "0")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    root = tmp_path / "content" / "acme" / "site"
    root.mkdir(parents=True)
    (root / "index.html").write_text('<img src="/media/a.png">', encoding="utf-8")
    return tmp_path


@pytest.fixture(autouse=True)
def _restore_logging():
    import logging

    yield
    root = logging.getLogger("mediaindex")
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()
    root.propagate = True
    root.setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# Parser tests
# ---------------------------------------------------------------------------

class TestBuildParser:
    def test_version_flag(self):
        with pytest.raises(SystemExit) as exc_info:
            _build_parser().parse_args(["--version"])
        assert exc_info.value.code == 0

    def test_scan_flags(self):
        args = _build_parser().parse_args(["scan", "--force", "--incremental", "--user", "bob", "--json"])
        assert args.command == "scan"
        assert args.force and args.incremental and args.json
        assert args.user == "bob"

    def test_scan_defaults(self):
        args = _build_parser().parse_args(["scan"])
        assert not args.force
        assert not args.incremental
        assert args.user is None

    def test_audit_limit(self):
        assert _build_parser().parse_args(["audit", "--limit", "3"]).limit == 3


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

class TestMain:
    def test_no_command_prints_help(self, capsys):
        assert main([]) == EXIT_FAILED
        assert "usage" in capsys.readouterr().out

    def test_invalid_configuration(self, env, monkeypatch, capsys):
        monkeypatch.setenv("SCAN_BATCH_SIZE", "0")
        assert main(["status"]) == EXIT_FAILED
        assert "Invalid configuration" in capsys.readouterr().err

    def test_scan_then_status_and_audit(self, env, capsys):
        assert main(["scan", "--json"]) == EXIT_OK
        result = json.loads(capsys.readouterr().out)
        assert result["state"] == "completed"
        assert result["scan"]["scanned"] == 1

        assert main(["status"]) == EXIT_OK
        assert json.loads(capsys.readouterr().out)["discovery"]["status"] == "completed"

        assert main(["audit"]) == EXIT_OK
        assert result["session_id"] in capsys.readouterr().out

    def test_lock_conflict_exit_code(self, env):
        locked = ScanRunResult(success=False, state=QueueState.IDLE, lock_conflict=True, error="held")
        with patch("mediaindex.pipeline.orchestrator.QueueOrchestrator.start", AsyncMock(return_value=locked)):
            assert main(["scan"]) == EXIT_LOCKED

    def test_failed_scan_exit_code(self, env, capsys):
        failed = ScanRunResult(success=False, state=QueueState.FAILED, error="Discovery failed: boom")
        with patch("mediaindex.pipeline.orchestrator.QueueOrchestrator.start", AsyncMock(return_value=failed)):
            assert main(["scan"]) == EXIT_FAILED
        assert "Discovery failed: boom" in capsys.readouterr().out
