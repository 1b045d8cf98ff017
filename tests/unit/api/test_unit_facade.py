# tests/unit/api/test_unit_facade.py — v1
"""Tests for api/facade.py — wiring from settings and the one-shot helpers."""

from __future__ import annotations

import json

import pytest

from mediaindex.api.facade import audit_log, build_orchestrator, run_scan, scan_status
from mediaindex.cache.sqlite_store import SqliteCacheStore
from mediaindex.core.errors import StorageConfigurationError
from mediaindex.pipeline.state import QueueState
from mediaindex.storage.local_store import LocalBlobStore

from tests.conftest import ORG, REPO


@pytest.fixture
def content(settings):
    """A two-page tree on disk under the local store root."""
    root = settings.store_local_root / ORG / REPO
    (root / "news").mkdir(parents=True)
    (root / "index.html").write_text('<img src="/media/home.png" alt="Home page">', encoding="utf-8")
    (root / "news" / "today.html").write_text(
        '<p>Breaking <img src="https://cdn.example.org/x.jpg"></p>', encoding="utf-8"
    )
    return root


class TestBuildOrchestrator:
    def test_backends_from_settings(self, settings):
        app = build_orchestrator(settings)
        assert isinstance(app.store, LocalBlobStore)
        assert isinstance(app.cache, SqliteCacheStore)
        assert app.orchestrator.state == QueueState.IDLE
        app.cache.close()

    def test_missing_repo_rejected(self, settings):
        with pytest.raises(StorageConfigurationError, match="CONTENT_REPO"):
            build_orchestrator(settings.model_copy(update={"content_repo": ""}))


class TestRunScan:
    @pytest.mark.asyncio
    async def test_scan_local_tree(self, settings, content):
        result = await run_scan(settings=settings)

        assert result.success, result.error
        assert result.scan["scanned"] == 2
        assert result.scan["total_media"] == 2
        media = json.loads((content / ".media" / "media.json").read_text(encoding="utf-8"))
        assert {m["src"]: m["isExternal"] for m in media} == {
            "/media/home.png": False,
            "https://cdn.example.org/x.jpg": True,
        }
        assert (content / ".media" / ".pages" / ".root.json").is_file()
        assert (content / ".media" / ".pages" / "news.json").is_file()

    @pytest.mark.asyncio
    async def test_status_and_audit(self, settings, content):
        first = await run_scan(settings=settings)

        status = await scan_status(settings)
        entries = await audit_log(settings, limit=5)

        assert status["running"] is False
        assert status["lock"] is None
        assert status["discovery"]["status"] == "completed"
        assert [e.session_id for e in entries] == [first.session_id]

    @pytest.mark.asyncio
    async def test_audit_empty(self, settings):
        assert await audit_log(settings) == []
