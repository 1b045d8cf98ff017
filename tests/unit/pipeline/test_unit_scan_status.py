# tests/unit/pipeline/test_unit_scan_status.py — v1
"""Tests for pipeline/scan_status.py — local scan status and record overlay."""

from __future__ import annotations

import pytest

from mediaindex.core.models import Document, ScanTarget
from mediaindex.pipeline.scan_status import ScanStatusTracker, apply_record
from mediaindex.scan.messages import PageScanError, PageScanned

from tests.conftest import T0


def _target(path: str, attempts: int = 0) -> ScanTarget:
    return ScanTarget(document=Document(path=path, scan_attempts=attempts), source_file="root.json", reason="new")


@pytest.fixture
def tracker(cache, clock):
    return ScanStatusTracker(cache, clock=clock)


class TestScanStatusTracker:
    @pytest.mark.asyncio
    async def test_lifecycle(self, tracker):
        await tracker.mark_running("s1", [_target("/a"), _target("/b", attempts=2)])
        assert await tracker.running_count() == 2

        await tracker.record_success("s1", PageScanned(worker_id="w", page="/a", source_file="root.json", media_count=4))
        await tracker.record_failure("s1", PageScanError(worker_id="w", page="/b", source_file="root.json", error="boom"))

        records = await tracker.records()
        assert records["/a"]["scanStatus"] == "completed"
        assert records["/a"]["mediaCount"] == 4
        assert records["/a"]["lastScannedAt"] == T0
        assert records["/b"]["scanStatus"] == "failed"
        assert records["/b"]["scanAttempts"] == 3
        assert await tracker.running_count() == 0

    @pytest.mark.asyncio
    async def test_clear(self, tracker):
        await tracker.mark_running("s1", [_target("/a"), _target("/b")])
        await tracker.clear({"/a"})
        assert list(await tracker.records()) == ["/b"]
        await tracker.clear()
        assert await tracker.records() == {}


class TestApplyRecord:
    def test_completed(self):
        doc = apply_record(
            Document(path="/a", scan_status="running", needs_rescan=True),
            {"scanStatus": "completed", "mediaCount": 2, "lastScannedAt": T0, "scanAttempts": 1},
        )
        assert doc.scan_status == "completed"
        assert doc.scan_complete and not doc.needs_rescan
        assert (doc.media_count, doc.last_scanned_at, doc.entry_status) == (2, T0, "completed")

    def test_failed_is_idempotent(self):
        record = {"scanStatus": "failed", "scanAttempts": 2, "error": "timeout"}
        once = apply_record(Document(path="/a", scan_attempts=1), record)
        twice = apply_record(once, record)
        assert once == twice
        assert once.scan_errors == ["timeout"]
        assert once.scan_attempts == 2

    def test_running_becomes_pending_when_finalized(self):
        doc = Document(path="/a", scan_status="completed")
        assert apply_record(doc, {"scanStatus": "running"}).scan_status == "pending"
        assert apply_record(doc, {"scanStatus": "running"}, finalize_running=False).scan_status == "running"

    def test_unknown_status_ignored(self):
        doc = Document(path="/a")
        assert apply_record(doc, {"scanStatus": "weird"}) is doc
