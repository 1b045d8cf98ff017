# src/pipeline/scan_status.py — v1
"""Local per-page scan status, authoritative while a session is active.

Records hold absolute values (attempt counts, timestamps), so applying one
twice to a document gives the same result.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from mediaindex.cache.base_cache_store import SCAN_STATUS, BaseCacheStore
from mediaindex.core.models import Document, ScanTarget, now_ms
from mediaindex.scan.messages import PageScanError, PageScanned

logger = logging.getLogger(__name__)


class ScanStatusTracker:
    """Write scan results into the ``scan_status`` cache collection."""

    def __init__(self, cache: BaseCacheStore, clock: Callable[[], int] = now_ms) -> None:
        self._cache = cache
        self._clock = clock
        self._attempts: dict[str, int] = {}

    async def mark_running(self, session_id: str, targets: list[ScanTarget]) -> None:
        records: dict[str, dict[str, Any]] = {}
        for target in targets:
            doc = target.document
            self._attempts[doc.path] = doc.scan_attempts
            previous = await self._cache.get(SCAN_STATUS, doc.path) or {}
            records[doc.path] = {
                **previous,
                "path": doc.path,
                "sourceFile": target.source_file,
                "sessionId": session_id,
                "scanStatus": "running",
                "scanAttempts": previous.get("scanAttempts", doc.scan_attempts),
            }
        await self._cache.put_many(SCAN_STATUS, records)

    async def record_success(self, session_id: str, message: PageScanned) -> None:
        await self._cache.put(
            SCAN_STATUS,
            message.page,
            {
                "path": message.page,
                "sourceFile": message.source_file,
                "sessionId": session_id,
                "scanStatus": "completed",
                "mediaCount": message.media_count,
                "scanAttempts": self._attempts.get(message.page, 0),
                "lastScannedAt": self._clock(),
            },
        )

    async def record_failure(self, session_id: str, message: PageScanError) -> None:
        attempts = self._attempts.get(message.page, 0) + 1
        await self._cache.put(
            SCAN_STATUS,
            message.page,
            {
                "path": message.page,
                "sourceFile": message.source_file,
                "sessionId": session_id,
                "scanStatus": "failed",
                "scanAttempts": attempts,
                "error": message.error,
            },
        )

    async def records(self) -> dict[str, dict[str, Any]]:
        return {r["path"]: r for r in await self._cache.get_all(SCAN_STATUS) if "path" in r}

    async def running_count(self) -> int:
        return sum(1 for r in (await self.records()).values() if r.get("scanStatus") == "running")

    async def clear(self, paths: set[str] | None = None) -> None:
        if paths is None:
            await self._cache.clear(SCAN_STATUS)
            self._attempts.clear()
            return
        for path in paths:
            await self._cache.delete(SCAN_STATUS, path)


def apply_record(document: Document, record: dict[str, Any], finalize_running: bool = True) -> Document:
    """Overlay a scan-status record onto a discovery record."""
    status = record.get("scanStatus")
    if status == "completed":
        return document.model_copy(
            update={
                "scan_status": "completed",
                "scan_complete": True,
                "needs_rescan": False,
                "media_count": record.get("mediaCount", 0),
                "scan_attempts": record.get("scanAttempts", document.scan_attempts),
                "last_scanned_at": record.get("lastScannedAt", document.last_scanned_at),
                "entry_status": "completed",
            }
        )
    if status == "failed":
        error = record.get("error", "unknown error")
        errors = document.scan_errors if error in document.scan_errors else [*document.scan_errors, error]
        return document.model_copy(
            update={
                "scan_status": "failed",
                "scan_complete": False,
                "needs_rescan": True,
                "scan_attempts": max(record.get("scanAttempts", 0), document.scan_attempts),
                "scan_errors": errors,
                "entry_status": "failed",
            }
        )
    if status == "running":
        if finalize_running:
            return document.model_copy(update={"scan_status": "pending", "needs_rescan": True})
        return document.model_copy(update={"scan_status": "running"})
    logger.debug("Ignoring scan status %r for %s", status, document.path)
    return document
