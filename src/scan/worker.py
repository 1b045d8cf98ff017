# src/scan/worker.py — v1
"""Isolated scan worker.

A worker owns its own store client (built from the ``init`` message) and
talks to the coordinator only through its two channels. Per-page failures are
reported as ``pageScanError`` and never stop the batch.
"""

from __future__ import annotations

import logging
from typing import Callable

from mediaindex.core.errors import MediaIndexError, PageScanFailure
from mediaindex.core.models import ScanTarget
from mediaindex.logging.context import set_page_context
from mediaindex.scan.extractor import ExtractionOptions, extract_media
from mediaindex.scan.messages import (
    Channel,
    Init,
    Initialized,
    BatchComplete,
    PageScanError,
    PageScanned,
    ProcessBatch,
    QueueProcessingStopped,
    RequestBatch,
    Shutdown,
    StartQueueProcessing,
    StopQueueProcessing,
    WorkerError,
)
from mediaindex.storage.base_blob_store import BaseBlobStore
from mediaindex.storage.store_factory import ApiConfig, create_store

logger = logging.getLogger(__name__)


class ScanWorker:
    """Pull batches of pages, fetch them and report extracted media."""

    def __init__(
        self,
        worker_id: str,
        inbox: Channel,
        outbox: Channel,
        store_factory: Callable[[ApiConfig], BaseBlobStore] = create_store,
    ) -> None:
        self.worker_id = worker_id
        self._inbox = inbox
        self._outbox = outbox
        self._store_factory = store_factory
        self._store: BaseBlobStore | None = None
        self._options = ExtractionOptions()
        self._batch_size = 0
        self._processed = 0

    async def run(self) -> None:
        """Message loop. Ends on ``shutdown`` or after reporting a fatal error."""
        try:
            while True:
                message = await self._inbox.get()
                if isinstance(message, Shutdown):
                    break
                await self._handle(message)
        except MediaIndexError as e:
            logger.error("Worker %s failed: %s", self.worker_id, e)
            await self._outbox.put(WorkerError(worker_id=self.worker_id, error=str(e)))
            await self._outbox.put(
                QueueProcessingStopped(
                    worker_id=self.worker_id, reason="error", processed_count=self._processed
                )
            )
        finally:
            if self._store is not None:
                await self._store.close()

    async def _handle(self, message: object) -> None:
        if isinstance(message, Init):
            config = message.api_config
            self._store = self._store_factory(config)
            self._options = ExtractionOptions(
                internal_domains=list(config.internal_domains), org=config.org, repo=config.repo,
            )
            await self._outbox.put(Initialized(worker_id=self.worker_id))
        elif isinstance(message, StartQueueProcessing):
            self._batch_size = message.batch_size
            self._processed = 0
            logger.info(
                "Worker %s starting queue for session %s (%d documents)",
                self.worker_id, message.session_id, message.documents_to_scan,
            )
            await self._request_batch()
        elif isinstance(message, ProcessBatch):
            await self._process_batch(message.pages)
            await self._request_batch()
        elif isinstance(message, StopQueueProcessing):
            await self._outbox.put(
                QueueProcessingStopped(
                    worker_id=self.worker_id,
                    reason=message.reason,
                    processed_count=self._processed,
                )
            )
        else:
            logger.warning("Worker %s ignoring unexpected message %r", self.worker_id, message)

    async def _request_batch(self) -> None:
        await self._outbox.put(RequestBatch(worker_id=self.worker_id, batch_size=self._batch_size))

    async def _process_batch(self, pages: list[ScanTarget]) -> None:
        total_media = 0
        for target in pages:
            total_media += await self._scan_page(target)
            self._processed += 1
        await self._outbox.put(
            BatchComplete(
                worker_id=self.worker_id, processed_count=len(pages), total_media=total_media
            )
        )

    async def _scan_page(self, target: ScanTarget) -> int:
        """Scan one page; returns the number of assets found (0 on failure)."""
        page = target.document.path
        set_page_context(page, self.worker_id)
        try:
            if self._store is None:
                raise PageScanFailure(page, "worker not initialized")
            html = await self._store.read_text(page)
            if html is None:
                raise PageScanFailure(page, "page not found")
            media = extract_media(html, page, self._options)
        except (MediaIndexError, ValueError) as e:
            logger.warning("Scan failed for %s: %s", page, e)
            await self._outbox.put(
                PageScanError(
                    worker_id=self.worker_id,
                    page=page,
                    source_file=target.source_file,
                    error=str(e),
                )
            )
            return 0
        finally:
            set_page_context(None)

        await self._outbox.put(
            PageScanned(
                worker_id=self.worker_id,
                page=page,
                source_file=target.source_file,
                media_count=len(media),
                media=media,
                last_modified=target.document.last_modified,
            )
        )
        return len(media)
