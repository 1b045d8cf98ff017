# src/pipeline/uploads.py — v1
"""Batch upload processor and the media-index uploader.

Media found while scanning is queued per session in the local cache. Once the
queue holds a full batch (or scanning ends), it is sliced into fixed-size
batches that upload concurrently; each batch retries on its own and a failed
batch never affects its siblings.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Protocol

from pydantic import TypeAdapter, ValidationError

from mediaindex.cache.base_cache_store import (
    MEDIA,
    PROCESSING_QUEUE,
    UPLOAD_BATCHES,
    UPLOAD_HISTORY,
    BaseCacheStore,
)
from mediaindex.core.errors import BatchUploadFailure, MalformedRecord, RetryExhausted
from mediaindex.core.media import drop_pages, merge_media
from mediaindex.core.models import MediaAsset, UploadBatch, now_ms
from mediaindex.core.retry import RetryPolicy
from mediaindex.storage import layout
from mediaindex.storage.base_blob_store import BaseBlobStore

logger = logging.getLogger(__name__)

_assets_adapter = TypeAdapter(list[MediaAsset])


class MediaUploader(Protocol):
    async def upload(self, batch: UploadBatch) -> None: ...

    async def prune_pages(self, pages: set[str]) -> int: ...


class MediaIndexUploader:
    """Fold upload batches into the remote media index (``.media/media.json``).

    Read-modify-write of the index is serialized; concurrent batches queue on
    the lock while their retries and delays stay independent.
    """

    def __init__(self, store: BaseBlobStore, cache: BaseCacheStore, root: str) -> None:
        self._store = store
        self._cache = cache
        self._root = root
        self._lock = asyncio.Lock()

    async def load_index(self) -> list[MediaAsset]:
        path = layout.media_index_path(self._root)
        try:
            data = await self._store.read_blob(path)
            return _assets_adapter.validate_python(data) if data is not None else []
        except (MalformedRecord, ValidationError) as e:
            logger.warning("Media index unreadable, starting empty: %s", e)
            return []

    async def _save_index(self, assets: list[MediaAsset]) -> None:
        await self._store.write_blob(
            layout.media_index_path(self._root), [a.to_wire() for a in assets]
        )
        await self._cache.put_many(MEDIA, {a.id: a.to_wire() for a in assets})

    async def upload(self, batch: UploadBatch) -> None:
        async with self._lock:
            merged = merge_media(await self.load_index(), batch.media)
            await self._save_index(merged)
        logger.debug("Batch %s merged %d assets into index", batch.id, len(batch.media))

    async def prune_pages(self, pages: set[str]) -> int:
        """Drop references to ``pages`` from the index. Returns assets removed."""
        if not pages:
            return 0
        async with self._lock:
            current = await self.load_index()
            kept = drop_pages(current, pages)
            removed = len(current) - len(kept)
            if kept != current:
                await self._store.write_blob(
                    layout.media_index_path(self._root), [a.to_wire() for a in kept]
                )
                kept_ids = {a.id for a in kept}
                for asset in current:
                    if asset.id not in kept_ids:
                        await self._cache.delete(MEDIA, asset.id)
        if removed:
            logger.info("Pruned %d media assets no longer referenced by any page", removed)
        return removed


@dataclass
class UploadResult:
    """Counts for one or more flushes. ``processed_batches`` counts successful batches only."""

    success: bool = True
    total_batches: int = 0
    processed_batches: int = 0
    uploaded_batches: int = 0
    failed_batches: int = 0
    total_media: int = 0

    def merge(self, other: UploadResult) -> UploadResult:
        return UploadResult(
            success=self.success and other.success,
            total_batches=self.total_batches + other.total_batches,
            processed_batches=self.processed_batches + other.processed_batches,
            uploaded_batches=self.uploaded_batches + other.uploaded_batches,
            failed_batches=self.failed_batches + other.failed_batches,
            total_media=self.total_media + other.total_media,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class BatchUploadProcessor:
    """Queue media per session and upload it in fixed-size batches."""

    def __init__(
        self,
        cache: BaseCacheStore,
        uploader: MediaUploader,
        batch_size: int = 50,
        upload_delay_s: float = 1.0,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._cache = cache
        self._uploader = uploader
        self._batch_size = batch_size
        self._upload_delay_s = upload_delay_s
        self._retry = retry_policy or RetryPolicy(max_attempts=3, base_delay_s=1.0)
        self._clock = clock
        self._batch_numbers: dict[str, int] = {}

    @property
    def batch_size(self) -> int:
        return self._batch_size

    # --- Queue ---

    async def queue_media(self, session_id: str, media: list[MediaAsset]) -> int:
        """Append media to the session queue. Returns the queue length.

        Re-queuing the same asset for the same page replaces the earlier entry.
        """
        await self._cache.put_many(
            PROCESSING_QUEUE,
            {
                f"{session_id}:{asset.id}:{'|'.join(asset.used_in)}": {
                    "sessionId": session_id,
                    "media": asset.to_wire(),
                }
                for asset in media
            },
        )
        return len(await self._queued_records(session_id))

    async def _queued_records(self, session_id: str) -> list[dict[str, Any]]:
        return [
            r for r in await self._cache.get_all(PROCESSING_QUEUE)
            if r.get("sessionId") == session_id
        ]

    async def queued_media(self, session_id: str) -> list[MediaAsset]:
        return [MediaAsset.model_validate(r["media"]) for r in await self._queued_records(session_id)]

    async def has_full_batch(self, session_id: str) -> bool:
        return len(await self._queued_records(session_id)) >= self._batch_size

    async def forget_pages(self, pages: set[str]) -> int:
        """Drop index references of ``pages`` ahead of a rescan.

        Their fresh media is merged back as batches upload, so references a
        page no longer makes do not survive the rescan.
        """
        return await self._uploader.prune_pages(pages)

    # --- Batching ---

    async def _next_batch_number(self, session_id: str) -> int:
        if session_id not in self._batch_numbers:
            self._batch_numbers[session_id] = sum(
                1 for r in await self._cache.get_all(UPLOAD_BATCHES)
                if r.get("sessionId") == session_id
            )
        self._batch_numbers[session_id] += 1
        return self._batch_numbers[session_id]

    async def slice_batches(self, session_id: str, media: list[MediaAsset]) -> list[UploadBatch]:
        batches: list[UploadBatch] = []
        for start in range(0, len(media), self._batch_size):
            number = await self._next_batch_number(session_id)
            batches.append(
                UploadBatch(
                    id=f"{session_id}-batch-{number}",
                    session_id=session_id,
                    batch_number=number,
                    media=media[start:start + self._batch_size],
                )
            )
        return batches

    async def flush(self, session_id: str, final: bool = False) -> UploadResult:
        """Upload queued media.

        Without ``final`` only whole batches leave the queue; with it the
        remainder goes too.
        """
        records = await self._queued_records(session_id)
        take = len(records) if final else (len(records) // self._batch_size) * self._batch_size
        if take == 0:
            return UploadResult()
        taken = records[:take]
        media = [MediaAsset.model_validate(r["media"]) for r in taken]
        for record in taken:
            asset = record["media"]
            await self._cache.delete(
                PROCESSING_QUEUE,
                f"{session_id}:{asset['id']}:{'|'.join(asset.get('usedIn', []))}",
            )
        batches = await self.slice_batches(session_id, media)
        return await self.process_and_upload_batches(batches)

    # --- Upload ---

    async def _save_batch(self, batch: UploadBatch) -> None:
        await self._cache.put(UPLOAD_BATCHES, batch.id, batch.to_wire())

    async def _attempt(self, batch: UploadBatch) -> None:
        batch.attempts += 1
        batch.last_attempt = self._clock()
        await self._save_batch(batch)
        await self._uploader.upload(batch)

    async def _process_one(self, batch: UploadBatch, is_last: bool) -> bool:
        try:
            await self._retry.run(
                self._attempt, batch, operation=f"upload batch {batch.batch_number}", retry_all=True,
            )
        except RetryExhausted as e:
            failure = BatchUploadFailure(batch.id, e.attempts, e.last_error)
            logger.warning("%s", failure)
            batch.status = "failed"
            batch.error = str(e.last_error)
            await self._save_batch(batch)
            return False
        else:
            batch.status = "completed"
            batch.error = None
            await self._save_batch(batch)
            await self._cache.put(
                UPLOAD_HISTORY,
                batch.id,
                {
                    "batchId": batch.id,
                    "sessionId": batch.session_id,
                    "batchNumber": batch.batch_number,
                    "mediaCount": len(batch.media),
                    "uploadedAt": self._clock(),
                },
            )
            return True
        finally:
            if not is_last and self._upload_delay_s > 0:
                await asyncio.sleep(self._upload_delay_s)

    async def process_and_upload_batches(self, batches: list[UploadBatch]) -> UploadResult:
        """Upload batches concurrently; each waits the inter-batch delay after its upload."""
        if not batches:
            return UploadResult()
        for batch in batches:
            await self._save_batch(batch)

        outcomes = await asyncio.gather(
            *(self._process_one(b, i == len(batches) - 1) for i, b in enumerate(batches))
        )
        uploaded = sum(1 for ok in outcomes if ok)
        result = UploadResult(
            success=uploaded == len(batches),
            total_batches=len(batches),
            processed_batches=uploaded,
            uploaded_batches=uploaded,
            failed_batches=len(batches) - uploaded,
            total_media=sum(len(b.media) for b in batches),
        )
        logger.info(
            "Uploaded %d/%d batches (%d media, %d failed)",
            result.uploaded_batches, result.total_batches, result.total_media, result.failed_batches,
        )
        return result
