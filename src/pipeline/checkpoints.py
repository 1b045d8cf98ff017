# src/pipeline/checkpoints.py — v1
"""Checkpoint store: persist discovery, scanning and upload progress.

Each checkpoint is one remote document overwritten in place. A missing or
malformed checkpoint loads as a fresh default record so a corrupted blob
never blocks a run.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from pydantic import ValidationError

from mediaindex.core.errors import MalformedRecord
from mediaindex.core.models import (
    DiscoveryCheckpoint,
    ScanningCheckpoint,
    UploadCheckpoint,
    WireModel,
    now_ms,
)
from mediaindex.storage import layout
from mediaindex.storage.base_blob_store import BaseBlobStore

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=WireModel)


class CheckpointStore:
    """Load and save the three pipeline checkpoints for one content tree."""

    def __init__(
        self,
        store: BaseBlobStore,
        root: str,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._root = root
        self._clock = clock

    async def _load(self, kind: str, model: type[T]) -> T:
        path = layout.checkpoint_path(self._root, kind)
        try:
            data = await self._store.read_blob(path)
        except MalformedRecord as e:
            logger.warning("Ignoring malformed %s checkpoint: %s", kind, e.reason)
            return model()
        if data is None:
            return model()
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.warning(
                "Ignoring invalid %s checkpoint (%d errors)", kind, e.error_count()
            )
            return model()

    async def _save(self, kind: str, checkpoint: T) -> T:
        checkpoint = checkpoint.model_copy(update={"last_updated": self._clock()})
        await self._store.write_blob(
            layout.checkpoint_path(self._root, kind), checkpoint.to_wire()
        )
        return checkpoint

    async def load_discovery(self) -> DiscoveryCheckpoint:
        return await self._load("discovery", DiscoveryCheckpoint)

    async def save_discovery(self, checkpoint: DiscoveryCheckpoint) -> DiscoveryCheckpoint:
        return await self._save("discovery", checkpoint)

    async def load_scanning(self) -> ScanningCheckpoint:
        return await self._load("scanning", ScanningCheckpoint)

    async def save_scanning(self, checkpoint: ScanningCheckpoint) -> ScanningCheckpoint:
        """Persist scanning progress.

        Raises:
            ValueError: If a completed checkpoint breaks the page-count invariant.
        """
        if checkpoint.status == "completed" and not checkpoint.is_consistent:
            raise ValueError(
                "Completed scanning checkpoint must satisfy "
                f"scanned({checkpoint.scanned_pages}) + pending({checkpoint.pending_pages}) "
                f"+ failed({checkpoint.failed_pages}) == total({checkpoint.total_pages})"
            )
        return await self._save("scanning", checkpoint)

    async def load_upload(self) -> UploadCheckpoint:
        return await self._load("upload", UploadCheckpoint)

    async def save_upload(self, checkpoint: UploadCheckpoint) -> UploadCheckpoint:
        return await self._save("upload", checkpoint)
