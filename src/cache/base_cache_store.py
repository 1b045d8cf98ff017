# src/cache/base_cache_store.py — v1
"""Abstract local cache interface: keyed record collections.

The local cache survives process restarts and is authoritative for
per-page scan status while a session is active.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

# Collections used by the pipeline.
MEDIA = "media"
SCAN_STATUS = "scan_status"
SESSIONS = "sessions"
PROCESSING_QUEUE = "processing_queue"
UPLOAD_BATCHES = "upload_batches"
UPLOAD_HISTORY = "upload_history"

COLLECTIONS = (MEDIA, SCAN_STATUS, SESSIONS, PROCESSING_QUEUE, UPLOAD_BATCHES, UPLOAD_HISTORY)


class BaseCacheStore(ABC):
    """Unified interface for local cache backends.

    Records are JSON-serializable dicts. Keys are unique per collection.
    """

    @abstractmethod
    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        """Retrieve one record, or None."""

    @abstractmethod
    async def put(self, collection: str, key: str, record: dict[str, Any]) -> None:
        """Store a record (upsert)."""

    @abstractmethod
    async def get_all(self, collection: str) -> list[dict[str, Any]]:
        """All records of a collection, in insertion order."""

    @abstractmethod
    async def delete(self, collection: str, key: str) -> None:
        """Remove one record. Missing keys are ignored."""

    @abstractmethod
    async def clear(self, collection: str) -> None:
        """Remove every record of a collection."""

    async def put_many(self, collection: str, records: dict[str, dict[str, Any]]) -> None:
        for key, record in records.items():
            await self.put(collection, key, record)

    def close(self) -> None:
        """Release backend resources."""


def check_collection(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise ValueError(f"Unknown cache collection: {collection!r}")
