# src/storage/base_blob_store.py — v1
"""Abstract remote store interface: a key-path JSON blob store."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any

from mediaindex.core.errors import MalformedRecord
from mediaindex.core.models import FileEntry


class BaseBlobStore(ABC):
    """Unified interface for remote content storage backends."""

    @abstractmethod
    async def list(self, path: str) -> list[FileEntry]:
        """List direct children of a folder. Missing folders list as empty."""

    @abstractmethod
    async def read_text(self, path: str) -> str | None:
        """Read a blob as text, or None when it does not exist."""

    @abstractmethod
    async def write_blob(self, path: str, data: Any) -> None:
        """Write a JSON-serializable value, replacing any existing blob."""

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Delete a blob. Deleting a missing blob is not an error."""

    async def read_blob(self, path: str) -> Any | None:
        """Read and parse a JSON blob, or None when it does not exist.

        Raises:
            MalformedRecord: If the blob exists but is not valid JSON.
        """
        raw = await self.read_text(path)
        if raw is None:
            return None
        return decode_json(path, raw)

    async def close(self) -> None:
        """Release network resources. No-op for local backends."""


def encode_json(data: Any) -> str:
    """Canonical JSON encoding used for every blob write."""
    return json.dumps(data, indent=2, ensure_ascii=False)


def decode_json(path: str, raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedRecord(path, str(e)) from e
