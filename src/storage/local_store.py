# src/storage/local_store.py — v1
"""Local filesystem blob store (STORE_BACKEND=local).

Mirrors the remote key-path layout under a root directory so a content tree
checked out on disk can be scanned offline.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from mediaindex.core.models import FileEntry
from mediaindex.storage.base_blob_store import BaseBlobStore, encode_json

logger = logging.getLogger(__name__)


class LocalBlobStore(BaseBlobStore):
    """Read and write blobs as files below ``root``."""

    def __init__(self, root: str | Path) -> None:
        """Initialize with the directory that stands for ``/``.

        Args:
            root: Directory mapped to the store's root path.
        """
        self._root = Path(root).expanduser()

    def _resolve(self, path: str) -> Path:
        """Resolve a store path below the root, refusing traversal."""
        resolved = (self._root / path.lstrip("/")).resolve()
        if resolved != self._root.resolve() and self._root.resolve() not in resolved.parents:
            raise ValueError(f"Path escapes store root: {path!r}")
        return resolved

    async def list(self, path: str) -> list[FileEntry]:
        folder = self._resolve(path)
        if not folder.is_dir():
            return []
        base = "/" + path.strip("/") if path.strip("/") else ""
        entries: list[FileEntry] = []
        for child in sorted(folder.iterdir()):
            mtime = int(child.stat().st_mtime * 1000)
            if child.is_dir():
                entries.append(
                    FileEntry(name=child.name, path=f"{base}/{child.name}", last_modified=mtime)
                )
            else:
                entries.append(
                    FileEntry(
                        name=child.stem,
                        path=f"{base}/{child.name}",
                        ext=child.suffix.lstrip(".") or None,
                        last_modified=mtime,
                    )
                )
        return entries

    async def read_text(self, path: str) -> str | None:
        p = self._resolve(path)
        if not p.is_file():
            return None
        return p.read_text(encoding="utf-8")

    async def write_blob(self, path: str, data: Any) -> None:
        p = self._resolve(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(encode_json(data), encoding="utf-8")

    async def delete(self, path: str) -> None:
        p = self._resolve(path)
        if p.is_file():
            p.unlink()
