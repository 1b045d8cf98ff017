# src/cache/json_store.py — v1
"""JSON file-based cache store (CACHE_BACKEND=json).

One JSON file per collection under CACHE_ROOT, rewritten on every change.
Suited to small trees and to inspecting state by hand.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from mediaindex.cache.base_cache_store import BaseCacheStore, check_collection

logger = logging.getLogger(__name__)


class JsonCacheStore(BaseCacheStore):
    """File-based record collections."""

    def __init__(self, cache_root: Path | str) -> None:
        self._root = Path(cache_root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)

    def _collection_path(self, collection: str) -> Path:
        check_collection(collection)
        return self._root / f"{collection}.json"

    def _load(self, collection: str) -> dict[str, dict[str, Any]]:
        path = self._collection_path(collection)
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.warning("Corrupt cache collection %s, starting empty: %s", collection, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, collection: str, records: dict[str, dict[str, Any]]) -> None:
        path = self._collection_path(collection)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(records, indent=2), encoding="utf-8")
        tmp.replace(path)

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        return self._load(collection).get(key)

    async def put(self, collection: str, key: str, record: dict[str, Any]) -> None:
        records = self._load(collection)
        records[key] = record
        self._save(collection, records)

    async def put_many(self, collection: str, records: dict[str, dict[str, Any]]) -> None:
        current = self._load(collection)
        current.update(records)
        self._save(collection, current)

    async def get_all(self, collection: str) -> list[dict[str, Any]]:
        return list(self._load(collection).values())

    async def delete(self, collection: str, key: str) -> None:
        records = self._load(collection)
        if records.pop(key, None) is not None:
            self._save(collection, records)

    async def clear(self, collection: str) -> None:
        path = self._collection_path(collection)
        if path.exists():
            path.unlink()
