# src/cache/sqlite_store.py — v1
"""SQLite-based cache store (CACHE_BACKEND=sqlite, default).

Uses stdlib sqlite3, no external dependency. One table holds every
collection; insertion order is kept through an autoincrement sequence.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from mediaindex.cache.base_cache_store import BaseCacheStore, check_collection

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    collection TEXT NOT NULL,
    key TEXT NOT NULL,
    data TEXT NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (collection, key)
);
CREATE INDEX IF NOT EXISTS idx_collection ON records(collection);
"""


class SqliteCacheStore(BaseCacheStore):
    """SQLite-backed record collections."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        check_collection(collection)
        cursor = self._conn.execute(
            "SELECT data FROM records WHERE collection = ? AND key = ?",
            (collection, key),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            logger.warning("Failed to deserialize %s/%s: %s", collection, key, e)
            return None

    async def put(self, collection: str, key: str, record: dict[str, Any]) -> None:
        """Upsert, keeping the original insertion position of existing keys."""
        check_collection(collection)
        self._conn.execute(
            """INSERT INTO records (collection, key, data) VALUES (?, ?, ?)
               ON CONFLICT (collection, key)
               DO UPDATE SET data = excluded.data, updated_at = CURRENT_TIMESTAMP""",
            (collection, key, json.dumps(record)),
        )
        self._conn.commit()

    async def get_all(self, collection: str) -> list[dict[str, Any]]:
        check_collection(collection)
        cursor = self._conn.execute(
            "SELECT key, data FROM records WHERE collection = ? ORDER BY seq",
            (collection,),
        )
        records: list[dict[str, Any]] = []
        for key, data in cursor.fetchall():
            try:
                records.append(json.loads(data))
            except json.JSONDecodeError:
                logger.warning("Skipping corrupt record %s/%s", collection, key)
        return records

    async def delete(self, collection: str, key: str) -> None:
        check_collection(collection)
        self._conn.execute(
            "DELETE FROM records WHERE collection = ? AND key = ?", (collection, key)
        )
        self._conn.commit()

    async def clear(self, collection: str) -> None:
        check_collection(collection)
        self._conn.execute("DELETE FROM records WHERE collection = ?", (collection,))
        self._conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
