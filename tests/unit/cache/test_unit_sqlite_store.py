# tests/unit/cache/test_unit_sqlite_store.py — v1
"""Tests for cache/sqlite_store.py and cache/json_store.py — same contract, both backends."""

from __future__ import annotations

import pytest

from mediaindex.cache.base_cache_store import MEDIA, SCAN_STATUS
from mediaindex.cache.json_store import JsonCacheStore
from mediaindex.cache.sqlite_store import SqliteCacheStore


@pytest.fixture(params=["sqlite", "json"])
def store(request, tmp_path):
    if request.param == "sqlite":
        backend = SqliteCacheStore(db_path=tmp_path / "test_cache.db")
    else:
        backend = JsonCacheStore(cache_root=tmp_path / "json_cache")
    yield backend
    backend.close()


class TestCacheStore:
    @pytest.mark.asyncio
    async def test_put_and_get(self, store):
        await store.put(MEDIA, "m1", {"id": "m1", "src": "/a.png"})
        assert await store.get(MEDIA, "m1") == {"id": "m1", "src": "/a.png"}

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get(MEDIA, "nonexistent") is None

    @pytest.mark.asyncio
    async def test_upsert_keeps_position(self, store):
        await store.put(SCAN_STATUS, "/a", {"path": "/a", "v": 1})
        await store.put(SCAN_STATUS, "/b", {"path": "/b", "v": 1})
        await store.put(SCAN_STATUS, "/a", {"path": "/a", "v": 2})
        records = await store.get_all(SCAN_STATUS)
        assert [r["path"] for r in records] == ["/a", "/b"]
        assert records[0]["v"] == 2

    @pytest.mark.asyncio
    async def test_put_many_and_clear(self, store):
        await store.put_many(MEDIA, {"a": {"id": "a"}, "b": {"id": "b"}})
        assert len(await store.get_all(MEDIA)) == 2
        await store.clear(MEDIA)
        assert await store.get_all(MEDIA) == []

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.put(MEDIA, "a", {"id": "a"})
        await store.delete(MEDIA, "a")
        await store.delete(MEDIA, "a")
        assert await store.get(MEDIA, "a") is None

    @pytest.mark.asyncio
    async def test_collections_are_isolated(self, store):
        await store.put(MEDIA, "k", {"id": "media"})
        await store.put(SCAN_STATUS, "k", {"path": "status"})
        assert (await store.get(MEDIA, "k"))["id"] == "media"

    @pytest.mark.asyncio
    async def test_unknown_collection(self, store):
        with pytest.raises(ValueError, match="Unknown cache collection"):
            await store.put("nope", "k", {})


class TestPersistence:
    @pytest.mark.asyncio
    async def test_sqlite_survives_reopen(self, tmp_path):
        first = SqliteCacheStore(db_path=tmp_path / "c.db")
        await first.put(SCAN_STATUS, "/a", {"path": "/a", "scanStatus": "running"})
        first.close()
        second = SqliteCacheStore(db_path=tmp_path / "c.db")
        assert (await second.get(SCAN_STATUS, "/a"))["scanStatus"] == "running"
        second.close()
