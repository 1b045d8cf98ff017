# tests/unit/storage/test_unit_local_store.py — v1
"""Tests for storage/local_store.py and storage/store_factory.py."""

from __future__ import annotations

import pytest

from mediaindex.core.errors import MalformedRecord, StorageConfigurationError
from mediaindex.storage.local_store import LocalBlobStore
from mediaindex.storage.store_factory import ApiConfig, create_store, create_store_from_settings


@pytest.fixture
def local(tmp_path):
    (tmp_path / "acme" / "site" / "blog").mkdir(parents=True)
    (tmp_path / "acme" / "site" / "index.html").write_text("<p>home</p>", encoding="utf-8")
    (tmp_path / "acme" / "site" / "blog" / "post.html").write_text("<p>post</p>", encoding="utf-8")
    return LocalBlobStore(tmp_path)


class TestLocalBlobStore:
    @pytest.mark.asyncio
    async def test_list(self, local):
        entries = await local.list("/acme/site")
        assert [(e.name, e.ext) for e in entries] == [("blog", None), ("index", "html")]
        assert entries[1].path == "/acme/site/index.html"
        assert entries[1].last_modified > 0

    @pytest.mark.asyncio
    async def test_list_missing_folder(self, local):
        assert await local.list("/acme/site/nope") == []

    @pytest.mark.asyncio
    async def test_write_read_delete(self, local):
        await local.write_blob("/acme/site/.media/media.json", [{"id": "a"}])
        assert await local.read_blob("/acme/site/.media/media.json") == [{"id": "a"}]
        await local.delete("/acme/site/.media/media.json")
        assert await local.read_blob("/acme/site/.media/media.json") is None
        await local.delete("/acme/site/.media/media.json")

    @pytest.mark.asyncio
    async def test_malformed_json(self, local, tmp_path):
        (tmp_path / "acme" / "site" / "bad.json").write_text("{nope", encoding="utf-8")
        with pytest.raises(MalformedRecord):
            await local.read_blob("/acme/site/bad.json")

    @pytest.mark.asyncio
    async def test_traversal_rejected(self, local):
        with pytest.raises(ValueError):
            await local.read_text("/../../etc/passwd")


class TestStoreFactory:
    def test_local_backend(self, tmp_path):
        store = create_store(ApiConfig(org="acme", repo="site", backend="local", local_root=str(tmp_path)))
        assert isinstance(store, LocalBlobStore)

    def test_http_backend(self):
        from mediaindex.storage.http_store import HttpBlobStore

        store = create_store(ApiConfig(org="acme", repo="site", base_url="https://admin.test"))
        assert isinstance(store, HttpBlobStore)

    def test_missing_context(self):
        with pytest.raises(StorageConfigurationError):
            create_store(ApiConfig(org="", repo="site", backend="local"))

    def test_unknown_backend(self):
        with pytest.raises(StorageConfigurationError, match="Unsupported"):
            create_store(ApiConfig(org="acme", repo="site", backend="ftp"))

    def test_from_settings(self, settings):
        config = ApiConfig.from_settings(settings)
        assert config.org == "acme"
        assert config.backend == "local"
        assert isinstance(create_store_from_settings(settings), LocalBlobStore)
