# tests/conftest.py — v1
"""Shared test fixtures for all unit and integration tests.

Provides an in-memory blob store, a controllable clock, a temp-dir cache and
settings pointing at temp directories. No network access: remote I/O goes
through ``FakeBlobStore``.
"""

from __future__ import annotations

import json
from pathlib import PurePosixPath
from typing import Any

import pytest

from mediaindex.cache.sqlite_store import SqliteCacheStore
from mediaindex.config.settings import Settings
from mediaindex.core.models import FileEntry
from mediaindex.storage.base_blob_store import BaseBlobStore, encode_json

ORG = "acme"
REPO = "site"
ROOT = f"/{ORG}/{REPO}"
T0 = 1_700_000_000_000


# === FAKES ===


class FakeBlobStore(BaseBlobStore):
    """Dict-backed blob store with the same list semantics as the remote API."""

    def __init__(self) -> None:
        self.blobs: dict[str, str] = {}
        self.mtimes: dict[str, int] = {}
        self.writes: list[str] = []
        self.fail_writes: set[str] = set()

    def add_page(self, path: str, html: str = "<html><body></body></html>", last_modified: int = T0) -> None:
        self.blobs[path] = html
        self.mtimes[path] = last_modified

    def json(self, path: str) -> Any:
        raw = self.blobs.get(path)
        return json.loads(raw) if raw is not None else None

    async def list(self, path: str) -> list[FileEntry]:
        prefix = path.rstrip("/") + "/"
        seen: dict[str, FileEntry] = {}
        for blob_path in self.blobs:
            if not blob_path.startswith(prefix):
                continue
            head, _, rest = blob_path[len(prefix):].partition("/")
            child = prefix + head
            if rest:
                seen.setdefault(child, FileEntry(name=head, path=child))
            else:
                p = PurePosixPath(head)
                seen[child] = FileEntry(
                    name=p.stem,
                    path=child,
                    ext=p.suffix.lstrip(".") or None,
                    last_modified=self.mtimes.get(child, T0),
                )
        return [seen[k] for k in sorted(seen)]

    async def read_text(self, path: str) -> str | None:
        return self.blobs.get(path)

    async def write_blob(self, path: str, data: Any) -> None:
        if path in self.fail_writes:
            from mediaindex.core.errors import StoreError

            raise StoreError("write", path, status_code=503, detail="unavailable")
        self.blobs[path] = encode_json(data)
        self.writes.append(path)

    async def delete(self, path: str) -> None:
        self.blobs.pop(path, None)
        self.mtimes.pop(path, None)


class FakeClock:
    """Epoch-ms clock advanced by hand."""

    def __init__(self, start: int = T0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


# === FIXTURES ===


@pytest.fixture
def store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(tmp_path):
    cache_store = SqliteCacheStore(db_path=tmp_path / "cache.db")
    yield cache_store
    cache_store.close()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        content_org=ORG,
        content_repo=REPO,
        store_backend="local",
        store_local_root=tmp_path / "content",
        cache_root=tmp_path / "cache",
        upload_delay_s=0,
        upload_retry_base_delay_s=0,
        store_retry_base_delay_s=0,
        worker_init_timeout_s=1,
    )


@pytest.fixture
def site(store: FakeBlobStore) -> FakeBlobStore:
    """A small tree: two root pages, a blog folder with a nested folder, a drafts folder."""
    store.add_page(f"{ROOT}/index.html", '<img src="/media/hero.png" alt="Hero">')
    store.add_page(f"{ROOT}/about.html", "<p>No media</p>")
    store.add_page(f"{ROOT}/blog/post-1.html", '<img src="/media/a.jpg" alt="A">')
    store.add_page(
        f"{ROOT}/blog/2024/post-2.html",
        '<figure><img src="/media/a.jpg" alt="A"><figcaption>Shared</figcaption></figure>',
    )
    store.add_page(f"{ROOT}/drafts/wip.html", '<img src="/media/draft.png">')
    return store
