# tests/unit/storage/test_unit_http_store.py — v1
"""Tests for storage/http_store.py — admin API client over httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from mediaindex.core.errors import MalformedRecord, RetryExhausted, StoreError
from mediaindex.core.retry import RetryPolicy
from mediaindex.storage.http_store import HttpBlobStore, _parse_retry_after

BASE = "https://admin.test"


def _store(handler, max_attempts: int = 3) -> HttpBlobStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE)
    return HttpBlobStore(
        BASE,
        retry_policy=RetryPolicy(max_attempts=max_attempts, base_delay_s=0, jitter=False),
        rate_limit_delay_s=0,
        client=client,
    )


class TestList:
    @pytest.mark.asyncio
    async def test_list_entries(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/list/acme/site"
            return httpx.Response(
                200,
                json=[
                    {"name": "blog", "path": "/acme/site/blog"},
                    {"name": "index", "ext": "html", "path": "/acme/site/index.html", "lastModified": 42},
                    {"bogus": True},
                ],
            )

        entries = await _store(handler).list("/acme/site")
        assert [e.name for e in entries] == ["blog", "index"]
        assert entries[0].is_folder
        assert entries[1].last_modified == 42

    @pytest.mark.asyncio
    async def test_missing_folder_lists_empty(self):
        store = _store(lambda request: httpx.Response(404))
        assert await store.list("/acme/site/nope") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"<html>maintenance</html>", b'{"items": []}'])
    async def test_unparseable_listing_is_malformed(self, body):
        store = _store(lambda request: httpx.Response(200, content=body))
        with pytest.raises(MalformedRecord, match="/acme/site"):
            await store.list("/acme/site")


class TestReadWrite:
    @pytest.mark.asyncio
    async def test_read_missing_returns_none(self):
        store = _store(lambda request: httpx.Response(404))
        assert await store.read_text("/acme/site/x.json") is None

    @pytest.mark.asyncio
    async def test_read_blob_parses_json(self):
        store = _store(lambda request: httpx.Response(200, text='{"a": 1}'))
        assert await store.read_blob("/acme/site/x.json") == {"a": 1}

    @pytest.mark.asyncio
    async def test_write_is_multipart_post(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201)

        await _store(handler).write_blob("/acme/site/.media/media.json", [{"id": "x"}])
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/source/acme/site/.media/media.json"
        assert request.headers["content-type"].startswith("multipart/form-data")
        assert b'name="data"' in request.content

    @pytest.mark.asyncio
    async def test_delete_missing_is_ignored(self):
        store = _store(lambda request: httpx.Response(404))
        await store.delete("/acme/site/x.json")

    @pytest.mark.asyncio
    async def test_bearer_token(self):
        store = HttpBlobStore(BASE, token="secret")
        assert store._client.headers["authorization"] == "Bearer secret"
        await store.close()


class TestRetries:
    @pytest.mark.asyncio
    async def test_rate_limit_then_success(self):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(429, headers={"retry-after": "0"})
            return httpx.Response(200, text=json.dumps({"ok": True}))

        assert await _store(handler).read_blob("/acme/site/x.json") == {"ok": True}
        assert calls["n"] == 2

    @pytest.mark.asyncio
    async def test_server_errors_exhaust(self):
        store = _store(lambda request: httpx.Response(503), max_attempts=2)
        with pytest.raises(RetryExhausted):
            await store.read_text("/acme/site/x.json")

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(403, text="forbidden")

        with pytest.raises(StoreError) as exc_info:
            await _store(handler).write_blob("/acme/site/x.json", {})
        assert exc_info.value.status_code == 403
        assert calls["n"] == 1

    def test_parse_retry_after(self):
        assert _parse_retry_after("3") == 3.0
        assert _parse_retry_after(None) == 1.0
        assert _parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 1.0
