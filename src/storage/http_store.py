# src/storage/http_store.py — v1
"""Remote blob store backed by the content admin HTTP API (STORE_BACKEND=http).

Endpoints:
    GET    {base}/list{path}     folder listing
    GET    {base}/source{path}   blob content
    POST   {base}/source{path}   multipart upload, field ``data``
    DELETE {base}/source{path}

Every call goes through the shared RetryPolicy. HTTP 429 raises RateLimited
carrying the ``retry-after`` hint, which the policy honours.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from mediaindex.core.errors import MalformedRecord, RateLimited, StoreError
from mediaindex.core.models import FileEntry
from mediaindex.core.retry import RetryPolicy
from mediaindex.storage.base_blob_store import BaseBlobStore, decode_json, encode_json

logger = logging.getLogger(__name__)


class HttpBlobStore(BaseBlobStore):
    """Read and write blobs through the admin API with bearer auth."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        retry_policy: RetryPolicy | None = None,
        rate_limit_delay_s: float = 0.1,
        timeout_s: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize HTTP store.

        Args:
            base_url: API origin, e.g. ``https://admin.da.live``.
            token: Bearer token. Empty means anonymous.
            retry_policy: Backoff policy for transient failures.
            rate_limit_delay_s: Minimum spacing between consecutive requests.
            timeout_s: Per-request timeout.
            client: Pre-built client (tests inject one with a mock transport).
        """
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout_s,
        )
        self._owns_client = client is None
        self._retry = retry_policy or RetryPolicy()
        self._rate_limit_delay_s = rate_limit_delay_s
        self._rate_lock = asyncio.Lock()
        self._last_request = 0.0

    async def _throttle(self) -> None:
        async with self._rate_lock:
            wait = self._rate_limit_delay_s - (time.monotonic() - self._last_request)
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_request = time.monotonic()

    async def _request(self, method: str, url: str, path: str, **kwargs: Any) -> httpx.Response:
        await self._throttle()
        response = await self._client.request(method, url, **kwargs)
        if response.status_code == 429:
            retry_after = _parse_retry_after(response.headers.get("retry-after"))
            raise RateLimited(path, retry_after)
        if response.status_code == 404 and method == "GET":
            return response
        if response.status_code >= 400:
            raise StoreError(method, path, response.status_code, response.text[:200])
        return response

    async def _call(self, method: str, url: str, path: str, **kwargs: Any) -> httpx.Response:
        return await self._retry.run(
            self._request, method, url, path, operation=f"{method} {path}", **kwargs
        )

    async def list(self, path: str) -> list[FileEntry]:
        response = await self._call("GET", f"/list{path}", path)
        if response.status_code == 404:
            return []
        items = decode_json(path, response.text)
        if not isinstance(items, list):
            raise MalformedRecord(path, f"listing is {type(items).__name__}, expected a list")
        entries: list[FileEntry] = []
        for item in items:
            if not isinstance(item, dict) or "name" not in item:
                logger.warning("Skipping malformed listing item under %s: %r", path, item)
                continue
            ext = item.get("ext") or None
            item_path = item.get("path") or (
                f"{path.rstrip('/')}/{item['name']}" + (f".{ext}" if ext else "")
            )
            entries.append(
                FileEntry(
                    name=item["name"],
                    path=item_path,
                    ext=ext,
                    last_modified=item.get("lastModified"),
                )
            )
        return entries

    async def read_text(self, path: str) -> str | None:
        response = await self._call("GET", f"/source{path}", path)
        if response.status_code == 404:
            return None
        return response.text

    async def write_blob(self, path: str, data: Any) -> None:
        body = encode_json(data).encode("utf-8")
        filename = path.rsplit("/", 1)[-1]
        await self._call(
            "POST", f"/source{path}", path,
            files={"data": (filename, body, "application/json")},
        )
        logger.debug("Wrote %s (%d bytes)", path, len(body))

    async def delete(self, path: str) -> None:
        try:
            await self._call("DELETE", f"/source{path}", path)
        except StoreError as e:
            if e.status_code != 404:
                raise

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _parse_retry_after(value: str | None) -> float:
    """Seconds to wait from a ``retry-after`` header; 1s when absent or unparsable."""
    if not value:
        return 1.0
    try:
        return max(float(value), 0.0)
    except ValueError:
        return 1.0
