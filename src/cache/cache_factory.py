# src/cache/cache_factory.py — v1
"""Factory for local cache store instantiation."""

from __future__ import annotations

import re

from mediaindex.cache.base_cache_store import BaseCacheStore
from mediaindex.config.settings import Settings


def cache_namespace(settings: Settings) -> str:
    """File-system safe name scoping the cache to one content tree."""
    raw = f"{settings.content_org}-{settings.content_repo}".strip("-") or "default"
    return re.sub(r"[^A-Za-z0-9_.-]", "_", raw)


def create_cache_store(settings: Settings) -> BaseCacheStore:
    """Instantiate the configured cache backend.

    Args:
        settings: Application settings (CACHE_BACKEND, CACHE_ROOT).

    Returns:
        Configured BaseCacheStore implementation.

    Raises:
        ValueError: If the backend is not supported.
    """
    namespace = cache_namespace(settings)

    if settings.cache_backend == "sqlite":
        from mediaindex.cache.sqlite_store import SqliteCacheStore
        return SqliteCacheStore(db_path=settings.cache_root / f"{namespace}.db")

    if settings.cache_backend == "json":
        from mediaindex.cache.json_store import JsonCacheStore
        return JsonCacheStore(cache_root=settings.cache_root / namespace)

    raise ValueError(f"Unsupported cache backend: {settings.cache_backend!r}")
