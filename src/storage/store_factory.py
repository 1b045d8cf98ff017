# src/storage/store_factory.py — v1
"""Factory: instantiate the remote blob store from configuration."""

from __future__ import annotations

from pydantic import BaseModel

from mediaindex.config.settings import Settings
from mediaindex.core.errors import StorageConfigurationError
from mediaindex.core.retry import RetryPolicy
from mediaindex.storage.base_blob_store import BaseBlobStore
from mediaindex.storage.local_store import LocalBlobStore


class ApiConfig(BaseModel):
    """Connection parameters handed to scan workers at init time.

    Workers build their own store from this, so no client is shared with
    the orchestrator.
    """

    org: str
    repo: str
    backend: str = "http"
    base_url: str = ""
    token: str = ""
    local_root: str = ""
    max_retries: int = 3
    retry_base_delay_s: float = 1.0
    rate_limit_delay_s: float = 0.1
    timeout_s: float = 30.0
    internal_domains: list[str] = []

    @classmethod
    def from_settings(cls, settings: Settings) -> ApiConfig:
        return cls(
            org=settings.content_org,
            repo=settings.content_repo,
            backend=settings.store_backend,
            base_url=settings.content_api_base_url,
            token=settings.content_token,
            local_root=str(settings.store_local_root),
            max_retries=settings.store_max_retries,
            retry_base_delay_s=settings.store_retry_base_delay_s,
            rate_limit_delay_s=settings.store_rate_limit_delay_s,
            timeout_s=settings.store_timeout_s,
            internal_domains=settings.internal_domains_list,
        )


def create_store(config: ApiConfig) -> BaseBlobStore:
    """Create the blob store described by ``config``.

    Raises:
        StorageConfigurationError: If org/repo is missing or the backend is unknown.
    """
    if not config.org or not config.repo:
        raise StorageConfigurationError(
            "Content org and repo are required (set CONTENT_ORG and CONTENT_REPO)"
        )

    if config.backend == "local":
        return LocalBlobStore(config.local_root)

    if config.backend == "http":
        from mediaindex.storage.http_store import HttpBlobStore

        if not config.base_url:
            raise StorageConfigurationError(
                "CONTENT_API_BASE_URL must be set when STORE_BACKEND=http"
            )
        return HttpBlobStore(
            base_url=config.base_url,
            token=config.token,
            retry_policy=RetryPolicy(
                max_attempts=config.max_retries,
                base_delay_s=config.retry_base_delay_s,
            ),
            rate_limit_delay_s=config.rate_limit_delay_s,
            timeout_s=config.timeout_s,
        )

    raise StorageConfigurationError(f"Unsupported store backend: {config.backend!r}")


def create_store_from_settings(settings: Settings) -> BaseBlobStore:
    return create_store(ApiConfig.from_settings(settings))
