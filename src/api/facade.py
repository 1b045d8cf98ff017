# src/api/facade.py — v1
"""Public API facade: build a wired orchestrator and run scans.

Usage:
    from mediaindex.api.facade import run_scan
    result = await run_scan(force_rescan=True)

``build_orchestrator`` is the only place where concrete stores, caches and
pipeline components are chosen; everything below it takes its collaborators
as arguments.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from mediaindex.cache.cache_factory import create_cache_store
from mediaindex.config.settings import Settings
from mediaindex.core.models import AuditEntry, DiscoveryType, now_ms
from mediaindex.core.retry import RetryPolicy
from mediaindex.pipeline.checkpoints import CheckpointStore
from mediaindex.pipeline.completion import ScanCompletionHandler
from mediaindex.pipeline.delta import DeltaProcessor
from mediaindex.pipeline.discovery import DiscoveryCoordinator
from mediaindex.pipeline.orchestrator import QueueOrchestrator
from mediaindex.pipeline.scan_status import ScanStatusTracker
from mediaindex.pipeline.sessions import SessionRegistry
from mediaindex.pipeline.uploads import BatchUploadProcessor, MediaIndexUploader
from mediaindex.pipeline.worker_coordinator import (
    WorkerCoordinator,
    WorkerFactory,
    default_worker_factory,
)
from mediaindex.storage import layout
from mediaindex.storage.store_factory import ApiConfig, create_store

if TYPE_CHECKING:
    from mediaindex.cache.base_cache_store import BaseCacheStore
    from mediaindex.pipeline.state import ScanRunResult
    from mediaindex.storage.base_blob_store import BaseBlobStore

logger = logging.getLogger(__name__)


@dataclass
class MediaIndexApp:
    """Orchestrator plus the resources it owns."""

    settings: Settings
    store: BaseBlobStore
    cache: BaseCacheStore
    orchestrator: QueueOrchestrator
    completion: ScanCompletionHandler

    async def close(self) -> None:
        await self.orchestrator.close()
        await self.store.close()
        self.cache.close()


def build_orchestrator(
    settings: Settings | None = None,
    store: BaseBlobStore | None = None,
    cache: BaseCacheStore | None = None,
    worker_factory: WorkerFactory = default_worker_factory,
    clock: Callable[[], int] = now_ms,
) -> MediaIndexApp:
    """Wire every pipeline component from settings.

    Args:
        settings: Global settings. Loaded from environment / .env if None.
        store: Remote store override. Built from settings if None.
        cache: Local cache override. Built from settings if None.
        worker_factory: Builds scan workers; workers open their own store.
        clock: Epoch-millisecond clock shared by all components.

    Raises:
        StorageConfigurationError: If org/repo is missing.
    """
    settings = settings or Settings()
    api_config = ApiConfig.from_settings(settings)
    root = layout.tree_root(settings.content_org, settings.content_repo)
    store = store or create_store(api_config)
    cache = cache or create_cache_store(settings)

    retry_policy = RetryPolicy(
        max_attempts=settings.store_max_retries,
        base_delay_s=settings.store_retry_base_delay_s,
    )
    checkpoints = CheckpointStore(store, root, clock=clock)
    sessions = SessionRegistry(
        store,
        cache,
        root,
        stale_threshold_ms=settings.stale_threshold_ms,
        max_age_ms=settings.session_max_age_ms,
        clock=clock,
    )
    discovery = DiscoveryCoordinator(
        store,
        checkpoints,
        DeltaProcessor(store, root, clock=clock),
        root,
        excludes=settings.discovery_excludes_list,
        clock=clock,
    )
    tracker = ScanStatusTracker(cache, clock=clock)
    uploader = MediaIndexUploader(store, cache, root)
    uploads = BatchUploadProcessor(
        cache,
        uploader,
        batch_size=settings.upload_batch_size,
        upload_delay_s=settings.upload_delay_s,
        retry_policy=RetryPolicy(
            max_attempts=settings.upload_max_retries,
            base_delay_s=settings.upload_retry_base_delay_s,
        ),
        clock=clock,
    )
    completion = ScanCompletionHandler(
        store,
        checkpoints,
        discovery,
        tracker,
        root,
        settings.content_org,
        settings.content_repo,
        uploader=uploader,
        sessions=sessions,
        retry_policy=retry_policy,
        audit_max_entries=settings.audit_log_max_entries,
        clock=clock,
    )
    workers = WorkerCoordinator(
        api_config,
        pool_size=settings.worker_pool_size,
        init_timeout_s=settings.worker_init_timeout_s,
        worker_factory=worker_factory,
    )
    orchestrator = QueueOrchestrator(
        sessions=sessions,
        checkpoints=checkpoints,
        discovery=discovery,
        workers=workers,
        uploads=uploads,
        tracker=tracker,
        completion=completion,
        scan_batch_size=settings.scan_batch_size,
        heartbeat_interval_s=settings.session_heartbeat_interval_s,
        clock=clock,
    )
    logger.debug("Orchestrator built for %s (backend=%s)", root, settings.store_backend)
    return MediaIndexApp(settings, store, cache, orchestrator, completion)


async def run_scan(
    force_rescan: bool = False,
    discovery_type: DiscoveryType | None = None,
    settings: Settings | None = None,
) -> ScanRunResult:
    """Run one scan cycle with resources built from settings and closed afterwards."""
    app = build_orchestrator(settings)
    try:
        return await app.orchestrator.start(
            force_rescan=force_rescan,
            discovery_type=discovery_type,
            user_id=app.settings.session_user_id,
        )
    finally:
        await app.close()


async def scan_status(settings: Settings | None = None) -> dict[str, Any]:
    app = build_orchestrator(settings)
    try:
        return await app.orchestrator.status()
    finally:
        await app.close()


async def audit_log(settings: Settings | None = None, limit: int | None = None) -> list[AuditEntry]:
    """Newest-first audit entries."""
    app = build_orchestrator(settings)
    try:
        entries = await app.completion.load_audit_log()
    finally:
        await app.close()
    return entries[:limit] if limit is not None else entries
