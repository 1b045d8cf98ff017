# src/pipeline/orchestrator.py — v1
"""Queue orchestrator: top-level state machine for one scan cycle.

    IDLE -> CHECKING_DISCOVERY -> [CRAWLING] -> [SCANNING] -> UPLOADING
         -> COMPLETING -> COMPLETED

STOPPED, INTERRUPTED and FAILED are reachable from any non-terminal state.
A stop request never skips COMPLETING once discovery has produced records,
so persisted state is never left half-written.

Resume needs no bookkeeping of its own: the discovery plan picks up an
interrupted crawl from its checkpoint, and the scan set is recomputed from
document statuses after overlaying whatever the local scan-status store
recorded before the previous process died.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable, Literal

from mediaindex.core.errors import LockConflict, MediaIndexError
from mediaindex.core.models import (
    DiscoveryType,
    ScanningCheckpoint,
    ScanTarget,
    UploadCheckpoint,
    now_ms,
)
from mediaindex.logging.context import clear_context, set_session_context, set_stage_context
from mediaindex.pipeline.change_detector import DocumentChangeDetector
from mediaindex.pipeline.completion import ScanOutcome
from mediaindex.pipeline.discovery import DiscoveryState
from mediaindex.pipeline.state import (
    InvalidTransition,
    QueueState,
    ScanRunResult,
    can_transition,
)
from mediaindex.pipeline.uploads import UploadResult
from mediaindex.pipeline.worker_coordinator import ScanEventHandlers

if TYPE_CHECKING:
    from mediaindex.pipeline.checkpoints import CheckpointStore
    from mediaindex.pipeline.completion import ScanCompletionHandler
    from mediaindex.pipeline.discovery import DiscoveryCoordinator
    from mediaindex.pipeline.scan_status import ScanStatusTracker
    from mediaindex.pipeline.sessions import SessionRegistry
    from mediaindex.pipeline.uploads import BatchUploadProcessor
    from mediaindex.pipeline.worker_coordinator import WorkerCoordinator
    from mediaindex.scan.messages import BatchComplete, PageScanError, PageScanned

logger = logging.getLogger(__name__)

_SESSION_STATUS = {
    QueueState.COMPLETED: "completed",
    QueueState.FAILED: "failed",
    QueueState.STOPPED: "interrupted",
    QueueState.INTERRUPTED: "interrupted",
}


class _RunFailed(Exception):
    """Internal signal: abort the cycle with FAILED."""


class QueueOrchestrator:
    """Compose discovery, scanning, uploads and completion into start/stop.

    Every collaborator is injected; see ``api.facade.build_orchestrator``.

    Args:
        sessions: Session registry holding the scan lock.
        checkpoints: Checkpoint store.
        discovery: Discovery coordinator.
        workers: Worker coordinator owning the scan pool.
        uploads: Batch upload processor.
        tracker: Local per-page scan status.
        completion: Scan completion handler.
        scan_batch_size: Pages per worker batch.
        heartbeat_interval_s: Session heartbeat period while running.
    """

    def __init__(
        self,
        sessions: SessionRegistry,
        checkpoints: CheckpointStore,
        discovery: DiscoveryCoordinator,
        workers: WorkerCoordinator,
        uploads: BatchUploadProcessor,
        tracker: ScanStatusTracker,
        completion: ScanCompletionHandler,
        scan_batch_size: int = 10,
        heartbeat_interval_s: float = 30.0,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._sessions = sessions
        self._checkpoints = checkpoints
        self._discovery = discovery
        self._workers = workers
        self._uploads = uploads
        self._tracker = tracker
        self._completion = completion
        self._scan_batch_size = scan_batch_size
        self._heartbeat_interval_s = heartbeat_interval_s
        self._clock = clock

        self.state = QueueState.IDLE
        self._history: list[QueueState] = []
        self._running = False
        self._done = asyncio.Event()
        self._stop_reason: QueueState | None = None
        self._session_id: str | None = None
        self._progress: dict[str, Any] = {}
        self._scan_checkpoint: ScanningCheckpoint | None = None
        self._upload_tasks: list[asyncio.Task] = []
        self._upload_result = UploadResult()
        self._flush_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def session_id(self) -> str | None:
        return self._session_id

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(
        self,
        force_rescan: bool = False,
        discovery_type: DiscoveryType | None = None,
        user_id: str = "anonymous",
        browser_id: str | None = None,
    ) -> ScanRunResult:
        """Run one full scan cycle and return its terminal result.

        Args:
            force_rescan: Crawl from scratch and scan every document.
            discovery_type: ``incremental`` to diff the tree against the
                last baseline; otherwise discovery runs only when needed.
            user_id: Recorded on the session.
            browser_id: Client identifier recorded on the session.
        """
        if self._running:
            return ScanRunResult(
                success=False, state=self.state, session_id=self._session_id,
                error="A scan is already running",
            )
        self._reset()
        self._running = True
        try:
            return await self._run(force_rescan, discovery_type, user_id, browser_id)
        finally:
            self._running = False
            self._done.set()
            clear_context()

    async def stop(self, reason: Literal["stopped", "interrupted"] = "stopped") -> QueueState:
        """Request a stop and wait until the cycle reached a terminal state.

        Safe to call at any time; a no-op when nothing is running.
        """
        if not self._running:
            return self.state
        self._stop_reason = QueueState.INTERRUPTED if reason == "interrupted" else QueueState.STOPPED
        logger.info("Stop requested (%s) in state %s", reason, self.state.value)
        self._discovery.stop()
        self._workers.stop()
        await self._done.wait()
        return self.state

    async def status(self) -> dict[str, Any]:
        """Snapshot of checkpoints, lock holder and live state."""
        lock = await self._sessions.current_lock()
        discovery = await self._checkpoints.load_discovery()
        scanning = await self._checkpoints.load_scanning()
        upload = await self._checkpoints.load_upload()
        return {
            "state": self.state.value,
            "running": self._running,
            "sessionId": self._session_id,
            "lock": lock.to_wire() if lock is not None else None,
            "discovery": discovery.to_wire(),
            "scanning": scanning.to_wire(),
            "upload": upload.to_wire(),
        }

    async def close(self) -> None:
        await self._workers.shutdown()

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _reset(self) -> None:
        self.state = QueueState.IDLE
        self._history = [QueueState.IDLE]
        self._done = asyncio.Event()
        self._stop_reason = None
        self._session_id = None
        self._progress = {"scanned": 0, "failed": 0, "media": 0}
        self._scan_checkpoint = None
        self._upload_tasks = []
        self._upload_result = UploadResult()
        self._discovery.reset()
        self._workers.reset()

    async def _enter(self, target: QueueState) -> None:
        if not can_transition(self.state, target):
            raise InvalidTransition(f"{self.state.value} -> {target.value}")
        logger.info("Queue state %s -> %s", self.state.value, target.value)
        self.state = target
        self._history.append(target)
        set_stage_context(target.value)
        if self._session_id is not None and not target.is_terminal:
            try:
                await self._sessions.heartbeat(self._session_id, self._progress, stage=target.value)
            except MediaIndexError as e:
                logger.warning("Heartbeat on stage change failed: %s", e)

    @property
    def _stopping(self) -> bool:
        return self._stop_reason is not None

    async def _heartbeat_loop(self, session_id: str) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval_s)
            try:
                await self._sessions.heartbeat(session_id, self._progress, stage=self.state.value)
            except MediaIndexError as e:
                logger.warning("Session heartbeat failed: %s", e)

    async def _run(
        self,
        force_rescan: bool,
        discovery_type: DiscoveryType | None,
        user_id: str,
        browser_id: str | None,
    ) -> ScanRunResult:
        session = await self._sessions.create_session(user_id, browser_id)
        session_id = session.session_id
        self._session_id = session_id
        set_session_context(session_id)

        if not await self._sessions.acquire(session_id):
            lock = await self._sessions.current_lock()
            conflict = LockConflict(session_id, lock.session_id if lock is not None else "unknown")
            logger.warning("%s", conflict)
            await self._sessions.pause(session_id)
            return ScanRunResult(
                success=False,
                state=self.state,
                session_id=session_id,
                lock_conflict=True,
                error=str(conflict),
                history=list(self._history),
            )

        heartbeat = asyncio.create_task(self._heartbeat_loop(session_id))
        result = ScanRunResult(success=False, state=self.state, session_id=session_id)
        try:
            await self._cycle(result, force_rescan, discovery_type)
        except (_RunFailed, MediaIndexError) as e:
            logger.error("Scan cycle failed in state %s: %s", self.state.value, e)
            result.error = str(e)
            await self._enter(QueueState.FAILED)
        except Exception as e:
            logger.exception("Unexpected error in state %s", self.state.value)
            result.error = f"{type(e).__name__}: {e}"
            if not self.state.is_terminal:
                await self._enter(QueueState.FAILED)
        finally:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)
            await self._drain_uploads()
            try:
                await self._sessions.release(session_id, _SESSION_STATUS.get(self.state, "failed"))
            except MediaIndexError as e:
                logger.error("Failed to release session %s: %s", session_id, e)

        result.state = self.state
        result.success = self.state == QueueState.COMPLETED
        result.upload = self._upload_result.to_dict()
        result.history = list(self._history)
        return result

    async def _cycle(
        self,
        result: ScanRunResult,
        force_rescan: bool,
        discovery_type: DiscoveryType | None,
    ) -> None:
        session_id = self._session_id
        assert session_id is not None

        # --- CHECKING_DISCOVERY ---
        await self._enter(QueueState.CHECKING_DISCOVERY)
        paused = await self._sessions.resolve_conflicts(session_id)
        if paused:
            logger.info("Paused %d concurrent sessions: %s", len(paused), ", ".join(paused))

        plan = await self._discovery.plan(discovery_type, force=force_rescan)
        result.discovery_type = plan.discovery_type
        if self._stopping:
            await self._enter(self._stop_reason)
            return

        # --- CRAWLING ---
        if plan.needs_crawl:
            await self._enter(QueueState.CRAWLING)
        discovery = await self._discovery.run(plan)
        result.discovery_skipped = discovery.skipped
        if discovery.state == DiscoveryState.FAILED:
            raise _RunFailed(f"Discovery failed: {discovery.error}")
        discovery_status = "completed" if discovery.state == DiscoveryState.COMPLETE else "interrupted"

        # Statuses recovered from the local store still have to be written back.
        files, recovered = await self._completion.reconcile(discovery.files, finalize_running=True)
        scan_plan = DocumentChangeDetector(force_rescan=force_rescan).plan(files)
        result.change_stats = {
            "new": scan_plan.stats.new,
            "changed": scan_plan.stats.changed,
            "unchanged": scan_plan.stats.unchanged,
            "toScan": scan_plan.stats.to_scan,
            "skipped": scan_plan.stats.skipped,
        }

        outcome = ScanOutcome(
            session_id=session_id,
            discovery_type=discovery.discovery_type,
            discovery_status=discovery_status,
            discovery_duration_ms=discovery.duration_ms,
            scan_status="skipped" if not scan_plan.targets else "completed",
        )

        # --- SCANNING ---
        if scan_plan.targets and not self._stopping:
            await self._enter(QueueState.SCANNING)
            phase = await self._scan(session_id, scan_plan.targets, outcome)
            result.scan = phase
            if not phase["success"]:
                await self._checkpoints.save_scanning(
                    self._scan_checkpoint.model_copy(update={"status": "interrupted"})
                )
                raise _RunFailed(phase["error"] or "Scanning failed")
        elif self._stopping and scan_plan.targets:
            outcome.scan_status = "interrupted"
            outcome.total_pages = len(scan_plan.targets)

        # --- UPLOADING ---
        if not self._stopping or self.state == QueueState.SCANNING:
            await self._enter(QueueState.UPLOADING)
        await self._drain_uploads()
        await self._flush(final=True)
        await self._save_upload_checkpoint()

        # --- COMPLETING ---
        await self._enter(QueueState.COMPLETING)
        completion = await self._completion.complete(outcome, files=files, changed=recovered)
        result.completion_errors = completion.errors

        if self._stopping:
            await self._enter(self._stop_reason)
        elif not completion.success:
            result.error = "; ".join(completion.errors)
            await self._enter(QueueState.FAILED)
        else:
            await self._enter(QueueState.COMPLETED)

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    async def _scan(self, session_id: str, targets: list[ScanTarget], outcome: ScanOutcome) -> dict[str, Any]:
        started = self._clock()
        outcome.scan_started_at = started
        outcome.total_pages = len(targets)
        self._scan_checkpoint = await self._checkpoints.save_scanning(
            ScanningCheckpoint(
                total_pages=len(targets),
                pending_pages=len(targets),
                status="running",
                start_time=started,
            )
        )

        handlers = ScanEventHandlers(
            on_page_scanned=self._on_page_scanned,
            on_page_error=self._on_page_error,
            on_batch_dispatched=self._on_batch_dispatched,
            on_batch_complete=self._on_batch_complete,
        )
        phase = await self._workers.start_scanning_phase(
            session_id, targets, self._scan_batch_size, handlers
        )

        outcome.scanned_pages = phase.scanned
        outcome.failed_pages = phase.failed
        outcome.total_media = phase.total_media
        if phase.stopped or self._stopping:
            outcome.scan_status = "interrupted"
        return phase.to_dict()

    async def _on_batch_dispatched(self, batch: list[ScanTarget]) -> None:
        await self._tracker.mark_running(self._session_id, batch)
        try:
            await self._uploads.forget_pages({t.document.path for t in batch})
        except MediaIndexError as e:
            logger.warning("Could not drop previous media of %d pages: %s", len(batch), e)

    async def _on_page_scanned(self, message: PageScanned) -> None:
        await self._tracker.record_success(self._session_id, message)
        self._progress["scanned"] += 1
        self._progress["media"] += message.media_count
        if message.media:
            queued = await self._uploads.queue_media(self._session_id, message.media)
            if queued >= self._uploads.batch_size:
                self._upload_tasks.append(asyncio.create_task(self._flush(final=False)))

    async def _on_page_error(self, message: PageScanError) -> None:
        await self._tracker.record_failure(self._session_id, message)
        self._progress["failed"] += 1

    async def _on_batch_complete(self, message: BatchComplete) -> None:
        if self._scan_checkpoint is None:
            return
        scanned, failed = self._progress["scanned"], self._progress["failed"]
        total = self._scan_checkpoint.total_pages
        self._scan_checkpoint = await self._checkpoints.save_scanning(
            self._scan_checkpoint.model_copy(
                update={
                    "scanned_pages": scanned,
                    "failed_pages": failed,
                    "pending_pages": max(total - scanned - failed, 0),
                    "total_media": self._progress["media"],
                }
            )
        )

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    async def _flush(self, final: bool) -> None:
        if self._session_id is None:
            return
        async with self._flush_lock:
            flushed = await self._uploads.flush(self._session_id, final=final)
        self._upload_result = self._upload_result.merge(flushed)

    async def _drain_uploads(self) -> None:
        """Wait for background batch uploads started during scanning."""
        tasks, self._upload_tasks = self._upload_tasks, []
        if not tasks:
            return
        for outcome in await asyncio.gather(*tasks, return_exceptions=True):
            if isinstance(outcome, Exception):
                logger.error("Background upload failed: %s", outcome)

    async def _save_upload_checkpoint(self) -> None:
        r = self._upload_result
        await self._checkpoints.save_upload(
            UploadCheckpoint(
                total_batches=r.total_batches,
                uploaded_batches=r.uploaded_batches,
                failed_batches=r.failed_batches,
                total_media=r.total_media,
                status="completed" if r.success else "failed",
            )
        )
