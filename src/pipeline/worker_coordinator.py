# src/pipeline/worker_coordinator.py — v1
"""Worker coordinator: own the scan worker pool and drive the pull protocol.

The coordinator keeps the pending scan set. Workers ask for work with
``requestBatch``; the coordinator answers with ``processBatch`` or, when the
set is drained or a stop was requested, ``stopQueueProcessing``. Results come
back on one shared channel and are routed through a typed handler table.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Protocol

from mediaindex.core.errors import MediaIndexError, WorkerInitTimeout
from mediaindex.core.models import ScanTarget
from mediaindex.scan.messages import (
    BatchComplete,
    Channel,
    Init,
    Initialized,
    PageScanError,
    PageScanned,
    ProcessBatch,
    QueueProcessingStopped,
    RequestBatch,
    Shutdown,
    StartQueueProcessing,
    StopQueueProcessing,
    WorkerError,
    coordinator_channel,
    worker_channel,
)
from mediaindex.scan.worker import ScanWorker
from mediaindex.storage.store_factory import ApiConfig

logger = logging.getLogger(__name__)


class WorkerUnit(Protocol):
    worker_id: str

    async def run(self) -> None: ...


WorkerFactory = Callable[[str, Channel, Channel], WorkerUnit]


def default_worker_factory(worker_id: str, inbox: Channel, outbox: Channel) -> WorkerUnit:
    return ScanWorker(worker_id, inbox, outbox)


async def _noop(_: Any) -> None:
    return None


@dataclass
class ScanEventHandlers:
    """Callbacks invoked, in arrival order, for worker results."""

    on_page_scanned: Callable[[PageScanned], Awaitable[None]] = _noop
    on_page_error: Callable[[PageScanError], Awaitable[None]] = _noop
    on_batch_dispatched: Callable[[list[ScanTarget]], Awaitable[None]] = _noop
    on_batch_complete: Callable[[BatchComplete], Awaitable[None]] = _noop


@dataclass
class ScanPhaseResult:
    success: bool
    total: int = 0
    dispatched: int = 0
    scanned: int = 0
    failed: int = 0
    total_media: int = 0
    stopped: bool = False
    error: str | None = None

    @property
    def pending(self) -> int:
        return self.total - self.scanned - self.failed

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "pending": self.pending}


@dataclass
class _WorkerHandle:
    worker_id: str
    inbox: Channel
    task: asyncio.Task


class WorkerCoordinator:
    """Lazily built pool of long-lived scan workers."""

    def __init__(
        self,
        api_config: ApiConfig,
        pool_size: int = 1,
        init_timeout_s: float = 10.0,
        worker_factory: WorkerFactory = default_worker_factory,
    ) -> None:
        self._api_config = api_config
        self._pool_size = pool_size
        self._init_timeout_s = init_timeout_s
        self._worker_factory = worker_factory
        self._outbox: Channel = worker_channel()
        self._workers: dict[str, _WorkerHandle] = {}
        self._next_worker = 0
        self._stop_requested = False

    @property
    def worker_ids(self) -> list[str]:
        return list(self._workers)

    def stop(self) -> None:
        """Dispatch no further batches. In-flight batches finish."""
        self._stop_requested = True

    def reset(self) -> None:
        """Clear a stop request before a new cycle."""
        self._stop_requested = False

    # --- Pool ---

    async def _spawn(self) -> _WorkerHandle:
        self._next_worker += 1
        worker_id = f"scan-worker-{self._next_worker}"
        inbox = coordinator_channel()
        unit = self._worker_factory(worker_id, inbox, self._outbox)
        task = asyncio.create_task(unit.run(), name=worker_id)
        handle = _WorkerHandle(worker_id, inbox, task)
        try:
            await self._initialize(handle)
        except MediaIndexError:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise
        self._workers[worker_id] = handle
        return handle

    async def _initialize(self, handle: _WorkerHandle) -> None:
        """Send ``init`` and wait for the acknowledgement.

        Raises:
            WorkerInitTimeout: No ``initialized`` within the timeout.
            MediaIndexError: The worker reported an error instead.
        """
        await handle.inbox.put(Init(api_config=self._api_config))

        async def wait_ack() -> None:
            while True:
                message = await self._outbox.get()
                if isinstance(message, Initialized) and message.worker_id == handle.worker_id:
                    return
                if isinstance(message, WorkerError) and message.worker_id == handle.worker_id:
                    raise MediaIndexError(
                        f"Worker {handle.worker_id} failed to initialize: {message.error}"
                    )
                logger.debug("Discarding %s during worker init", message.type)

        try:
            await asyncio.wait_for(wait_ack(), timeout=self._init_timeout_s)
        except asyncio.TimeoutError as e:
            raise WorkerInitTimeout(handle.worker_id, self._init_timeout_s) from e
        logger.info("Worker %s initialized", handle.worker_id)

    async def ensure_workers(self) -> list[_WorkerHandle]:
        for worker_id, handle in list(self._workers.items()):
            if handle.task.done():
                logger.warning("Worker %s exited, replacing it", worker_id)
                del self._workers[worker_id]
        while len(self._workers) < self._pool_size:
            await self._spawn()
        return list(self._workers.values())

    async def shutdown(self) -> None:
        for handle in self._workers.values():
            if not handle.task.done():
                await handle.inbox.put(Shutdown())
        tasks = [h.task for h in self._workers.values()]
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=self._init_timeout_s)
            for task in pending:
                task.cancel()
        self._workers.clear()

    # --- Scanning ---

    async def start_scanning_phase(
        self,
        session_id: str,
        targets: list[ScanTarget],
        batch_size: int,
        handlers: ScanEventHandlers | None = None,
    ) -> ScanPhaseResult:
        """Scan ``targets`` with the pool until drained or stopped.

        Never raises for worker failures: initialization errors come back as
        ``success=False`` with the error message, before any page is dispatched.
        """
        handlers = handlers or ScanEventHandlers()
        result = ScanPhaseResult(success=True, total=len(targets))

        try:
            workers = await self.ensure_workers()
        except MediaIndexError as e:
            logger.error("Scan aborted: %s", e)
            return ScanPhaseResult(success=False, total=len(targets), error=str(e))

        pending: deque[ScanTarget] = deque(targets)
        active = {h.worker_id for h in workers}
        for handle in workers:
            await handle.inbox.put(
                StartQueueProcessing(
                    session_id=session_id, documents_to_scan=len(targets), batch_size=batch_size,
                )
            )

        while active:
            message = await self._next_message(active)
            if message is None:
                continue

            if isinstance(message, RequestBatch):
                handle = self._workers.get(message.worker_id)
                if handle is None:
                    continue
                if self._stop_requested or not pending:
                    reason = "stopped" if self._stop_requested else "completed"
                    await handle.inbox.put(StopQueueProcessing(reason=reason))
                    continue
                size = max(1, message.batch_size or batch_size)
                batch = [pending.popleft() for _ in range(min(size, len(pending)))]
                await handlers.on_batch_dispatched(batch)
                result.dispatched += len(batch)
                await handle.inbox.put(ProcessBatch(pages=batch))
            elif isinstance(message, PageScanned):
                result.scanned += 1
                result.total_media += message.media_count
                await handlers.on_page_scanned(message)
            elif isinstance(message, PageScanError):
                result.failed += 1
                await handlers.on_page_error(message)
            elif isinstance(message, BatchComplete):
                await handlers.on_batch_complete(message)
            elif isinstance(message, QueueProcessingStopped):
                logger.info(
                    "Worker %s stopped (%s) after %d pages",
                    message.worker_id, message.reason, message.processed_count,
                )
                active.discard(message.worker_id)
            elif isinstance(message, WorkerError):
                logger.error("Worker %s error: %s", message.worker_id, message.error)

        result.stopped = self._stop_requested and result.pending > 0
        logger.info(
            "Scanning phase done: %d scanned, %d failed, %d pending of %d",
            result.scanned, result.failed, result.pending, result.total,
        )
        return result

    async def _next_message(self, active: set[str]) -> object | None:
        """Next worker message, or None after dropping workers that died silently."""
        if not self._outbox.empty():
            return await self._outbox.get()
        getter = asyncio.ensure_future(self._outbox.get())
        tasks = {self._workers[w].task: w for w in active if w in self._workers}
        done, _ = await asyncio.wait({getter, *tasks}, return_when=asyncio.FIRST_COMPLETED)
        if getter in done:
            return getter.result()
        if not getter.cancel() and not getter.cancelled():
            return getter.result()
        for task, worker_id in tasks.items():
            if task in done:
                logger.error("Worker %s exited without stopping its queue", worker_id)
                active.discard(worker_id)
                self._workers.pop(worker_id, None)
        return None
