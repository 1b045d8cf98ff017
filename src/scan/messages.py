# src/scan/messages.py — v1
"""Typed messages exchanged between the worker coordinator and scan workers.

Two closed sets of variants, each discriminated by ``type``. Messages travel
through a Channel as serialized JSON, so a receiver always gets its own copy
and never shares a mutable object with the sender.
"""

from __future__ import annotations

import asyncio
from typing import Annotated, Generic, Literal, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from mediaindex.core.models import MediaAsset, ScanTarget
from mediaindex.storage.store_factory import ApiConfig


class _Message(BaseModel):
    model_config = ConfigDict(frozen=True)


# === Coordinator -> worker ===


class Init(_Message):
    type: Literal["init"] = "init"
    api_config: ApiConfig


class StartQueueProcessing(_Message):
    """Begin pulling batches. ``documents_to_scan`` is the size of the scan set."""

    type: Literal["startQueueProcessing"] = "startQueueProcessing"
    session_id: str
    documents_to_scan: int
    batch_size: int


class ProcessBatch(_Message):
    type: Literal["processBatch"] = "processBatch"
    pages: list[ScanTarget]


class StopQueueProcessing(_Message):
    type: Literal["stopQueueProcessing"] = "stopQueueProcessing"
    reason: str


class Shutdown(_Message):
    type: Literal["shutdown"] = "shutdown"


# === Worker -> coordinator ===


class Initialized(_Message):
    type: Literal["initialized"] = "initialized"
    worker_id: str


class RequestBatch(_Message):
    type: Literal["requestBatch"] = "requestBatch"
    worker_id: str
    batch_size: int


class PageScanned(_Message):
    type: Literal["pageScanned"] = "pageScanned"
    worker_id: str
    page: str
    source_file: str
    media_count: int
    media: list[MediaAsset] = Field(default_factory=list)
    last_modified: int | None = None


class PageScanError(_Message):
    type: Literal["pageScanError"] = "pageScanError"
    worker_id: str
    page: str
    source_file: str
    error: str


class BatchComplete(_Message):
    type: Literal["batchComplete"] = "batchComplete"
    worker_id: str
    processed_count: int
    total_media: int


class QueueProcessingStopped(_Message):
    type: Literal["queueProcessingStopped"] = "queueProcessingStopped"
    worker_id: str
    reason: str
    processed_count: int


class WorkerError(_Message):
    type: Literal["workerError"] = "workerError"
    worker_id: str
    error: str


CoordinatorMessage = Annotated[
    Union[Init, StartQueueProcessing, ProcessBatch, StopQueueProcessing, Shutdown],
    Field(discriminator="type"),
]
WorkerMessage = Annotated[
    Union[
        Initialized, RequestBatch, PageScanned, PageScanError,
        BatchComplete, QueueProcessingStopped, WorkerError,
    ],
    Field(discriminator="type"),
]

M = TypeVar("M", bound=BaseModel)


class Channel(Generic[M]):
    """One-way message queue carrying serialized, re-validated messages."""

    def __init__(self, message_type: object) -> None:
        self._adapter: TypeAdapter[M] = TypeAdapter(message_type)
        self._queue: asyncio.Queue[str] = asyncio.Queue()

    async def put(self, message: M) -> None:
        await self._queue.put(message.model_dump_json())

    async def get(self) -> M:
        raw = await self._queue.get()
        return self._adapter.validate_json(raw)

    def empty(self) -> bool:
        return self._queue.empty()


def coordinator_channel() -> Channel:
    return Channel(CoordinatorMessage)


def worker_channel() -> Channel:
    return Channel(WorkerMessage)
