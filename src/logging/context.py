# src/logging/context.py — v1
"""Scan context attached to every log record: session, stage, worker, page.

Context variables are per asyncio task, so each scan worker carries its own
worker and page values while sharing the session of the task that spawned it.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

_session_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "session_id", default=None
)
_stage: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "stage", default=None
)
_worker_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "worker_id", default=None
)
_page: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "page", default=None
)


@dataclass(frozen=True)
class LogContext:
    session_id: str | None = None
    stage: str | None = None
    worker_id: str | None = None
    page: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Non-None fields, for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    return LogContext(
        session_id=_session_id.get(),
        stage=_stage.get(),
        worker_id=_worker_id.get(),
        page=_page.get(),
    )


def set_session_context(session_id: str, stage: str | None = None) -> None:
    """Set once per scan cycle by the orchestrator."""
    _session_id.set(session_id)
    if stage is not None:
        _stage.set(stage)


def set_stage_context(stage: str) -> None:
    _stage.set(stage)


def set_page_context(page: str | None, worker_id: str | None = None) -> None:
    """Set by a scan worker around each page it processes."""
    _page.set(page)
    if worker_id is not None:
        _worker_id.set(worker_id)


def clear_context() -> None:
    _session_id.set(None)
    _stage.set(None)
    _worker_id.set(None)
    _page.set(None)
