# src/pipeline/state.py — v1
"""Queue orchestrator states, allowed transitions and the run result."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class QueueState(str, Enum):
    IDLE = "idle"
    CHECKING_DISCOVERY = "checking_discovery"
    CRAWLING = "crawling"
    SCANNING = "scanning"
    UPLOADING = "uploading"
    COMPLETING = "completing"
    COMPLETED = "completed"
    STOPPED = "stopped"
    INTERRUPTED = "interrupted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {QueueState.COMPLETED, QueueState.STOPPED, QueueState.INTERRUPTED, QueueState.FAILED}
)

# Forward path. STOPPED, INTERRUPTED and FAILED are reachable from any
# non-terminal state; terminal states only go back to IDLE for a new run.
_FORWARD: dict[QueueState, frozenset[QueueState]] = {
    QueueState.IDLE: frozenset({QueueState.CHECKING_DISCOVERY}),
    QueueState.CHECKING_DISCOVERY: frozenset(
        {QueueState.CRAWLING, QueueState.SCANNING, QueueState.UPLOADING, QueueState.COMPLETING}
    ),
    QueueState.CRAWLING: frozenset(
        {QueueState.SCANNING, QueueState.UPLOADING, QueueState.COMPLETING}
    ),
    QueueState.SCANNING: frozenset({QueueState.UPLOADING, QueueState.COMPLETING}),
    QueueState.UPLOADING: frozenset({QueueState.COMPLETING}),
    QueueState.COMPLETING: frozenset({QueueState.COMPLETED}),
}

_ABORT_STATES = frozenset({QueueState.STOPPED, QueueState.INTERRUPTED, QueueState.FAILED})


class InvalidTransition(Exception):
    """Raised on a state change the state machine does not allow."""


def can_transition(current: QueueState, target: QueueState) -> bool:
    if current.is_terminal:
        return target == QueueState.IDLE
    if target in _ABORT_STATES:
        return True
    return target in _FORWARD.get(current, frozenset())


class ScanRunResult(BaseModel):
    """Outcome of one ``QueueOrchestrator.start`` call."""

    success: bool
    state: QueueState
    session_id: str | None = None
    discovery_type: str | None = None
    discovery_skipped: bool = False
    lock_conflict: bool = False
    error: str | None = None
    scan: dict[str, Any] = Field(default_factory=dict)
    upload: dict[str, Any] = Field(default_factory=dict)
    change_stats: dict[str, Any] = Field(default_factory=dict)
    completion_errors: list[str] = Field(default_factory=list)
    history: list[QueueState] = Field(default_factory=list)
