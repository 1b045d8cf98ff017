# src/core/errors.py — v1
"""Exception taxonomy for the scan pipeline.

Per-document and per-batch failures are absorbed by the pipeline and recorded
in status fields; only configuration, initialization and exhausted retries
reach the caller.
"""

from __future__ import annotations


class MediaIndexError(Exception):
    """Base class for all pipeline errors."""


class StorageConfigurationError(MediaIndexError):
    """Remote store cannot be built (missing org/repo context, bad backend)."""


class LockConflict(MediaIndexError):
    """Another session holds the active scan lock."""

    def __init__(self, session_id: str, holder_id: str) -> None:
        self.session_id = session_id
        self.holder_id = holder_id
        super().__init__(
            f"Session {session_id} cannot acquire scan lock held by {holder_id}"
        )


class WorkerInitTimeout(MediaIndexError):
    """A scan worker did not acknowledge initialization in time."""

    def __init__(self, worker_id: str, timeout_s: float) -> None:
        self.worker_id = worker_id
        self.timeout_s = timeout_s
        super().__init__(
            f"Worker {worker_id} initialization timeout after {timeout_s:.1f}s"
        )


class PageScanFailure(MediaIndexError):
    """A single page could not be fetched or parsed."""

    def __init__(self, page: str, reason: str) -> None:
        self.page = page
        self.reason = reason
        super().__init__(f"Failed to scan {page}: {reason}")


class BatchUploadFailure(MediaIndexError):
    """An upload batch exhausted its retries."""

    def __init__(self, batch_id: str, attempts: int, last_error: Exception) -> None:
        self.batch_id = batch_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Batch {batch_id} failed after {attempts} attempts: {last_error}"
        )


class RateLimited(MediaIndexError):
    """Remote store answered 429. Handled by the retry policy."""

    def __init__(self, path: str, retry_after: float | None = None) -> None:
        self.path = path
        self.retry_after = retry_after
        super().__init__(f"Rate limited on {path} (retry-after={retry_after})")


class StoreError(MediaIndexError):
    """Remote store returned a non-retryable or unexpected response."""

    def __init__(self, operation: str, path: str, status_code: int | None, detail: str = "") -> None:
        self.operation = operation
        self.path = path
        self.status_code = status_code
        super().__init__(f"{operation} {path} failed ({status_code}): {detail}".rstrip(": "))

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code >= 500


class MalformedRecord(MediaIndexError):
    """A persisted blob failed to parse; callers treat it as absent."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Malformed record at {path}: {reason}")


class RetryExhausted(MediaIndexError):
    """All attempts of a retried operation failed."""

    def __init__(self, operation: str, attempts: int, last_error: Exception) -> None:
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Operation '{operation}' failed after {attempts} attempts: {last_error}"
        )
