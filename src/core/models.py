# src/core/models.py — v1
"""Shared Pydantic domain models used across modules.

Persisted records serialize with camelCase keys (``lastModified``,
``scanStatus``...) so the blobs stay readable by other clients of the content
tree. Python code uses snake_case attribute names. Timestamps are integer
epoch milliseconds.
"""

from __future__ import annotations

import time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ScanStatus = Literal["pending", "running", "completed", "failed"]
EntryStatus = Literal["pending", "completed", "failed", "deleted"]
ScanReason = Literal["force", "new", "retry", "changed", "incomplete"]
DiscoveryType = Literal["full", "incremental"]
MediaType = Literal["image", "video", "document"]
SessionStatus = Literal["active", "paused", "completed", "failed", "interrupted"]

TERMINAL_SESSION_STATUSES: frozenset[str] = frozenset(
    {"completed", "failed", "interrupted"}
)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class WireModel(BaseModel):
    """Base for records persisted as JSON blobs or cache rows."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys, omitting unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# === CONTENT TREE ===


class FileEntry(WireModel):
    """One item of a remote directory listing. Folders have no extension."""

    name: str
    path: str
    ext: str | None = None
    last_modified: int | None = None

    @property
    def is_folder(self) -> bool:
        return not self.ext


class Document(WireModel):
    """One content page tracked for scanning."""

    path: str
    name: str = ""
    last_modified: int | None = None
    scan_status: ScanStatus | None = None
    scan_complete: bool | None = None
    needs_rescan: bool = False
    media_count: int = 0
    scan_attempts: int = 0
    scan_errors: list[str] = Field(default_factory=list)
    last_scanned_at: int | None = None
    entry_status: EntryStatus = "pending"
    deleted_at: int | None = None

    @classmethod
    def discovered(cls, entry: FileEntry) -> Document:
        """Fresh record for a page seen for the first time."""
        return cls(
            path=entry.path,
            name=entry.name,
            last_modified=entry.last_modified,
            scan_status="pending",
            scan_complete=False,
            needs_rescan=True,
        )


class DiscoveryFile(BaseModel):
    """Documents of one top-level folder, persisted as a JSON array."""

    name: str
    documents: list[Document] = Field(default_factory=list)

    @property
    def file_name(self) -> str:
        return f"{self.name}.json"

    def active_documents(self) -> list[Document]:
        return [d for d in self.documents if d.entry_status != "deleted"]


class ScanTarget(WireModel):
    """A document selected for scanning, with its discovery file and reason."""

    document: Document
    source_file: str
    reason: ScanReason


# === MEDIA ===


class MediaOccurrence(WireModel):
    """One reference to a media asset on one page."""

    occurrence_id: str
    page_path: str
    alt_text: str = ""
    has_alt_text: bool = False
    occurrence_type: str = "image"
    contextual_text: str = ""
    context: str = ""


class MediaAsset(WireModel):
    """One deduplicated media reference, keyed by a hash of its src."""

    id: str
    src: str
    name: str = "Untitled Media"
    alt: str = ""
    type: MediaType = "image"
    is_external: bool = False
    used_in: list[str] = Field(default_factory=list)
    occurrences: list[MediaOccurrence] = Field(default_factory=list)


# === CHECKPOINTS ===


class DiscoveryCheckpoint(WireModel):
    """Progress of the crawl phase. Overwritten in place."""

    total_folders: int = 0
    completed_folders: int = 0
    total_documents: int = 0
    status: Literal["idle", "running", "completed", "interrupted", "failed"] = "idle"
    discovery_type: DiscoveryType = "full"
    folder_status: dict[str, str] = Field(default_factory=dict)
    start_time: int | None = None
    end_time: int | None = None
    last_updated: int | None = None

    @property
    def is_resumable(self) -> bool:
        return self.status in ("running", "interrupted")


class ScanningCheckpoint(WireModel):
    """Progress of the scan phase. Overwritten in place."""

    total_pages: int = 0
    scanned_pages: int = 0
    pending_pages: int = 0
    failed_pages: int = 0
    total_media: int = 0
    status: Literal["idle", "running", "completed", "interrupted"] = "idle"
    start_time: int | None = None
    end_time: int | None = None
    last_updated: int | None = None

    @property
    def is_consistent(self) -> bool:
        return self.scanned_pages + self.pending_pages + self.failed_pages == self.total_pages


class UploadCheckpoint(WireModel):
    """Progress of the upload phase. Overwritten in place."""

    total_batches: int = 0
    uploaded_batches: int = 0
    failed_batches: int = 0
    total_media: int = 0
    status: Literal["idle", "running", "completed", "failed"] = "idle"
    last_updated: int | None = None


# === SESSIONS ===


class Session(WireModel):
    """One logical scan run."""

    session_id: str
    user_id: str = "anonymous"
    browser_id: str = ""
    status: SessionStatus = "active"
    current_stage: str = "idle"
    last_heartbeat: int
    created_at: int
    progress: dict[str, Any] = Field(default_factory=dict)
    coordinated_with: str | None = None
    ended_at: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SESSION_STATUSES


class SessionLock(WireModel):
    """The single scan lock document."""

    session_id: str
    acquired_at: int
    last_heartbeat: int


# === UPLOADS ===


class UploadBatch(WireModel):
    """A fixed-size slice of queued media uploaded as one unit."""

    id: str
    session_id: str
    batch_number: int
    media: list[MediaAsset] = Field(default_factory=list)
    status: Literal["pending", "completed", "failed"] = "pending"
    attempts: int = 0
    last_attempt: int | None = None
    error: str | None = None


# === AUDIT ===


class AuditEntry(WireModel):
    """Immutable summary of one completed scan cycle."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    session_id: str
    discovery_type: DiscoveryType
    discovery_status: str
    scanning_status: str
    discovery_duration_ms: int = 0
    scanning_duration_ms: int = 0
    total_folders: int = 0
    total_documents: int = 0
    total_pages: int = 0
    failed_pages: int = 0
    total_media: int = 0
    timestamp: int


# === SITE STRUCTURE ===


class FileNode(WireModel):
    name: str
    path: str
    media_count: int = 0
    last_modified: int | None = None


class FolderNode(WireModel):
    """A folder in the aggregated tree. ``media_count`` includes descendants."""

    name: str
    path: str
    media_count: int = 0
    files: list[FileNode] = Field(default_factory=list)
    subfolders: dict[str, FolderNode] = Field(default_factory=dict)


class SiteStats(WireModel):
    total_folders: int = 0
    total_files: int = 0
    total_media_items: int = 0
    deepest_nesting: int = 0


class SiteStructure(WireModel):
    org: str
    repo: str
    version: str = "1.0"
    last_updated: int
    structure: dict[str, FolderNode]
    stats: SiteStats
