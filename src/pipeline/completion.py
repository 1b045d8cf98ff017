# src/pipeline/completion.py — v1
"""Scan completion handler.

Runs after scanning and uploads stop, whatever the reason:

    1. reconcile discovery records with the local scan-status store
    2. write changed discovery files back to the remote store
    3. rebuild the site structure from the reconciled records
    4. append one audit entry for the cycle

Each step retries on its own. Re-running completion on finalized state
changes nothing: scan-status records are cleared once written back and the
audit log holds at most one entry per session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal

from pydantic import TypeAdapter, ValidationError

from mediaindex.core.errors import MalformedRecord, MediaIndexError
from mediaindex.core.models import (
    AuditEntry,
    DiscoveryFile,
    DiscoveryType,
    FileNode,
    FolderNode,
    ScanningCheckpoint,
    SiteStats,
    SiteStructure,
    now_ms,
)
from mediaindex.core.retry import RetryPolicy
from mediaindex.pipeline.checkpoints import CheckpointStore
from mediaindex.pipeline.discovery import DiscoveryCoordinator
from mediaindex.pipeline.scan_status import ScanStatusTracker, apply_record
from mediaindex.pipeline.sessions import SessionRegistry
from mediaindex.pipeline.uploads import MediaIndexUploader
from mediaindex.storage import layout
from mediaindex.storage.base_blob_store import BaseBlobStore

logger = logging.getLogger(__name__)

_audit_adapter = TypeAdapter(list[AuditEntry])


@dataclass
class ScanOutcome:
    """What happened in the cycle being completed."""

    session_id: str
    discovery_type: DiscoveryType = "full"
    discovery_status: str = "completed"
    discovery_duration_ms: int = 0
    scan_status: Literal["completed", "interrupted", "skipped"] = "completed"
    scan_started_at: int | None = None
    total_pages: int = 0
    scanned_pages: int = 0
    failed_pages: int = 0
    total_media: int = 0


@dataclass
class CompletionResult:
    files: list[DiscoveryFile] = field(default_factory=list)
    written_files: list[str] = field(default_factory=list)
    site_structure: SiteStructure | None = None
    audit_entry: AuditEntry | None = None
    checkpoint: ScanningCheckpoint | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


def build_site_structure(
    files: list[DiscoveryFile], root: str, org: str, repo: str, timestamp: int,
) -> SiteStructure:
    """Aggregate the folder/file tree with media counts from discovery records."""
    tree = FolderNode(name="root", path="/")
    deepest = 0
    documents = sorted(
        (d for f in files for d in f.active_documents()), key=lambda d: d.path
    )
    for doc in documents:
        relative = layout.relative_to_root(root, doc.path)
        segments = [s for s in relative.split("/") if s]
        if not segments:
            continue
        node = tree
        for depth, segment in enumerate(segments[:-1], start=1):
            child = node.subfolders.get(segment)
            if child is None:
                child = FolderNode(name=segment, path=f"{node.path.rstrip('/')}/{segment}")
                node.subfolders[segment] = child
            node = child
            deepest = max(deepest, depth)
        node.files.append(
            FileNode(
                name=segments[-1],
                path=doc.path,
                media_count=doc.media_count,
                last_modified=doc.last_modified,
            )
        )

    stats = SiteStats(total_files=len(documents), deepest_nesting=deepest)

    def finalize(node: FolderNode) -> FolderNode:
        subfolders = {name: finalize(node.subfolders[name]) for name in sorted(node.subfolders)}
        stats.total_folders += len(subfolders)
        media = sum(f.media_count for f in node.files) + sum(s.media_count for s in subfolders.values())
        return node.model_copy(update={"subfolders": subfolders, "media_count": media})

    tree = finalize(tree)
    stats.total_media_items = tree.media_count
    return SiteStructure(
        org=org, repo=repo, last_updated=timestamp, structure={"root": tree}, stats=stats,
    )


class ScanCompletionHandler:
    """Finalize one scan cycle."""

    def __init__(
        self,
        store: BaseBlobStore,
        checkpoints: CheckpointStore,
        discovery: DiscoveryCoordinator,
        tracker: ScanStatusTracker,
        root: str,
        org: str,
        repo: str,
        uploader: MediaIndexUploader | None = None,
        sessions: SessionRegistry | None = None,
        retry_policy: RetryPolicy | None = None,
        audit_max_entries: int = 1000,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._checkpoints = checkpoints
        self._discovery = discovery
        self._tracker = tracker
        self._root = root
        self._org = org
        self._repo = repo
        self._uploader = uploader
        self._sessions = sessions
        self._retry = retry_policy or RetryPolicy()
        self._audit_max_entries = audit_max_entries
        self._clock = clock

    # --- Step 1 ---

    async def reconcile(
        self, files: list[DiscoveryFile], finalize_running: bool = True,
    ) -> tuple[list[DiscoveryFile], list[str]]:
        """Overlay local scan statuses. Returns (files, names of changed files)."""
        records = await self._tracker.records()
        reconciled: list[DiscoveryFile] = []
        changed: list[str] = []
        for discovery_file in files:
            documents = [
                apply_record(d, records[d.path], finalize_running)
                if d.path in records and d.entry_status != "deleted" else d
                for d in discovery_file.documents
            ]
            if documents != discovery_file.documents:
                changed.append(discovery_file.name)
            reconciled.append(DiscoveryFile(name=discovery_file.name, documents=documents))
        if changed:
            logger.info("Reconciled scan status into %d discovery files", len(changed))
        return reconciled, changed

    # --- Steps 2 to 4 ---

    async def write_back(self, files: list[DiscoveryFile], changed: list[str]) -> list[str]:
        written: list[str] = []
        for discovery_file in files:
            if discovery_file.name in changed:
                await self._discovery.save_discovery_file(discovery_file)
                written.append(discovery_file.name)
        return written

    async def write_site_structure(self, files: list[DiscoveryFile]) -> SiteStructure:
        structure = build_site_structure(files, self._root, self._org, self._repo, self._clock())
        await self._store.write_blob(layout.site_structure_path(self._root), structure.to_wire())
        return structure

    async def load_audit_log(self) -> list[AuditEntry]:
        try:
            data = await self._store.read_blob(layout.audit_log_path(self._root))
            return _audit_adapter.validate_python(data) if data is not None else []
        except (MalformedRecord, ValidationError) as e:
            logger.warning("Audit log unreadable, starting a new one: %s", e)
            return []

    async def append_audit_entry(self, entry: AuditEntry) -> bool:
        """Append unless the session already has an entry; keep the newest N."""
        entries = await self.load_audit_log()
        if any(e.session_id == entry.session_id for e in entries):
            logger.debug("Audit entry for session %s already present", entry.session_id)
            return False
        entries = sorted([*entries, entry], key=lambda e: e.timestamp, reverse=True)
        entries = entries[: self._audit_max_entries]
        await self._store.write_blob(
            layout.audit_log_path(self._root), [e.to_wire() for e in entries]
        )
        return True

    def _audit_entry(self, outcome: ScanOutcome, files: list[DiscoveryFile], now: int) -> AuditEntry:
        scanning_status = outcome.scan_status
        if outcome.discovery_type == "incremental" and outcome.total_pages == 0 and outcome.total_media == 0:
            scanning_status = "skipped"
        return AuditEntry(
            session_id=outcome.session_id,
            discovery_type=outcome.discovery_type,
            discovery_status=outcome.discovery_status,
            scanning_status=scanning_status,
            discovery_duration_ms=outcome.discovery_duration_ms,
            scanning_duration_ms=(now - outcome.scan_started_at) if outcome.scan_started_at else 0,
            total_folders=len(files),
            total_documents=sum(len(f.active_documents()) for f in files),
            total_pages=outcome.total_pages,
            failed_pages=outcome.failed_pages,
            total_media=outcome.total_media,
            timestamp=now,
        )

    def _final_checkpoint(self, outcome: ScanOutcome, now: int) -> ScanningCheckpoint:
        pending = max(outcome.total_pages - outcome.scanned_pages - outcome.failed_pages, 0)
        return ScanningCheckpoint(
            total_pages=outcome.total_pages,
            scanned_pages=outcome.scanned_pages,
            pending_pages=pending,
            failed_pages=outcome.failed_pages,
            total_media=outcome.total_media,
            status="interrupted" if outcome.scan_status == "interrupted" else "completed",
            start_time=outcome.scan_started_at or now,
            end_time=now,
        )

    async def _step(self, result: CompletionResult, name: str, fn: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        try:
            return await self._retry.run(fn, *args, operation=f"completion: {name}")
        except MediaIndexError as e:
            logger.error("Completion step '%s' failed: %s", name, e)
            result.errors.append(f"{name}: {e}")
            return None

    async def complete(
        self,
        outcome: ScanOutcome,
        files: list[DiscoveryFile] | None = None,
        changed: list[str] | None = None,
    ) -> CompletionResult:
        """Run all completion steps for ``outcome``.

        ``changed`` names files the caller already reconciled in memory; they
        are written back along with whatever this reconcile changes.
        """
        result = CompletionResult()
        now = self._clock()

        if files is None:
            files, malformed = await self._discovery.load_discovery_files()
            if malformed:
                result.errors.append(f"load: {malformed} malformed discovery files")

        files, reconciled = await self.reconcile(files, finalize_running=True)
        changed = sorted({*(changed or ()), *reconciled})
        result.files = files

        written = await self._step(result, "write back", self.write_back, files, changed)
        if written is not None:
            result.written_files = written
            await self._tracker.clear()

        result.checkpoint = await self._step(
            result, "scanning checkpoint", self._checkpoints.save_scanning,
            self._final_checkpoint(outcome, now),
        )
        result.site_structure = await self._step(
            result, "site structure", self.write_site_structure, files,
        )

        if self._uploader is not None:
            deleted = {d.path for f in files for d in f.documents if d.entry_status == "deleted"}
            await self._step(result, "prune media", self._uploader.prune_pages, deleted)

        entry = self._audit_entry(outcome, files, now)
        if await self._step(result, "audit entry", self.append_audit_entry, entry):
            result.audit_entry = entry

        if self._sessions is not None:
            await self._step(result, "session cleanup", self._sessions.cleanup_old_sessions)

        logger.info(
            "Completion for session %s: %d files written, %d errors",
            outcome.session_id, len(result.written_files), len(result.errors),
        )
        return result
