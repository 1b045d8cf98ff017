# src/pipeline/discovery.py — v1
"""Discovery coordinator: crawl the content tree into discovery files.

Top-level folders are crawled breadth-first, one at a time, in sorted order.
Each folder's pages become one discovery file and the discovery checkpoint is
persisted after every folder, so an interrupted crawl resumes at folder
granularity. Pages at the tree root form the ``.root`` discovery file.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from fnmatch import fnmatch
from typing import Callable, Literal

from pydantic import TypeAdapter, ValidationError

from mediaindex.core.errors import MalformedRecord, MediaIndexError
from mediaindex.core.models import (
    DiscoveryCheckpoint,
    DiscoveryFile,
    DiscoveryType,
    Document,
    FileEntry,
    now_ms,
)
from mediaindex.pipeline.checkpoints import CheckpointStore
from mediaindex.pipeline.delta import DeltaProcessor, merge_documents
from mediaindex.storage import layout
from mediaindex.storage.base_blob_store import BaseBlobStore

logger = logging.getLogger(__name__)

PAGE_EXTENSION = "html"

_documents_adapter = TypeAdapter(list[Document])


class DiscoveryState(str, Enum):
    IDLE = "idle"
    CRAWLING = "crawling"
    COMPLETE = "complete"
    INTERRUPTED = "interrupted"
    FAILED = "failed"


@dataclass
class DiscoveryPlan:
    """What the coordinator will do for a requested discovery."""

    mode: Literal["skip", "full", "resume", "incremental"]
    discovery_type: DiscoveryType
    checkpoint: DiscoveryCheckpoint
    existing: list[DiscoveryFile] = field(default_factory=list)

    @property
    def needs_crawl(self) -> bool:
        return self.mode != "skip"


@dataclass
class DiscoveryResult:
    state: DiscoveryState
    discovery_type: DiscoveryType
    files: list[DiscoveryFile] = field(default_factory=list)
    total_folders: int = 0
    total_documents: int = 0
    affected_folders: list[str] = field(default_factory=list)
    skipped: bool = False
    duration_ms: int = 0
    error: str | None = None


def is_excluded(relative_path: str, patterns: list[str]) -> bool:
    """Match a tree-relative path against exclusion patterns.

    ``/drafts/*`` excludes ``/drafts`` and everything below it; other
    patterns are shell-style globs on the full relative path.
    """
    for pattern in patterns:
        if pattern.endswith("/*"):
            prefix = pattern[:-2].rstrip("/")
            if relative_path == prefix or relative_path.startswith(prefix + "/"):
                return True
        elif fnmatch(relative_path, pattern):
            return True
    return False


class DiscoveryCoordinator:
    """Enumerate every page of the tree into per-folder discovery files."""

    def __init__(
        self,
        store: BaseBlobStore,
        checkpoints: CheckpointStore,
        delta: DeltaProcessor,
        root: str,
        excludes: list[str] | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._checkpoints = checkpoints
        self._delta = delta
        self._root = root
        self._excludes = list(excludes or [])
        self._clock = clock
        self._stop_requested = False
        self.state = DiscoveryState.IDLE

    def stop(self) -> None:
        """Stop after the folder currently being crawled."""
        self._stop_requested = True

    def reset(self) -> None:
        """Clear a stop request before a new cycle."""
        self._stop_requested = False

    # --- Discovery files ---

    async def load_discovery_files(self) -> tuple[list[DiscoveryFile], int]:
        """Read every discovery file.

        Returns:
            (files sorted by name, number of malformed files skipped).
        """
        files: list[DiscoveryFile] = []
        malformed = 0
        for entry in await self._store.list(layout.pages_dir(self._root)):
            if entry.ext != "json":
                continue
            path = layout.discovery_file_path(self._root, entry.name)
            try:
                data = await self._store.read_blob(path)
                if data is None:
                    continue
                documents = _documents_adapter.validate_python(data)
            except (MalformedRecord, ValidationError) as e:
                logger.warning("Malformed discovery file %s: %s", entry.name, e)
                malformed += 1
                continue
            files.append(DiscoveryFile(name=entry.name, documents=documents))
        return sorted(files, key=lambda f: f.name), malformed

    async def save_discovery_file(self, discovery_file: DiscoveryFile) -> None:
        await self._store.write_blob(
            layout.discovery_file_path(self._root, discovery_file.name),
            [d.to_wire() for d in discovery_file.documents],
        )

    # --- Planning ---

    async def plan(self, discovery_type: DiscoveryType | None = None, force: bool = False) -> DiscoveryPlan:
        """Decide between skipping, a fresh full crawl, a resume and an incremental run.

        Args:
            discovery_type: ``incremental`` to diff against the baseline,
                ``full`` (or None) for a full crawl when needed.
            force: Crawl from scratch even if discovery files exist.
        """
        checkpoint = await self._checkpoints.load_discovery()
        existing, malformed = await self.load_discovery_files()

        if force:
            return DiscoveryPlan("full", "full", DiscoveryCheckpoint(), existing)
        if malformed:
            logger.warning("%d malformed discovery files, running full discovery", malformed)
            return DiscoveryPlan("full", "full", DiscoveryCheckpoint(), existing)
        if checkpoint.is_resumable and checkpoint.discovery_type == "incremental" and existing:
            # Baseline is only rewritten at the end, so rerunning is safe.
            return DiscoveryPlan("incremental", "incremental", DiscoveryCheckpoint(), existing)
        if checkpoint.is_resumable:
            return DiscoveryPlan("resume", "full", checkpoint, existing)
        if not existing:
            return DiscoveryPlan("full", "full", DiscoveryCheckpoint(), existing)
        if discovery_type == "incremental":
            return DiscoveryPlan("incremental", "incremental", DiscoveryCheckpoint(), existing)
        return DiscoveryPlan("skip", checkpoint.discovery_type, checkpoint, existing)

    # --- Crawling ---

    def _relative(self, path: str) -> str:
        return layout.relative_to_root(self._root, path)

    async def list_groups(self) -> tuple[list[FileEntry], list[FileEntry]]:
        """Top-level folders and root pages, excluded and hidden entries removed."""
        folders: list[FileEntry] = []
        root_pages: list[FileEntry] = []
        for entry in await self._store.list(self._root):
            if entry.name.startswith(".") or is_excluded(self._relative(entry.path), self._excludes):
                continue
            if entry.is_folder:
                folders.append(entry)
            elif entry.ext == PAGE_EXTENSION:
                root_pages.append(entry)
        return sorted(folders, key=lambda e: e.name), sorted(root_pages, key=lambda e: e.path)

    async def crawl_folder(self, path: str) -> list[FileEntry]:
        """Breadth-first walk below ``path`` collecting pages, sorted by path."""
        pages: list[FileEntry] = []
        queue: deque[str] = deque([path])
        while queue:
            current = queue.popleft()
            for entry in await self._store.list(current):
                if entry.name.startswith("."):
                    continue
                if is_excluded(self._relative(entry.path), self._excludes):
                    continue
                if entry.is_folder:
                    queue.append(entry.path)
                elif entry.ext == PAGE_EXTENSION:
                    pages.append(entry)
        return sorted(pages, key=lambda e: e.path)

    async def _crawl_listing(self) -> dict[str, list[FileEntry]]:
        folders, root_pages = await self.list_groups()
        listing: dict[str, list[FileEntry]] = {}
        if root_pages:
            listing[layout.ROOT_FOLDER_NAME] = root_pages
        for folder in folders:
            listing[layout.folder_name_for(folder.path)] = await self.crawl_folder(folder.path)
        return listing

    async def run(self, plan: DiscoveryPlan) -> DiscoveryResult:
        """Execute a plan. Never raises for crawl failures; see ``result.error``.

        A stop requested before the call is honoured; see ``reset``.
        """
        started = self._clock()

        if plan.mode == "skip":
            self.state = DiscoveryState.COMPLETE
            total = sum(len(f.active_documents()) for f in plan.existing)
            logger.info(
                "Discovery skipped: %d files with %d documents already exist",
                len(plan.existing), total,
            )
            return DiscoveryResult(
                state=self.state,
                discovery_type=plan.discovery_type,
                files=plan.existing,
                total_folders=len(plan.existing),
                total_documents=total,
                skipped=True,
            )

        self.state = DiscoveryState.CRAWLING
        try:
            if plan.mode == "incremental":
                result = await self._run_incremental(plan, started)
            else:
                result = await self._run_full(plan, started)
        except MediaIndexError as e:
            logger.error("Discovery failed: %s", e)
            self.state = DiscoveryState.FAILED
            return DiscoveryResult(
                state=self.state,
                discovery_type=plan.discovery_type,
                duration_ms=self._clock() - started,
                error=str(e),
            )
        self.state = result.state
        return result

    async def _run_full(self, plan: DiscoveryPlan, started: int) -> DiscoveryResult:
        folders, root_pages = await self.list_groups()
        groups: list[tuple[str, FileEntry | None]] = []
        if root_pages:
            groups.append((layout.ROOT_FOLDER_NAME, None))
        groups.extend((layout.folder_name_for(f.path), f) for f in folders)

        if plan.mode == "resume":
            checkpoint = plan.checkpoint.model_copy(
                update={"status": "running", "total_folders": len(groups)}
            )
            logger.info(
                "Resuming discovery at %d/%d folders",
                checkpoint.completed_folders, checkpoint.total_folders,
            )
        else:
            checkpoint = DiscoveryCheckpoint(
                total_folders=len(groups),
                status="running",
                discovery_type="full",
                start_time=started,
            )
        checkpoint = await self._checkpoints.save_discovery(checkpoint)
        existing = {f.name: f for f in plan.existing}

        listing: dict[str, list[FileEntry]] = {}
        files: list[DiscoveryFile] = []
        for name, folder in groups:
            if checkpoint.folder_status.get(name) == "completed" and name in existing:
                previous = existing[name]
                files.append(previous)
                listing[name] = [
                    FileEntry(name=d.name, path=d.path, ext=PAGE_EXTENSION, last_modified=d.last_modified)
                    for d in previous.active_documents()
                ]
                continue

            if self._stop_requested:
                checkpoint = await self._checkpoints.save_discovery(
                    checkpoint.model_copy(update={"status": "interrupted"})
                )
                logger.info("Discovery interrupted after %d folders", checkpoint.completed_folders)
                return DiscoveryResult(
                    state=DiscoveryState.INTERRUPTED,
                    discovery_type=checkpoint.discovery_type,
                    files=files,
                    total_folders=checkpoint.total_folders,
                    total_documents=checkpoint.total_documents,
                    duration_ms=self._clock() - started,
                )

            entries = root_pages if folder is None else await self.crawl_folder(folder.path)
            discovery_file = DiscoveryFile(
                name=name, documents=[Document.discovered(e) for e in entries]
            )
            await self.save_discovery_file(discovery_file)
            files.append(discovery_file)
            listing[name] = entries

            checkpoint = await self._checkpoints.save_discovery(
                checkpoint.model_copy(
                    update={
                        "completed_folders": checkpoint.completed_folders + 1,
                        "total_documents": checkpoint.total_documents + len(entries),
                        "folder_status": {**checkpoint.folder_status, name: "completed"},
                    }
                )
            )
            logger.debug("Discovered %d pages in %s", len(entries), name)

        # Folders that disappeared from the tree lose their discovery file.
        current = {name for name, _ in groups}
        for name in sorted(set(existing) - current):
            await self._store.delete(layout.discovery_file_path(self._root, name))
            logger.info("Removed discovery file of vanished folder %s", name)

        await self._delta.save_baseline(listing)
        finished = self._clock()
        total_documents = sum(len(f.documents) for f in files)
        await self._checkpoints.save_discovery(
            checkpoint.model_copy(
                update={
                    "status": "completed",
                    "end_time": finished,
                    "total_documents": total_documents,
                    "completed_folders": len(groups),
                }
            )
        )
        logger.info("Full discovery: %d folders, %d documents", len(groups), total_documents)
        return DiscoveryResult(
            state=DiscoveryState.COMPLETE,
            discovery_type="full",
            files=files,
            total_folders=len(groups),
            total_documents=total_documents,
            affected_folders=[name for name, _ in groups],
            duration_ms=finished - started,
        )

    async def _run_incremental(self, plan: DiscoveryPlan, started: int) -> DiscoveryResult:
        checkpoint = await self._checkpoints.save_discovery(
            DiscoveryCheckpoint(status="running", discovery_type="incremental", start_time=started)
        )
        listing = await self._crawl_listing()
        baseline = await self._delta.load_baseline(plan.existing)
        delta = self._delta.compute(baseline, listing)

        files = {f.name: f for f in plan.existing}
        now = self._clock()
        for name in delta.affected_folders:
            previous = files.get(name, DiscoveryFile(name=name))
            merged = DiscoveryFile(
                name=name,
                documents=merge_documents(previous.documents, listing.get(name, []), now),
            )
            await self.save_discovery_file(merged)
            files[name] = merged
            checkpoint = await self._checkpoints.save_discovery(
                checkpoint.model_copy(
                    update={
                        "completed_folders": checkpoint.completed_folders + 1,
                        "folder_status": {**checkpoint.folder_status, name: "completed"},
                    }
                )
            )

        await self._delta.save_baseline(listing)
        ordered = [files[name] for name in sorted(files)]
        total_documents = sum(len(f.active_documents()) for f in ordered)
        finished = self._clock()
        await self._checkpoints.save_discovery(
            checkpoint.model_copy(
                update={
                    "status": "completed",
                    "total_folders": len(ordered),
                    "total_documents": total_documents,
                    "end_time": finished,
                }
            )
        )
        return DiscoveryResult(
            state=DiscoveryState.COMPLETE,
            discovery_type="incremental",
            files=ordered,
            total_folders=len(ordered),
            total_documents=total_documents,
            affected_folders=delta.affected_folders,
            duration_ms=finished - started,
        )
