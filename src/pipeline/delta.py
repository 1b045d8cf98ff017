# src/pipeline/delta.py — v1
"""Delta processor for incremental discovery.

Compares a persisted baseline snapshot (path and lastModified of every
document, grouped by discovery folder) with a fresh listing, and merges the
changes into the existing discovery records of affected folders only.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Callable

from pydantic import Field, ValidationError

from mediaindex.core.errors import MalformedRecord
from mediaindex.core.models import DiscoveryFile, Document, FileEntry, WireModel, now_ms
from mediaindex.storage import layout
from mediaindex.storage.base_blob_store import BaseBlobStore

logger = logging.getLogger(__name__)


class BaselineEntry(WireModel):
    path: str
    last_modified: int | None = None


class StructureBaseline(WireModel):
    """Snapshot of the crawled tree used as the diff base of the next run."""

    created_at: int = 0
    folders: dict[str, list[BaselineEntry]] = Field(default_factory=dict)


@dataclass
class FolderDelta:
    added: list[FileEntry] = field(default_factory=list)
    removed: list[BaselineEntry] = field(default_factory=list)
    modified: list[FileEntry] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.modified)


@dataclass
class DiscoveryDelta:
    folders: dict[str, FolderDelta] = field(default_factory=dict)

    @property
    def affected_folders(self) -> list[str]:
        return sorted(name for name, d in self.folders.items() if d.has_changes)

    @property
    def has_changes(self) -> bool:
        return bool(self.affected_folders)

    def totals(self) -> dict[str, int]:
        return {
            "added": sum(len(d.added) for d in self.folders.values()),
            "removed": sum(len(d.removed) for d in self.folders.values()),
            "modified": sum(len(d.modified) for d in self.folders.values()),
        }


def compute_delta(
    baseline: StructureBaseline, listing: Mapping[str, list[FileEntry]]
) -> DiscoveryDelta:
    """Diff each folder of ``listing`` against the baseline by document path."""
    delta = DiscoveryDelta()
    for name in sorted(set(baseline.folders) | set(listing)):
        before = {e.path: e for e in baseline.folders.get(name, [])}
        after = {e.path: e for e in listing.get(name, [])}
        folder = FolderDelta(
            added=[after[p] for p in sorted(after) if p not in before],
            removed=[before[p] for p in sorted(before) if p not in after],
            modified=[
                after[p] for p in sorted(after)
                if p in before and before[p].last_modified != after[p].last_modified
            ],
        )
        delta.folders[name] = folder
    return delta


def merge_documents(existing: Iterable[Document], current: Iterable[FileEntry], now: int) -> list[Document]:
    """Merge a fresh folder listing into its existing discovery records.

    New pages enter as pending; pages whose lastModified changed are reset to
    pending with their attempt counter cleared; unchanged pages keep their
    record; pages gone from the listing are marked deleted. Sorted by path.
    """
    by_path = {d.path: d for d in existing}
    seen: set[str] = set()
    merged: list[Document] = []

    for entry in current:
        seen.add(entry.path)
        doc = by_path.get(entry.path)
        if doc is None or doc.entry_status == "deleted":
            merged.append(Document.discovered(entry))
        elif doc.last_modified != entry.last_modified:
            merged.append(
                doc.model_copy(
                    update={
                        "last_modified": entry.last_modified,
                        "scan_status": "pending",
                        "scan_complete": False,
                        "needs_rescan": True,
                        "scan_attempts": 0,
                        "entry_status": "pending",
                    }
                )
            )
        else:
            merged.append(doc)

    for path, doc in by_path.items():
        if path in seen:
            continue
        if doc.entry_status == "deleted":
            merged.append(doc)
        else:
            merged.append(doc.model_copy(update={"entry_status": "deleted", "deleted_at": now}))

    return sorted(merged, key=lambda d: d.path)


def baseline_from_listing(listing: Mapping[str, list[FileEntry]], created_at: int) -> StructureBaseline:
    return StructureBaseline(
        created_at=created_at,
        folders={
            name: [BaselineEntry(path=e.path, last_modified=e.last_modified) for e in entries]
            for name, entries in sorted(listing.items())
        },
    )


def baseline_from_files(files: Iterable[DiscoveryFile], created_at: int = 0) -> StructureBaseline:
    """Reconstruct a baseline from discovery records (deleted entries excluded)."""
    return StructureBaseline(
        created_at=created_at,
        folders={
            f.name: [
                BaselineEntry(path=d.path, last_modified=d.last_modified)
                for d in f.active_documents()
            ]
            for f in files
        },
    )


class DeltaProcessor:
    """Load/save the baseline snapshot and compute discovery deltas."""

    def __init__(self, store: BaseBlobStore, root: str, clock: Callable[[], int] = now_ms) -> None:
        self._store = store
        self._root = root
        self._clock = clock

    async def load_baseline(self, fallback: Iterable[DiscoveryFile] = ()) -> StructureBaseline:
        """Persisted baseline, or one derived from ``fallback`` discovery files."""
        path = layout.baseline_path(self._root)
        try:
            data = await self._store.read_blob(path)
            if data is not None:
                return StructureBaseline.model_validate(data)
        except (MalformedRecord, ValidationError) as e:
            logger.warning("Structure baseline unusable, rebuilding from discovery files: %s", e)
        return baseline_from_files(fallback, self._clock())

    async def save_baseline(self, listing: Mapping[str, list[FileEntry]]) -> StructureBaseline:
        baseline = baseline_from_listing(listing, self._clock())
        await self._store.write_blob(layout.baseline_path(self._root), baseline.to_wire())
        return baseline

    def compute(self, baseline: StructureBaseline, listing: Mapping[str, list[FileEntry]]) -> DiscoveryDelta:
        delta = compute_delta(baseline, listing)
        totals = delta.totals()
        logger.info(
            "Discovery delta: %d added, %d removed, %d modified across %d folders",
            totals["added"], totals["removed"], totals["modified"], len(delta.affected_folders),
        )
        return delta
