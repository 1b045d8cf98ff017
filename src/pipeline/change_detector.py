# src/pipeline/change_detector.py — v1
"""Document change detector: decide which documents need (re)scanning.

Decision table, evaluated top to bottom:

    entry deleted                          -> skip
    force rescan                           -> scan (force)
    scan status pending / failed           -> scan (new / retry)
    no scan status                         -> scan if not complete or flagged
                                              (new / changed / incomplete)
    no last scan time                      -> scan (incomplete)
    modified after last scan               -> scan (changed), flag needs_rescan
    otherwise                              -> skip (unchanged)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from mediaindex.core.models import DiscoveryFile, Document, ScanReason, ScanTarget

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanDecision:
    needs_scan: bool
    reason: ScanReason | None = None
    mark_needs_rescan: bool = False


@dataclass
class ChangeStats:
    """Incremental scan statistics reported alongside the scan set."""

    new: int = 0
    changed: int = 0
    unchanged: int = 0
    to_scan: int = 0
    skipped: int = 0
    by_reason: dict[str, int] = field(default_factory=dict)


@dataclass
class ScanPlan:
    targets: list[ScanTarget]
    stats: ChangeStats


def decide(document: Document, force_rescan: bool = False) -> ScanDecision:
    """Apply the decision table to one document."""
    if document.entry_status == "deleted":
        return ScanDecision(False)
    if force_rescan:
        return ScanDecision(True, "force")

    status = document.scan_status
    if status == "failed":
        return ScanDecision(True, "retry")
    if status == "pending":
        return ScanDecision(True, "new")
    if status is None:
        if document.scan_complete is None:
            return ScanDecision(True, "new")
        if document.needs_rescan:
            return ScanDecision(True, "changed")
        if not document.scan_complete:
            return ScanDecision(True, "incomplete")

    if document.last_scanned_at is None:
        return ScanDecision(True, "incomplete")
    if document.last_modified is not None and document.last_modified > document.last_scanned_at:
        return ScanDecision(True, "changed", mark_needs_rescan=True)
    return ScanDecision(False)


class DocumentChangeDetector:
    """Compute the scan set over all discovery files."""

    def __init__(self, force_rescan: bool = False) -> None:
        self._force = force_rescan

    def plan(self, files: Iterable[DiscoveryFile]) -> ScanPlan:
        """Return scan targets in discovery order plus statistics.

        Documents flagged as changed get ``needs_rescan = True`` on the
        target's copy; the discovery records themselves are not mutated.
        """
        targets: list[ScanTarget] = []
        stats = ChangeStats()
        for discovery_file in files:
            for document in discovery_file.documents:
                if not document.path:
                    logger.warning(
                        "Skipping document without path in %s", discovery_file.file_name
                    )
                    stats.skipped += 1
                    continue
                decision = decide(document, self._force)
                if not decision.needs_scan:
                    if document.entry_status == "deleted":
                        stats.skipped += 1
                    else:
                        stats.unchanged += 1
                    continue

                doc = document
                if decision.mark_needs_rescan:
                    doc = document.model_copy(update={"needs_rescan": True})
                targets.append(
                    ScanTarget(
                        document=doc,
                        source_file=discovery_file.file_name,
                        reason=decision.reason,
                    )
                )
                stats.by_reason[decision.reason] = stats.by_reason.get(decision.reason, 0) + 1
                if decision.reason == "new":
                    stats.new += 1
                elif decision.reason == "changed":
                    stats.changed += 1

        stats.to_scan = len(targets)
        logger.info(
            "Scan plan: %d to scan (new=%d, changed=%d), %d unchanged, %d skipped",
            stats.to_scan, stats.new, stats.changed, stats.unchanged, stats.skipped,
        )
        return ScanPlan(targets=targets, stats=stats)
