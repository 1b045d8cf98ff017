# src/core/media.py — v1
"""Media reference helpers: identity hashing, classification and merging.

Used by the scan worker when extracting references and by the upload
processor when folding batches into the media index.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable
from urllib.parse import unquote, urlparse

from mediaindex.core.models import MediaAsset, MediaOccurrence, MediaType

IMAGE_EXTENSIONS = frozenset(
    {"jpg", "jpeg", "png", "gif", "webp", "svg", "avif", "bmp", "tiff", "ico"}
)
VIDEO_EXTENSIONS = frozenset({"mp4", "webm", "mov", "avi", "m4v", "ogv"})
DOCUMENT_EXTENSIONS = frozenset({"pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx"})
MEDIA_EXTENSIONS = IMAGE_EXTENSIONS | VIDEO_EXTENSIONS | DOCUMENT_EXTENSIONS

# Image services that serve media without a file extension.
MEDIA_SERVICE_PATTERNS = (
    re.compile(r"scene7\.com/is/image/"),
    re.compile(r"/media_[0-9a-f]+"),
    re.compile(r"images\.unsplash\.com/"),
)

_EXT_RE = re.compile(r"\.([a-z0-9]{2,5})$", re.IGNORECASE)
_URL_RE = re.compile(r"(https?://|www\.)", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_FILENAME_RE = re.compile(r"\.(" + "|".join(sorted(MEDIA_EXTENSIONS)) + r")$", re.IGNORECASE)

DEFAULT_MEDIA_NAME = "Untitled Media"


def media_id_for(src: str) -> str:
    """Stable asset id derived from the source URL."""
    return hashlib.sha1(src.encode("utf-8")).hexdigest()


def occurrence_id_for(page: str, src: str, index: int | str) -> str:
    return hashlib.sha1(f"{page}-{src}-{index}".encode("utf-8")).hexdigest()


def extension_of(src: str) -> str:
    path = urlparse(src).path if "://" in src or src.startswith("//") else src.split("?")[0]
    match = _EXT_RE.search(path.split("#")[0])
    return match.group(1).lower() if match else ""


def determine_media_type(src: str) -> MediaType:
    """Classify by file extension; anything unrecognised is an image."""
    ext = extension_of(src)
    if ext in VIDEO_EXTENSIONS:
        return "video"
    if ext in DOCUMENT_EXTENSIONS:
        return "document"
    return "image"


def is_valid_media_src(src: str | None) -> bool:
    if not src or not src.strip():
        return False
    src = src.strip()
    return not (src.startswith("data:") or src.startswith("#"))


def is_media_file(src: str) -> bool:
    """True for links that point at a media file or a known image service."""
    if extension_of(src) in MEDIA_EXTENSIONS:
        return True
    return any(p.search(src) for p in MEDIA_SERVICE_PATTERNS)


def is_external_media(src: str, internal_domains: Iterable[str] = (), org: str = "", repo: str = "") -> bool:
    """Absolute URLs on hosts other than the internal domains are external.

    Relative and protocol-less paths always resolve to the content tree's own
    host and are internal. Preview hosts of the form ``*--{repo}--{org}.aem.*``
    are internal as well.
    """
    parsed = urlparse(src if not src.startswith("//") else f"https:{src}")
    host = (parsed.hostname or "").lower()
    if not host:
        return False
    if org and repo and f"--{repo}--{org}.aem.".lower() in host:
        return False
    for domain in internal_domains:
        domain = domain.lower()
        if host == domain or host.endswith(f".{domain}"):
            return False
    return True


def filename_from_url(src: str) -> str:
    """Readable display name built from the last path segment."""
    try:
        path = urlparse(src).path or src
    except ValueError:
        return DEFAULT_MEDIA_NAME
    segment = unquote(path.rstrip("/").rsplit("/", 1)[-1])
    if not segment:
        return DEFAULT_MEDIA_NAME
    stem = _EXT_RE.sub("", segment)
    stem = re.sub(r"^media_[0-9a-f]+$", "", stem)
    words = re.sub(r"[-_]+", " ", stem).strip()
    if not words:
        return DEFAULT_MEDIA_NAME
    return " ".join(w.capitalize() for w in words.split())


def is_valid_alt_text(alt: str | None) -> bool:
    """Reject alt text that is empty, markup, a URL, a file name or oversized."""
    if alt is None:
        return False
    text = alt.strip()
    if len(text) < 2 or len(text) > 200:
        return False
    if "\n" in alt or re.search(r"\s{3,}", alt):
        return False
    if _TAG_RE.search(text) or _URL_RE.search(text):
        return False
    return not _FILENAME_RE.search(text)


def merge_media(existing: Iterable[MediaAsset], incoming: Iterable[MediaAsset]) -> list[MediaAsset]:
    """Fold ``incoming`` into ``existing`` by asset id.

    ``used_in`` stays an ordered set and occurrences are deduplicated by
    occurrence id. A non-empty alt from a later reference fills an empty one.
    Order of first appearance is preserved.
    """
    merged: dict[str, MediaAsset] = {}
    for asset in list(existing) + list(incoming):
        current = merged.get(asset.id)
        if current is None:
            merged[asset.id] = asset.model_copy(
                update={
                    "used_in": list(dict.fromkeys(asset.used_in)),
                    "occurrences": _unique_occurrences(asset.occurrences),
                },
                deep=True,
            )
            continue
        current.used_in = list(dict.fromkeys(current.used_in + asset.used_in))
        current.occurrences = _unique_occurrences(current.occurrences + asset.occurrences)
        if not current.alt and asset.alt:
            current.alt = asset.alt
    return list(merged.values())


def drop_pages(assets: Iterable[MediaAsset], pages: set[str]) -> list[MediaAsset]:
    """Remove references to ``pages``; assets left without any page are dropped."""
    kept: list[MediaAsset] = []
    for asset in assets:
        used_in = [p for p in asset.used_in if p not in pages]
        if not used_in:
            continue
        kept.append(
            asset.model_copy(
                update={
                    "used_in": used_in,
                    "occurrences": [o for o in asset.occurrences if o.page_path not in pages],
                }
            )
        )
    return kept


def _unique_occurrences(occurrences: list[MediaOccurrence]) -> list[MediaOccurrence]:
    seen: dict[str, MediaOccurrence] = {}
    for occ in occurrences:
        seen.setdefault(occ.occurrence_id, occ)
    return list(seen.values())
