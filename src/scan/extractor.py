# src/scan/extractor.py — v1
"""Extract media references from a page's HTML.

Sources, in document order per kind:
    <picture>        nested <img> src, else the first <source srcset> candidate
    <img>            outside <picture>
    <video>          src attribute and nested <source src>
    <a href>         links to media files or image services
    style="..."      background url(...)

References are deduplicated by src within the page; every reference still
records its own occurrence.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from bs4 import BeautifulSoup, Tag

from mediaindex.core.media import (
    determine_media_type,
    filename_from_url,
    is_external_media,
    is_media_file,
    is_valid_alt_text,
    is_valid_media_src,
    media_id_for,
    occurrence_id_for,
)
from mediaindex.core.models import MediaAsset, MediaOccurrence

logger = logging.getLogger(__name__)

CONTEXT_MAX_CHARS = 80
NO_CONTEXT = "No contextual text found"

_BACKGROUND_URL_RE = re.compile(r"url\(\s*['\"]?([^'\")]+)['\"]?\s*\)", re.IGNORECASE)
_CONTEXT_PARENTS = ("figure", "p", "li", "td", "section", "article", "div", "a")


@dataclass
class ExtractionOptions:
    internal_domains: list[str] = field(default_factory=list)
    org: str = ""
    repo: str = ""


def _first_srcset_candidate(srcset: str | None) -> str | None:
    if not srcset:
        return None
    first = srcset.split(",")[0].strip()
    return first.split()[0] if first else None


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def contextual_text(element: Tag) -> str:
    """Nearest surrounding text, truncated to 80 characters."""
    caption = None
    figure = element.find_parent("figure")
    if figure is not None:
        caption = figure.find("figcaption")
    if caption is not None and caption.get_text(strip=True):
        return _collapse(caption.get_text(" "))[:CONTEXT_MAX_CHARS]

    for parent in element.parents:
        if parent.name not in _CONTEXT_PARENTS:
            continue
        text = _collapse(parent.get_text(" "))
        if text:
            return text[:CONTEXT_MAX_CHARS]
    return NO_CONTEXT


class _PageCollector:
    """Accumulate assets for one page, merging repeated sources."""

    def __init__(self, page: str, options: ExtractionOptions) -> None:
        self._page = page
        self._options = options
        self._assets: dict[str, MediaAsset] = {}
        self._index = 0

    def add(self, src: str | None, element: Tag, alt: str, occurrence_type: str) -> None:
        if not is_valid_media_src(src):
            return
        src = src.strip()
        alt = _collapse(alt or "")
        has_alt = is_valid_alt_text(alt)
        occurrence = MediaOccurrence(
            occurrence_id=occurrence_id_for(self._page, src, self._index),
            page_path=self._page,
            alt_text=alt if has_alt else "",
            has_alt_text=has_alt,
            occurrence_type=occurrence_type,
            contextual_text=contextual_text(element),
            context=element.parent.name if element.parent is not None else "",
        )
        self._index += 1

        asset = self._assets.get(src)
        if asset is None:
            self._assets[src] = MediaAsset(
                id=media_id_for(src),
                src=src,
                name=filename_from_url(src),
                alt=occurrence.alt_text,
                type=determine_media_type(src) if occurrence_type != "video" else "video",
                is_external=is_external_media(
                    src, self._options.internal_domains, self._options.org, self._options.repo
                ),
                used_in=[self._page],
                occurrences=[occurrence],
            )
            return
        asset.occurrences.append(occurrence)
        if not asset.alt and occurrence.alt_text:
            asset.alt = occurrence.alt_text

    def assets(self) -> list[MediaAsset]:
        return list(self._assets.values())


def extract_media(html: str, page: str, options: ExtractionOptions | None = None) -> list[MediaAsset]:
    """Return the deduplicated media assets referenced by one page.

    Args:
        html: Page HTML.
        page: Content path of the page, recorded in ``used_in``.
        options: Internal-domain context for the external flag.
    """
    options = options or ExtractionOptions()
    soup = BeautifulSoup(html, "html.parser")
    collector = _PageCollector(page, options)

    for picture in soup.find_all("picture"):
        img = picture.find("img")
        src = img.get("src") if img is not None else None
        if not is_valid_media_src(src):
            source = picture.find("source", srcset=True)
            src = _first_srcset_candidate(source.get("srcset")) if source is not None else None
        anchor = img if img is not None else picture
        collector.add(src, anchor, img.get("alt", "") if img is not None else "", "image")

    for img in soup.find_all("img"):
        if img.find_parent("picture") is not None:
            continue
        src = img.get("src") or _first_srcset_candidate(img.get("srcset"))
        collector.add(src, img, img.get("alt", ""), "image")

    for video in soup.find_all("video"):
        if video.get("src"):
            collector.add(video.get("src"), video, video.get("title", ""), "video")
        for source in video.find_all("source"):
            collector.add(source.get("src"), video, video.get("title", ""), "video")

    for link in soup.find_all("a", href=True):
        href = link["href"]
        if not is_valid_media_src(href) or not is_media_file(href):
            continue
        label = link.get("title") or link.get_text(" ", strip=True)
        collector.add(href, link, label, determine_media_type(href))

    for element in soup.find_all(style=_BACKGROUND_URL_RE):
        for match in _BACKGROUND_URL_RE.finditer(element.get("style", "")):
            collector.add(match.group(1), element, "", "background")

    assets = collector.assets()
    logger.debug("Extracted %d media assets from %s", len(assets), page)
    return assets
