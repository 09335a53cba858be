"""Extract image and video references from a fetched HTML page."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

import httpx
from bs4 import BeautifulSoup

IMAGE = "image"
VIDEO = "video"

RESOLVABLE_SCHEMES = {"http", "https"}


@dataclass(frozen=True)
class ExtractedMedia:
    type: str
    media_url: str


def to_absolute_url(base: str, candidate: Optional[str]) -> Optional[str]:
    """Resolve ``candidate`` against ``base``; ``None`` for data URIs and junk."""
    value = (candidate or "").strip()
    if not value:
        return None
    if value.lower().startswith("data:"):
        return None
    try:
        resolved = httpx.URL(base).join(value)
    except (httpx.InvalidURL, ValueError):
        return None
    if resolved.scheme not in RESOLVABLE_SCHEMES or not resolved.host:
        return None
    # Serialised form: lowercase scheme and host, percent-encoded path and query.
    return str(resolved)


def first_srcset_candidate(srcset: str) -> Optional[str]:
    first = srcset.split(",")[0].strip()
    if not first:
        return None
    return first.split(" ")[0]


def _meta_content(soup: BeautifulSoup, key: str) -> Iterator[Optional[str]]:
    for tag in soup.find_all("meta"):
        if tag.get("property") == key or tag.get("name") == key:
            yield tag.get("content")


def _candidates(soup: BeautifulSoup) -> Iterator[Tuple[str, Optional[str]]]:
    for tag in soup.find_all("img", src=True):
        yield IMAGE, tag.get("src")

    for tag in soup.find_all("source", srcset=True):
        yield IMAGE, first_srcset_candidate(tag.get("srcset") or "")

    for content in _meta_content(soup, "og:image"):
        yield IMAGE, content

    for tag in soup.find_all("video", src=True):
        yield VIDEO, tag.get("src")

    for tag in soup.find_all("source", src=True, type=True):
        if not (tag.get("type") or "").lower().startswith("video/"):
            continue
        yield VIDEO, tag.get("src")

    for content in _meta_content(soup, "og:video"):
        yield VIDEO, content


def extract_media(html: str, page_url: str) -> List[ExtractedMedia]:
    """Return deduplicated media references found in ``html``.

    Only the fixed set of locations below is searched:

    * ``img[src]``, ``source[srcset]`` (first candidate), ``og:image`` meta -> image
    * ``video[src]``, ``source[src][type^=video/]``, ``og:video`` meta -> video

    Every candidate is resolved against ``page_url``; data URIs and values
    that cannot be resolved to an absolute http(s) URL are skipped. The
    result is unique on ``(type, media_url)`` and keeps first-seen order.
    """
    if not html:
        return []
    soup = BeautifulSoup(html, "html.parser")

    results: List[ExtractedMedia] = []
    seen = set()
    for media_type, candidate in _candidates(soup):
        media_url = to_absolute_url(page_url, candidate)
        if media_url is None:
            continue
        key = (media_type, media_url)
        if key in seen:
            continue
        seen.add(key)
        results.append(ExtractedMedia(type=media_type, media_url=media_url))
    return results
