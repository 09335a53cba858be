"""Canonicalisation of user-submitted page URLs."""

from __future__ import annotations

import re
from typing import Iterable, List, Optional
from urllib.parse import urlsplit

import httpx

SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")
ALLOWED_SCHEMES = {"http", "https"}
DEFAULT_SCHEME = "https://"


def _valid_host(hostname: Optional[str]) -> bool:
    if not hostname:
        return False
    return not any(ch.isspace() for ch in hostname)


def normalize_url(raw: str) -> Optional[str]:
    """Return the canonical absolute http(s) URL for ``raw``, or ``None``.

    Scheme-less input is treated as https. Scheme and host are lowercased,
    path, query and fragment are percent-encoded, and dot segments and
    default ports are dropped. An empty path stays empty, so
    ``https://x.com`` and ``https://x.com/`` stay distinct.
    """
    value = (raw or "").strip()
    if not value:
        return None
    if not SCHEME_RE.match(value):
        value = DEFAULT_SCHEME + value

    try:
        parts = urlsplit(value)
        # Accessing .port validates it and raises ValueError when malformed.
        parts.port
    except ValueError:
        return None

    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        return None
    # Checked before serialising: httpx would percent-encode a space in the host.
    if not _valid_host(parts.hostname):
        return None

    try:
        return str(httpx.URL(value))
    except (httpx.InvalidURL, ValueError):
        return None


def normalize_urls(raws: Iterable[str], limit: Optional[int] = None) -> List[str]:
    """Normalise a submitted batch: truncate to ``limit``, drop rejects, dedupe.

    Order of first appearance is preserved.
    """
    values = list(raws)
    if limit is not None:
        values = values[:limit]

    unique: List[str] = []
    seen = set()
    for raw in values:
        url = normalize_url(raw)
        if url is None or url in seen:
            continue
        seen.add(url)
        unique.append(url)
    return unique
