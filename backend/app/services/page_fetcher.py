from __future__ import annotations

import asyncio
from typing import Optional

import httpx
import structlog

from backend.app.core.settings import settings

USER_AGENT = "media-scraper/1.0"
ACCEPT_HTML = "text/html,application/xhtml+xml"

logger = structlog.get_logger(__name__)


class FetchError(Exception):
    """Raised when a page could not be retrieved (network, DNS, TLS, protocol)."""


class FetchTimeoutError(FetchError):
    """Raised when the fetch exceeded its overall deadline."""


async def _read_html(client: httpx.AsyncClient, url: str, max_chars: int) -> str:
    chunks = []
    length = 0
    async with client.stream(
        "GET",
        url,
        headers={"User-Agent": USER_AGENT, "Accept": ACCEPT_HTML},
        follow_redirects=True,
    ) as response:
        # Content type and status are not checked; mislabelled pages are common
        # and error pages may still carry media.
        async for chunk in response.aiter_text():
            remaining = max_chars - length
            if len(chunk) >= remaining:
                chunks.append(chunk[:remaining])
                length = max_chars
                break
            chunks.append(chunk)
            length += len(chunk)
    html = "".join(chunks)
    if length >= max_chars:
        logger.debug("page_truncated", url=url, max_chars=max_chars)
    return html


async def fetch_html(
    url: str,
    *,
    client: httpx.AsyncClient,
    timeout: Optional[float] = None,
    max_chars: Optional[int] = None,
) -> str:
    """Fetch ``url`` and return at most ``max_chars`` characters of its body.

    ``timeout`` is a deadline for the whole exchange, headers and body
    together. Bodies over the limit are truncated, not rejected.
    """
    timeout = timeout if timeout is not None else settings.fetch_timeout_seconds
    max_chars = max_chars if max_chars is not None else settings.max_html_chars
    try:
        return await asyncio.wait_for(_read_html(client, url, max_chars), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise FetchTimeoutError(f"Timed out after {timeout:g}s fetching {url}") from exc
    except httpx.TimeoutException as exc:
        raise FetchTimeoutError(f"Timed out fetching {url}: {str(exc) or type(exc).__name__}") from exc
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise FetchError(str(exc) or type(exc).__name__) from exc


def build_client(timeout: Optional[float] = None) -> httpx.AsyncClient:
    """Shared client for a worker process; pool limits follow the concurrency setting."""
    timeout = timeout if timeout is not None else settings.fetch_timeout_seconds
    limits = httpx.Limits(
        max_connections=settings.scrape_concurrency,
        max_keepalive_connections=settings.scrape_concurrency,
    )
    return httpx.AsyncClient(timeout=timeout, limits=limits)
