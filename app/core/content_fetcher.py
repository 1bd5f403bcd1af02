"""Page fetcher for the metadata extraction pipeline.

Downloads the raw HTML of a submitted URL and renders it to readable text
with trafilatura for providers that cannot retrieve pages themselves.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

import httpx
import trafilatura
from trafilatura.settings import use_config

logger = logging.getLogger(__name__)


class FetchErrorType(str, Enum):
    """Classification of fetch errors for logging."""

    TIMEOUT = "timeout"  # Deadline exceeded
    HTTP_4XX = "http_4xx"
    HTTP_5XX = "http_5xx"
    CONNECTION_ERROR = "connection_error"
    TOO_LARGE = "too_large"
    NO_CONTENT = "no_content"


@dataclass
class FetchResult:
    """Result of a page fetch. Never raised, always returned."""

    success: bool
    html: str | None = None
    error_type: FetchErrorType | None = None
    error_message: str | None = None
    http_status: int | None = None

    @property
    def timed_out(self) -> bool:
        return self.error_type == FetchErrorType.TIMEOUT


# Browser-like identity; many origins block obvious bots
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
)

# Maximum content size to fetch (10MB)
MAX_CONTENT_SIZE = 10 * 1024 * 1024

# HTTP timeout
FETCH_TIMEOUT = 30.0

TRUNCATION_MARKER = "\n\n[... content truncated ...]"


class PageFetcher:
    """Fetches raw HTML for a single pipeline invocation.

    Use as an async context manager so the connection pool is released
    even when the invocation is cancelled mid-request.
    """

    def __init__(
        self,
        timeout: float = FETCH_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> PageFetcher:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                transport=self._transport,
                headers={
                    "User-Agent": USER_AGENT,
                    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                    "Accept-Language": "en-US,en;q=0.9",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str) -> FetchResult:
        """Fetch the raw HTML of a URL.

        Args:
            url: The URL to fetch.

        Returns:
            FetchResult with the HTML or error information.
        """
        try:
            client = await self._get_client()
            response = await client.get(url)

            if response.status_code >= 500:
                return FetchResult(
                    success=False,
                    error_type=FetchErrorType.HTTP_5XX,
                    error_message=f"Server error: {response.status_code}",
                    http_status=response.status_code,
                )

            if response.status_code >= 400:
                return FetchResult(
                    success=False,
                    error_type=FetchErrorType.HTTP_4XX,
                    error_message=f"Client error: {response.status_code}",
                    http_status=response.status_code,
                )

            content_length = response.headers.get("content-length")
            if content_length and content_length.isdigit() and int(content_length) > MAX_CONTENT_SIZE:
                return FetchResult(
                    success=False,
                    error_type=FetchErrorType.TOO_LARGE,
                    error_message=f"Content too large: {content_length} bytes",
                    http_status=response.status_code,
                )

            html = response.text
            if not html.strip():
                return FetchResult(
                    success=False,
                    error_type=FetchErrorType.NO_CONTENT,
                    error_message="Empty response body",
                    http_status=response.status_code,
                )

            return FetchResult(success=True, html=html, http_status=response.status_code)

        except httpx.TimeoutException:
            return FetchResult(
                success=False,
                error_type=FetchErrorType.TIMEOUT,
                error_message=f"Request timed out after {self._timeout}s",
            )

        except httpx.HTTPError as e:
            return FetchResult(
                success=False,
                error_type=FetchErrorType.CONNECTION_ERROR,
                error_message=f"Connection error: {e}",
            )


_trafilatura_config = use_config()
_trafilatura_config.set("DEFAULT", "EXTRACTION_TIMEOUT", "0")


def _render_sync(html: str) -> str | None:
    return trafilatura.extract(
        html,
        config=_trafilatura_config,
        output_format="markdown",
        include_comments=False,
        include_tables=True,
        favor_recall=True,
    )


async def render_page_text(html: str) -> str:
    """Render fetched HTML to readable markdown text.

    trafilatura is CPU-bound, so it runs in the default thread pool.
    Returns an empty string when nothing could be extracted.
    """
    if not html or not html.strip():
        return ""
    loop = asyncio.get_running_loop()
    text = await loop.run_in_executor(None, _render_sync, html)
    return (text or "").strip()


def truncate_text(text: str, limit: int) -> str:
    """Cap text at limit characters, appending a truncation marker."""
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + TRUNCATION_MARKER
