"""Tests for content_fetcher.py"""

import httpx
import pytest

from app.core.content_fetcher import (
    TRUNCATION_MARKER,
    USER_AGENT,
    FetchErrorType,
    FetchResult,
    PageFetcher,
    render_page_text,
    truncate_text,
)


def fetcher_for(handler) -> PageFetcher:
    return PageFetcher(timeout=5.0, transport=httpx.MockTransport(handler))


class TestFetchResult:
    """Tests for FetchResult dataclass."""

    def test_successful_result(self):
        result = FetchResult(success=True, html="<html></html>", http_status=200)
        assert result.success is True
        assert result.timed_out is False

    def test_timeout_classified(self):
        result = FetchResult(
            success=False,
            error_type=FetchErrorType.TIMEOUT,
            error_message="Request timed out",
        )
        assert result.timed_out is True


@pytest.mark.asyncio
class TestPageFetcher:
    async def test_fetch_success_returns_html(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html><title>Hi</title></html>")

        async with fetcher_for(handler) as fetcher:
            result = await fetcher.fetch("https://example.com/post")

        assert result.success is True
        assert "<title>Hi</title>" in result.html
        assert result.http_status == 200

    async def test_sends_browser_user_agent(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["ua"] = request.headers.get("user-agent")
            return httpx.Response(200, text="<html></html>")

        async with fetcher_for(handler) as fetcher:
            await fetcher.fetch("https://example.com/post")

        assert seen["ua"] == USER_AGENT
        assert "Mozilla/5.0" in seen["ua"]

    async def test_server_error_is_not_raised(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="boom")

        async with fetcher_for(handler) as fetcher:
            result = await fetcher.fetch("https://example.com/post")

        assert result.success is False
        assert result.error_type == FetchErrorType.HTTP_5XX
        assert result.http_status == 500
        assert result.html is None

    async def test_client_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        async with fetcher_for(handler) as fetcher:
            result = await fetcher.fetch("https://example.com/missing")

        assert result.error_type == FetchErrorType.HTTP_4XX

    async def test_timeout_classified_as_deadline(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with fetcher_for(handler) as fetcher:
            result = await fetcher.fetch("https://example.com/slow")

        assert result.success is False
        assert result.timed_out is True

    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("no route", request=request)

        async with fetcher_for(handler) as fetcher:
            result = await fetcher.fetch("https://nowhere.invalid/")

        assert result.error_type == FetchErrorType.CONNECTION_ERROR

    async def test_empty_body_is_no_content(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="   ")

        async with fetcher_for(handler) as fetcher:
            result = await fetcher.fetch("https://example.com/empty")

        assert result.error_type == FetchErrorType.NO_CONTENT

    async def test_close_releases_client(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html></html>")

        fetcher = fetcher_for(handler)
        await fetcher.fetch("https://example.com/")
        await fetcher.close()
        assert fetcher._client is None


class TestTruncateText:
    def test_short_text_unchanged(self):
        assert truncate_text("hello", 10) == "hello"

    def test_long_text_gets_marker(self):
        text = "x" * 100
        result = truncate_text(text, 10)
        assert result.startswith("x" * 10)
        assert result.endswith(TRUNCATION_MARKER)


@pytest.mark.asyncio
class TestRenderPageText:
    async def test_empty_html(self):
        assert await render_page_text("") == ""

    async def test_renders_article_paragraphs(self):
        paragraph = (
            "Distributed systems fail in surprising ways, and the only reliable defence "
            "is careful measurement of every component under realistic production load. "
        )
        body = "".join(f"<p>{paragraph * 3}</p>" for _ in range(5))
        html = f"<html><head><title>T</title></head><body><article><h1>Failure</h1>{body}</article></body></html>"

        text = await render_page_text(html)

        assert "Distributed systems fail" in text
