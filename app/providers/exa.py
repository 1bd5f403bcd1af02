"""Exa API client (contents + summary, answer)."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)

EXA_BASE_URL = "https://api.exa.ai"
EXA_TIMEOUT = 30.0


class ExaError(Exception):
    """Base exception for Exa API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.retry_after = retry_after


class ExaAuthError(ExaError):
    """Authentication failed."""


@dataclass(frozen=True)
class ExaContentResult:
    """One page returned by /contents."""

    id: str
    url: str
    title: str = ""
    author: str | None = None
    published_date: str | None = None
    text: str = ""
    summary: Any = None  # str, or the decoded object when a schema was sent


@dataclass(frozen=True)
class ExaContentStatus:
    """Per-URL fetch status; a 200 response can still carry failures here."""

    id: str
    status: str
    error_tag: str | None = None
    error_http_status: int | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


@dataclass(frozen=True)
class ExaContentsResponse:
    request_id: str | None = None
    results: list[ExaContentResult] = field(default_factory=list)
    statuses: list[ExaContentStatus] = field(default_factory=list)

    def status_for(self, url: str) -> ExaContentStatus | None:
        for status in self.statuses:
            if status.id == url:
                return status
        return None

    def result_for(self, url: str) -> ExaContentResult | None:
        for result in self.results:
            if result.url == url or result.id == url:
                return result
        return self.results[0] if len(self.results) == 1 else None


@dataclass(frozen=True)
class ExaCitation:
    id: str
    url: str
    title: str = ""
    author: str | None = None
    published_date: str | None = None


@dataclass(frozen=True)
class ExaAnswerResponse:
    answer: str
    citations: list[ExaCitation] = field(default_factory=list)


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class ExaClient:
    """Async client for the Exa /contents and /answer endpoints."""

    def __init__(
        self,
        api_key: str,
        base_url: str = EXA_BASE_URL,
        timeout: float = EXA_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("Exa API key is required")
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"x-api-key": api_key, "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ExaClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """POST a JSON body and decode the JSON response.

        Raises:
            ExaAuthError: On 401/403.
            ExaError: On any other non-2xx status or undecodable body.
        """
        resp = await self._client.post(path, json=body)

        if resp.status_code in (401, 403):
            raise ExaAuthError("Invalid Exa API key", status_code=resp.status_code, body=resp.text)

        if resp.status_code < 200 or resp.status_code >= 300:
            raise ExaError(
                f"Exa API error: status={resp.status_code}",
                status_code=resp.status_code,
                body=resp.text,
                retry_after=_parse_retry_after(resp.headers.get("Retry-After")),
            )

        try:
            data = resp.json()
        except json.JSONDecodeError as e:
            raise ExaError(f"Exa {path}: invalid JSON response", status_code=resp.status_code) from e
        if not isinstance(data, dict):
            raise ExaError(f"Exa {path}: unexpected response shape", status_code=resp.status_code)
        return data

    async def contents(
        self,
        urls: list[str],
        *,
        text: bool | dict[str, Any] = True,
        summary_query: str | None = None,
        summary_schema: dict[str, Any] | None = None,
        livecrawl: str = "preferred",
        livecrawl_timeout_ms: int = 10000,
    ) -> ExaContentsResponse:
        """Fetch page contents and an optional schema-shaped summary."""
        if not urls:
            raise ValueError("exa contents: no urls provided")

        body: dict[str, Any] = {
            "urls": urls,
            "text": text,
            "livecrawl": livecrawl,
            "livecrawlTimeout": livecrawl_timeout_ms,
        }
        if summary_query or summary_schema:
            summary: dict[str, Any] = {}
            if summary_query:
                summary["query"] = summary_query
            if summary_schema:
                summary["schema"] = summary_schema
            body["summary"] = summary

        data = await self._post("/contents", body)
        return ExaContentsResponse(
            request_id=data.get("requestId"),
            results=[self._parse_result(r) for r in data.get("results") or []],
            statuses=[self._parse_status(s) for s in data.get("statuses") or []],
        )

    async def answer(self, query: str, *, text: bool = False) -> ExaAnswerResponse:
        """Ask a question; the answer is free text."""
        if not query:
            raise ValueError("exa answer: missing query")

        data = await self._post("/answer", {"query": query, "text": text, "stream": False})
        answer = data.get("answer")
        if isinstance(answer, (dict, list)):
            answer = json.dumps(answer)
        return ExaAnswerResponse(
            answer=answer or "",
            citations=[
                ExaCitation(
                    id=c.get("id", ""),
                    url=c.get("url", ""),
                    title=c.get("title") or "",
                    author=c.get("author"),
                    published_date=c.get("publishedDate"),
                )
                for c in data.get("citations") or []
            ],
        )

    def _parse_result(self, raw: dict[str, Any]) -> ExaContentResult:
        summary = raw.get("summary")
        if isinstance(summary, str) and summary.strip().startswith("{"):
            try:
                summary = json.loads(summary)
            except json.JSONDecodeError:
                pass  # Left as text; the response parser digs the object out
        return ExaContentResult(
            id=raw.get("id", ""),
            url=raw.get("url", ""),
            title=raw.get("title") or "",
            author=raw.get("author"),
            published_date=raw.get("publishedDate"),
            text=raw.get("text") or "",
            summary=summary,
        )

    def _parse_status(self, raw: dict[str, Any]) -> ExaContentStatus:
        error = raw.get("error") or {}
        return ExaContentStatus(
            id=raw.get("id", ""),
            status=raw.get("status", ""),
            error_tag=error.get("tag"),
            error_http_status=error.get("httpStatusCode"),
        )
