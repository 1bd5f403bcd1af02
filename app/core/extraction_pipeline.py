"""Extraction Pipeline - turns a submitted URL into ExtractedMetadata.

Pipeline Phases:
1. FETCH: download the page (skipped when the request carries HTML)
2. HINTS: local BeautifulSoup extraction, never fails
3. EXTRACT: prompt -> provider -> parser, retried under an attempt budget
   and one wall-clock deadline that spans every phase

Terminal states:
- SUCCEEDED: type is article/paper/book
- REJECTED: type is "not an article", never retried
- EXHAUSTED: attempts used up, deadline expired, or a non-retriable
  provider error

Usage:
    pipeline = ExtractionPipeline.from_settings(settings)
    result = await pipeline.run("https://example.com/post")
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from app.core.content_fetcher import FetchResult, PageFetcher, render_page_text
from app.core.llm_providers import (
    LLMError,
    MetadataProvider,
    Verdict,
    get_fallback_provider,
    get_metadata_provider,
)
from app.core.local_extractor import extract_locally
from app.core.prompts import PromptPayload, build_answer_query, build_prompt
from app.core.response_parser import (
    MetadataParseError,
    MetadataValidationError,
    parse_metadata,
)
from app.core.settings import Settings
from app.providers.content_types import ExtractedMetadata, ExtractionRequest, LocalHints

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """State of one pipeline invocation."""

    FETCHING = "fetching"
    EXTRACTING = "extracting"
    SUCCEEDED = "succeeded"
    REJECTED = "rejected"
    EXHAUSTED = "exhausted"


class ExtractionError(Exception):
    """Base class for pipeline outcomes other than success."""


class FetchRequiredError(ExtractionError):
    """The provider needs page content, but the page could not be fetched."""

    def __init__(self, message: str, fetch: FetchResult | None = None):
        super().__init__(message)
        self.fetch = fetch


class RejectedError(ExtractionError):
    """The provider classified the page as not an article, paper or book."""

    def __init__(self, metadata: ExtractedMetadata):
        super().__init__("link supplied is not an article or book")
        self.metadata = metadata


class UnresolvedContentError(ExtractionError):
    """The provider answered, but with a retryable type (e.g. could not search)."""

    def __init__(self, metadata: ExtractedMetadata):
        super().__init__(f"provider could not resolve the content (type={metadata.type})")
        self.metadata = metadata


class ExhaustedError(ExtractionError):
    """No usable result within the attempt budget."""

    def __init__(
        self,
        attempts: int,
        last_error: Exception | None,
        backoff_delays: list[float] | None = None,
        message: str | None = None,
    ):
        if message is None:
            detail = f": {last_error}" if last_error else ""
            message = f"extraction failed after {attempts} attempts{detail}"
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error
        self.backoff_delays = list(backoff_delays or [])


class ExtractionTimeoutError(ExhaustedError):
    """The overall deadline expired before a usable result."""

    def __init__(
        self,
        attempts: int,
        last_error: Exception | None,
        deadline_seconds: float,
        backoff_delays: list[float] | None = None,
    ):
        super().__init__(
            attempts,
            last_error,
            backoff_delays,
            message=f"extraction timed out after {deadline_seconds:g}s ({attempts} attempts)",
        )
        self.deadline_seconds = deadline_seconds


RETRYABLE_ERRORS = (LLMError, MetadataParseError, MetadataValidationError, UnresolvedContentError)


@dataclass
class ExtractionResult:
    """Successful outcome of one invocation."""

    url: str
    metadata: ExtractedMetadata
    hints: LocalHints
    attempts: int
    backoff_delays: list[float] = field(default_factory=list)
    used_fallback: bool = False
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    state: PipelineState = PipelineState.SUCCEEDED


@dataclass
class _Invocation:
    """Request-local state; never shared between invocations."""

    url: str
    state: PipelineState = PipelineState.FETCHING
    attempts: int = 0
    backoff_delays: list[float] = field(default_factory=list)
    last_error: Exception | None = None


def reconcile_with_hints(metadata: ExtractedMetadata, hints: LocalHints) -> ExtractedMetadata:
    """Fill author/date the provider left empty from the local hints."""
    updates = {}
    if not metadata.author and hints.author.found:
        updates["author"] = hints.author.value
    if not metadata.date_published and hints.date_published.found:
        updates["date_published"] = hints.date_published.value
    return replace(metadata, **updates) if updates else metadata


class ExtractionPipeline:
    """Runs fetch -> hints -> prompt -> provider -> parse with retries."""

    def __init__(
        self,
        provider: MetadataProvider,
        *,
        fallback: MetadataProvider | None = None,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        deadline_seconds: float = 120.0,
        fetch_timeout: float = 30.0,
        content_limit: int = 8000,
        fetcher_factory: Callable[..., PageFetcher] = PageFetcher,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        if deadline_seconds <= 0:
            raise ValueError("deadline_seconds must be positive")
        if backoff_seconds <= 0:
            raise ValueError("backoff_seconds must be positive")
        self._provider = provider
        self._fallback = fallback
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._deadline_seconds = deadline_seconds
        self._fetch_timeout = fetch_timeout
        self._content_limit = content_limit
        self._fetcher_factory = fetcher_factory

    @classmethod
    def from_settings(cls, settings: Settings) -> ExtractionPipeline:
        return cls(
            get_metadata_provider(settings),
            fallback=get_fallback_provider(settings),
            max_attempts=settings.num_retries,
            backoff_seconds=settings.retry_backoff_seconds,
            deadline_seconds=settings.extraction_deadline_seconds,
            fetch_timeout=settings.fetch_timeout_seconds,
            content_limit=settings.prompt_content_limit,
        )

    @property
    def provider(self) -> MetadataProvider:
        return self._provider

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    async def run(self, request: ExtractionRequest | str) -> ExtractionResult:
        """Run the pipeline for one URL.

        Raises:
            RejectedError: The content is not an article, paper or book.
            FetchRequiredError: The provider needs page content that could not be fetched.
            ExtractionTimeoutError: The deadline expired.
            ExhaustedError: No usable result within the attempt budget.
        """
        if isinstance(request, str):
            request = ExtractionRequest(url=request.strip())

        invocation = _Invocation(url=request.url)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._deadline_seconds
        try:
            return await asyncio.wait_for(
                self._run(request, invocation, deadline),
                timeout=self._deadline_seconds,
            )
        except asyncio.TimeoutError as e:
            invocation.state = PipelineState.EXHAUSTED
            logger.warning(
                f"Extraction of {request.url} timed out after {self._deadline_seconds}s "
                f"({invocation.attempts} attempts)"
            )
            raise ExtractionTimeoutError(
                invocation.attempts,
                invocation.last_error,
                self._deadline_seconds,
                invocation.backoff_delays,
            ) from e

    async def _run(
        self,
        request: ExtractionRequest,
        invocation: _Invocation,
        deadline: float,
    ) -> ExtractionResult:
        provider = self._provider
        hints, page_content = await self._prepare(request, invocation)

        invocation.state = PipelineState.EXTRACTING
        for attempt in range(1, self._max_attempts + 1):
            invocation.attempts = attempt
            logger.info(f"Extracting {request.url} with {provider.name}, attempt {attempt}/{self._max_attempts}")

            prompt = build_prompt(
                request.url,
                hints,
                page_content=page_content,
                allow_search_failed=provider.supports_search_failed,
                include_schema=provider.include_schema,
                content_limit=self._content_limit,
            )
            try:
                metadata, used_fallback = await self._attempt(prompt)
            except LLMError as e:
                if not e.retriable:
                    invocation.state = PipelineState.EXHAUSTED
                    logger.error(f"Provider {e.provider} failed permanently: {e}")
                    raise ExhaustedError(attempt, e, invocation.backoff_delays) from e
                invocation.last_error = e
            except RejectedError:
                invocation.state = PipelineState.REJECTED
                raise
            except RETRYABLE_ERRORS as e:
                invocation.last_error = e
            else:
                invocation.state = PipelineState.SUCCEEDED
                metadata = reconcile_with_hints(metadata, hints)
                logger.info(f"Extracted {request.url}: type={metadata.type} title={metadata.title!r}")
                return ExtractionResult(
                    url=request.url,
                    metadata=metadata,
                    hints=hints,
                    attempts=attempt,
                    backoff_delays=list(invocation.backoff_delays),
                    used_fallback=used_fallback,
                )

            logger.warning(f"Attempt {attempt}/{self._max_attempts} for {request.url} failed: {invocation.last_error}")
            if attempt == self._max_attempts:
                break

            delay = self._backoff_delay(attempt, invocation.last_error)
            loop = asyncio.get_running_loop()
            if loop.time() + delay >= deadline:
                invocation.state = PipelineState.EXHAUSTED
                raise ExtractionTimeoutError(
                    attempt, invocation.last_error, self._deadline_seconds, invocation.backoff_delays
                )
            invocation.backoff_delays.append(delay)
            await asyncio.sleep(delay)

        invocation.state = PipelineState.EXHAUSTED
        logger.warning(f"Extraction of {request.url} exhausted after {invocation.attempts} attempts")
        raise ExhaustedError(invocation.attempts, invocation.last_error, invocation.backoff_delays)

    async def _prepare(
        self, request: ExtractionRequest, invocation: _Invocation
    ) -> tuple[LocalHints, str | None]:
        """FETCH + HINTS phases. Returns hints and, if needed, page content."""
        provider = self._provider
        html = request.html
        hints = request.hints

        needs_html = html is None and (hints is None or provider.requires_page_content)
        if needs_html:
            async with self._fetcher_factory(timeout=self._fetch_timeout) as fetcher:
                fetch = await fetcher.fetch(request.url)
            if fetch.success:
                html = fetch.html
            else:
                logger.warning(
                    f"Fetching {request.url} failed ({fetch.error_type.value if fetch.error_type else 'unknown'}): "
                    f"{fetch.error_message}"
                )
                if provider.requires_page_content:
                    invocation.state = PipelineState.EXHAUSTED
                    raise FetchRequiredError(
                        f"could not fetch page content: {fetch.error_message}", fetch=fetch
                    )

        if hints is None:
            loop = asyncio.get_running_loop()
            hints = await loop.run_in_executor(None, extract_locally, html)

        page_content = None
        if provider.requires_page_content:
            page_content = await render_page_text(html or "")
            if not page_content:
                page_content = hints.body_text.value
            if not page_content:
                invocation.state = PipelineState.EXHAUSTED
                raise FetchRequiredError("page has no readable content")

        return hints, page_content

    async def _attempt(self, prompt: PromptPayload) -> tuple[ExtractedMetadata, bool]:
        """One provider round trip, with the answer fallback on unparsable output.

        Raises:
            RejectedError: On a terminal "not an article" verdict.
            UnresolvedContentError: On a retryable verdict.
        """
        output = await self._provider.run(prompt)
        classifier = self._provider
        used_fallback = False
        try:
            metadata = parse_metadata(output)
        except MetadataParseError as e:
            if self._fallback is None:
                raise
            logger.warning(f"Unparsable output from {self._provider.name} ({e}), asking {self._fallback.name}")
            try:
                fallback_output = await self._fallback.run(
                    PromptPayload(url=prompt.url, text=build_answer_query(prompt.url))
                )
            except LLMError as fallback_error:
                # A broken fallback never ends the invocation; the primary keeps its attempts
                logger.warning(f"Fallback {self._fallback.name} failed: {fallback_error}")
                raise e from fallback_error
            metadata = parse_metadata(fallback_output)
            classifier = self._fallback
            used_fallback = True

        verdict = classifier.classify(metadata)
        if verdict == Verdict.REJECT:
            logger.info(f"{prompt.url} rejected by {classifier.name}: not an article")
            raise RejectedError(metadata)
        if verdict == Verdict.RETRY:
            raise UnresolvedContentError(metadata)
        return metadata, used_fallback

    def _backoff_delay(self, attempt: int, error: Exception | None) -> float:
        """Linear backoff; a provider Retry-After hint can only lengthen it."""
        delay = attempt * self._backoff_seconds
        if isinstance(error, LLMError) and error.retry_after:
            delay = max(delay, error.retry_after)
        return delay
