"""Metadata provider adapters.

Every upstream is wrapped in a MetadataProvider exposing one capability,
`run(prompt) -> ProviderOutput`, so the extraction pipeline never deals
with a specific wire format:

- OpenRouterChatProvider: blocking chat completion, needs pre-fetched content
- GeminiStreamProvider: streaming generation with Google Search grounding
- ExaSummaryProvider: content fetch + schema-shaped summary in one call
- ExaAnswerProvider: free-text answer, used as the parse fallback
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from app.core.local_extractor import parse_date
from app.core.prompts import PromptPayload
from app.core.settings import Settings
from app.providers.content_types import STORABLE_TYPES, ContentType, ExtractedMetadata
from app.providers.exa import ExaAuthError, ExaClient, ExaError

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"
PROVIDER_TIMEOUT = 120.0

# Characters of page text Exa returns alongside the summary
EXA_TEXT_MAX_CHARACTERS = 8000


class Verdict(str, Enum):
    """Outcome of one parsed provider response."""

    SUCCESS = "success"
    REJECT = "reject"  # Terminal: not an article
    RETRY = "retry"  # Provider fluke, another attempt may succeed


@dataclass
class ProviderOutput:
    """Raw output of one provider call."""

    provider: str
    text: str = ""
    data: dict[str, Any] | None = None  # Already-structured object, if any
    latency_ms: int = 0


class LLMError(Exception):
    """Error during a provider call."""

    def __init__(
        self,
        message: str,
        provider: str,
        retriable: bool = False,
        retry_after: float | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.retriable = retriable
        self.retry_after = retry_after
        self.status_code = status_code


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _error_message(response: httpx.Response) -> str:
    """Pull `error.message` out of an error body, falling back to raw text."""
    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text[:500]
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    if isinstance(data, list) and data and isinstance(data[0], dict):
        error = data[0].get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return response.text[:500]


class MetadataProvider(ABC):
    """Abstract base class for metadata providers."""

    # Whether the prompt must embed the fetched page (no server-side retrieval)
    requires_page_content: bool = False
    # Whether the prompt offers type -2 ("could not search")
    supports_search_failed: bool = False
    # Whether the provider enforces METADATA_JSON_SCHEMA server-side
    include_schema: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable provider name."""
        ...

    @property
    @abstractmethod
    def model_id(self) -> str:
        """The model identifier being used."""
        ...

    @abstractmethod
    async def run(self, prompt: PromptPayload) -> ProviderOutput:
        """Send one extraction request.

        Raises:
            LLMError: If the call fails; `retriable` tells the pipeline
                whether another attempt makes sense.
        """
        ...

    def classify(self, metadata: ExtractedMetadata) -> Verdict:
        """Map this provider's `type` signal onto the pipeline verdicts."""
        if metadata.type in STORABLE_TYPES:
            return Verdict.SUCCESS
        if metadata.type == ContentType.NOT_ARTICLE:
            return Verdict.REJECT
        return Verdict.RETRY


class OpenRouterChatProvider(MetadataProvider):
    """OpenRouter chat/completion provider (OpenAI-compatible API)."""

    requires_page_content = True

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = OPENROUTER_BASE_URL,
        timeout: float = PROVIDER_TIMEOUT,
        temperature: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ValueError("OpenRouter API key is required")
        if not model:
            raise ValueError("OpenRouter model is required")
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._temperature = temperature
        self._transport = transport

    @property
    def name(self) -> str:
        return "OpenRouter"

    @property
    def model_id(self) -> str:
        return self._model

    async def run(self, prompt: PromptPayload) -> ProviderOutput:
        request_body: dict[str, Any] = {
            "model": self._model,
            "messages": [{"role": "user", "content": prompt.text}],
        }
        if self._temperature is not None:
            request_body["temperature"] = self._temperature

        start_time = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                    json=request_body,
                )
        except httpx.TimeoutException as e:
            raise LLMError("OpenRouter request timed out", provider=self.name, retriable=True) from e
        except httpx.HTTPError as e:
            raise LLMError(f"OpenRouter request failed: {e}", provider=self.name, retriable=True) from e

        if response.status_code < 200 or response.status_code >= 300:
            raise self._status_error(response)

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise LLMError("OpenRouter returned invalid JSON", provider=self.name, retriable=True) from e

        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict) and error.get("message"):
            raise LLMError(
                f"OpenRouter error: {error['message']}",
                provider=self.name,
                retriable=True,
                status_code=response.status_code,
            )

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise LLMError("OpenRouter returned no choices", provider=self.name, retriable=True)

        content = (choices[0].get("message") or {}).get("content") or ""
        return ProviderOutput(
            provider=self.name,
            text=content,
            latency_ms=int((time.monotonic() - start_time) * 1000),
        )

    def _status_error(self, response: httpx.Response) -> LLMError:
        status = response.status_code
        message = _error_message(response)

        if status in (401, 403):
            return LLMError(
                "OpenRouter API key invalid. Check OPENROUTER_API_KEY.",
                provider=self.name,
                retriable=False,
                status_code=status,
            )
        if status == 402:
            return LLMError(
                "OpenRouter credits exhausted.",
                provider=self.name,
                retriable=False,
                status_code=status,
            )
        if status == 404:
            return LLMError(
                f"Model '{self._model}' not available: {message}",
                provider=self.name,
                retriable=False,
                status_code=status,
            )
        if status == 429:
            # Surfaced, not waited on; the pipeline owns the backoff
            return LLMError(
                f"OpenRouter rate limit: {message}",
                provider=self.name,
                retriable=True,
                retry_after=_retry_after(response),
                status_code=status,
            )
        return LLMError(
            f"OpenRouter API error: {status} - {message}",
            provider=self.name,
            retriable=True,
            status_code=status,
        )


class GeminiStreamProvider(MetadataProvider):
    """Gemini streaming generation with the Google Search tool enabled."""

    supports_search_failed = True

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = GEMINI_BASE_URL,
        timeout: float = PROVIDER_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ValueError("Gemini API key is required")
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return "Gemini"

    @property
    def model_id(self) -> str:
        return self._model

    async def run(self, prompt: PromptPayload) -> ProviderOutput:
        url = f"{self._base_url}/v1beta/models/{self._model}:streamGenerateContent"
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt.text}]}],
            "tools": [{"google_search": {}}],
        }

        start_time = time.monotonic()
        fragments: list[str] = []
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                async with client.stream(
                    "POST",
                    url,
                    params={"alt": "sse"},
                    headers={"x-goog-api-key": self._api_key},
                    json=payload,
                ) as response:
                    if response.status_code < 200 or response.status_code >= 300:
                        await response.aread()
                        raise self._status_error(response)

                    async for line in response.aiter_lines():
                        fragment = self._parse_event(line)
                        if fragment:
                            fragments.append(fragment)
        except httpx.TimeoutException as e:
            raise LLMError("Gemini stream timed out", provider=self.name, retriable=True) from e
        except httpx.HTTPError as e:
            raise LLMError(f"Gemini stream failed: {e}", provider=self.name, retriable=True) from e

        text = "".join(fragments)
        if not text.strip():
            raise LLMError("Gemini returned an empty stream", provider=self.name, retriable=True)

        return ProviderOutput(
            provider=self.name,
            text=text,
            latency_ms=int((time.monotonic() - start_time) * 1000),
        )

    def _parse_event(self, line: str) -> str | None:
        """Decode one SSE line into its text fragment.

        Raises:
            LLMError: If the event carries an error or a blocked prompt.
        """
        line = line.strip()
        if not line.startswith("data:"):
            return None
        raw = line[len("data:"):].strip()
        if not raw or raw == "[DONE]":
            return None
        try:
            event = json.loads(raw)
        except json.JSONDecodeError as e:
            raise LLMError("Gemini sent a malformed stream event", provider=self.name, retriable=True) from e

        error = event.get("error")
        if isinstance(error, dict):
            raise LLMError(
                f"Gemini stream error: {error.get('message', 'unknown')}",
                provider=self.name,
                retriable=True,
                status_code=error.get("code"),
            )

        block_reason = (event.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise LLMError(f"Gemini blocked the prompt: {block_reason}", provider=self.name, retriable=True)

        parts: list[str] = []
        for candidate in event.get("candidates") or []:
            for part in (candidate.get("content") or {}).get("parts") or []:
                if isinstance(part.get("text"), str) and not part.get("thought"):
                    parts.append(part["text"])
            break  # Only the first candidate
        return "".join(parts) or None

    def _status_error(self, response: httpx.Response) -> LLMError:
        status = response.status_code
        message = _error_message(response)
        if status in (401, 403):
            return LLMError(
                "Gemini API key invalid. Check GEMINI_API_KEY.",
                provider=self.name,
                retriable=False,
                status_code=status,
            )
        if status == 404:
            return LLMError(
                f"Model '{self._model}' not available: {message}",
                provider=self.name,
                retriable=False,
                status_code=status,
            )
        return LLMError(
            f"Gemini API error: {status} - {message}",
            provider=self.name,
            retriable=True,
            retry_after=_retry_after(response) if status == 429 else None,
            status_code=status,
        )


def _exa_error(e: ExaError, provider: str) -> LLMError:
    if isinstance(e, ExaAuthError):
        return LLMError("Exa API key invalid. Check EXA_API_KEY.", provider=provider, retriable=False, status_code=e.status_code)
    return LLMError(
        f"{e} - {(e.body or '')[:200]}".rstrip(" -"),
        provider=provider,
        retriable=True,
        retry_after=e.retry_after if e.status_code == 429 else None,
        status_code=e.status_code,
    )


class ExaSummaryProvider(MetadataProvider):
    """Exa /contents with a schema-shaped summary of the live page."""

    include_schema = True

    def __init__(
        self,
        api_key: str,
        timeout: float = 30.0,
        livecrawl_timeout_ms: int = 10000,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ValueError("Exa API key is required")
        self._api_key = api_key
        self._timeout = timeout
        self._livecrawl_timeout_ms = livecrawl_timeout_ms
        self._transport = transport

    @property
    def name(self) -> str:
        return "Exa"

    @property
    def model_id(self) -> str:
        return "exa-contents"

    async def run(self, prompt: PromptPayload) -> ProviderOutput:
        start_time = time.monotonic()
        try:
            async with ExaClient(self._api_key, timeout=self._timeout, transport=self._transport) as client:
                response = await client.contents(
                    [prompt.url],
                    text={"maxCharacters": EXA_TEXT_MAX_CHARACTERS},
                    summary_query=prompt.text,
                    summary_schema=prompt.schema,
                    livecrawl="preferred",
                    livecrawl_timeout_ms=self._livecrawl_timeout_ms,
                )
        except ExaError as e:
            raise _exa_error(e, self.name) from e
        except httpx.HTTPError as e:
            raise LLMError(f"Exa request failed: {e}", provider=self.name, retriable=True) from e

        # HTTP 200 can still carry a per-URL fetch failure
        status = response.status_for(prompt.url)
        if status is not None and not status.ok:
            detail = status.error_tag or status.status
            if status.error_http_status:
                detail = f"{detail} (HTTP {status.error_http_status})"
            raise LLMError(f"Exa could not fetch {prompt.url}: {detail}", provider=self.name, retriable=True)

        result = response.result_for(prompt.url)
        if result is None:
            raise LLMError(f"Exa returned no result for {prompt.url}", provider=self.name, retriable=True)

        latency_ms = int((time.monotonic() - start_time) * 1000)
        if isinstance(result.summary, dict):
            data = dict(result.summary)
            # Fill gaps from Exa's own page metadata
            if not str(data.get("author") or "").strip() and result.author:
                data["author"] = result.author
            if not str(data.get("datePublished") or "").strip() and result.published_date:
                data["datePublished"] = parse_date(result.published_date) or ""
            return ProviderOutput(provider=self.name, text=json.dumps(data), data=data, latency_ms=latency_ms)

        return ProviderOutput(provider=self.name, text=str(result.summary or ""), latency_ms=latency_ms)


class ExaAnswerProvider(MetadataProvider):
    """Exa /answer: free text expected to embed the JSON object."""

    def __init__(
        self,
        api_key: str,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ValueError("Exa API key is required")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return "Exa Answer"

    @property
    def model_id(self) -> str:
        return "exa-answer"

    async def run(self, prompt: PromptPayload) -> ProviderOutput:
        start_time = time.monotonic()
        try:
            async with ExaClient(self._api_key, timeout=self._timeout, transport=self._transport) as client:
                response = await client.answer(prompt.text)
        except ExaError as e:
            raise _exa_error(e, self.name) from e
        except httpx.HTTPError as e:
            raise LLMError(f"Exa answer request failed: {e}", provider=self.name, retriable=True) from e

        if not response.answer.strip():
            raise LLMError("Exa returned an empty answer", provider=self.name, retriable=True)
        return ProviderOutput(
            provider=self.name,
            text=response.answer,
            latency_ms=int((time.monotonic() - start_time) * 1000),
        )


def get_metadata_provider(settings: Settings) -> MetadataProvider:
    """Factory function for the configured primary provider.

    Raises:
        ValueError: If the provider is unknown or its key is missing.
    """
    provider_name = settings.metadata_provider.lower()

    if provider_name == "openrouter":
        return OpenRouterChatProvider(api_key=settings.openrouter_api_key, model=settings.openrouter_model)
    if provider_name == "gemini":
        return GeminiStreamProvider(api_key=settings.gemini_api_key, model=settings.gemini_model)
    if provider_name == "exa":
        return ExaSummaryProvider(api_key=settings.exa_api_key)

    raise ValueError(f"Unknown provider: {provider_name}. Available: openrouter, gemini, exa")


def get_fallback_provider(settings: Settings) -> MetadataProvider | None:
    """The answer fallback, when enabled and an Exa key is configured."""
    if settings.answer_fallback and settings.exa_api_key:
        return ExaAnswerProvider(api_key=settings.exa_api_key)
    return None
