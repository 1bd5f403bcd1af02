"""Prompt and schema builder for metadata extraction.

Every prompt asks for exactly one JSON object with the five fields
title, author, summary, datePublished and type. Schema-capable providers
additionally receive METADATA_JSON_SCHEMA; the others get the schema in
natural language plus a fenced example.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from app.core.content_fetcher import truncate_text
from app.providers.content_types import LocalHints

DEFAULT_CONTENT_LIMIT = 8000

METADATA_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "description": "Full title of the content"},
        "author": {
            "type": "string",
            "description": "Author names, comma-separated; empty string if unknown",
        },
        "summary": {
            "type": "string",
            "description": "One sentence of about 20 words",
        },
        "datePublished": {
            "type": "string",
            "description": "YYYY-MM-DD, else YYYY-MM, else YYYY, else empty string",
        },
        "type": {
            "type": "integer",
            "description": "0=article, 1=academic/research paper, 2=book, -1=none of these",
        },
    },
    "required": ["title", "author", "summary", "datePublished", "type"],
    "additionalProperties": False,
}

_EXAMPLE = {
    "title": "The Full Title",
    "author": "Jane Doe, John Smith",
    "summary": "A single sentence of roughly twenty words describing what the piece is about.",
    "datePublished": "2024-09-20",
    "type": 0,
}


@dataclass(frozen=True)
class PromptPayload:
    """Everything an adapter needs to issue one extraction request."""

    url: str
    text: str
    schema: dict[str, Any] | None = None


def _rules(allow_search_failed: bool) -> str:
    type_rule = '- "type": 0=article, 1=academic/research paper, 2=book, -1=not one of these.'
    if allow_search_failed:
        type_rule += (
            "\n  Use -2 ONLY if you could not retrieve or search the page at all "
            "(do not guess in that case)."
        )
    return "\n".join(
        [
            "Rules:",
            '- "title": you must extract the full title of the article, book, or paper.',
            '- "author": the author(s) of the content. If it is not obvious, infer it from '
            "the blog or publication name. Multiple authors are comma-separated in a single "
            'string. If you still cannot find an author, use "".',
            '- "summary": must be a single sentence of around 20 words or less.',
            '- "datePublished": YYYY-MM-DD if possible; otherwise YYYY-MM; otherwise YYYY; '
            "otherwise an empty string.",
            type_rule,
        ]
    )


def _hints_block(hints: LocalHints, content_limit: int, include_body: bool = True) -> str:
    lines = []
    if hints.title.found:
        lines.append(f"- title: {hints.title.value}")
    if hints.author.found:
        lines.append(f"- author: {hints.author.value}")
    if hints.date_published.found:
        lines.append(f"- datePublished: {hints.date_published.value}")
    parts = [
        "Metadata found in the page HTML (high confidence, but verify against the page "
        "itself and override anything that is wrong or missing):",
        "\n".join(lines) if lines else "- (no title/author/date found)",
    ]
    if include_body and hints.body_text.found:
        parts.append("Main text excerpt:\n" + truncate_text(hints.body_text.value, content_limit))
    return "\n".join(parts)


def build_prompt(
    url: str,
    hints: LocalHints | None = None,
    *,
    page_content: str | None = None,
    allow_search_failed: bool = False,
    include_schema: bool = False,
    content_limit: int = DEFAULT_CONTENT_LIMIT,
) -> PromptPayload:
    """Build the extraction prompt for one URL.

    Args:
        url: The submitted URL.
        hints: Locally extracted hints, embedded as context when any were found.
        page_content: Rendered page text for providers without retrieval.
        allow_search_failed: Offer type -2 for providers that search themselves.
        include_schema: Attach METADATA_JSON_SCHEMA for structured output.
        content_limit: Character cap for embedded page text.
    """
    if page_content:
        intro = (
            f"You are given extracted page content from the URL {url}. "
            "Return ONLY a single JSON object (no prose, no markdown fences) "
            "matching this schema exactly:"
        )
    else:
        intro = (
            f"Look up the web page at {url} and identify the content it contains. "
            "Return ONLY a single JSON object (no prose, no markdown fences) "
            "matching this schema exactly:"
        )

    sections = [
        intro,
        '{\n  "title": string,\n  "author": string,\n  "summary": string,\n'
        '  "datePublished": string,\n  "type": number\n}',
        _rules(allow_search_failed),
    ]
    if not include_schema:
        sections.append("Example:\n```json\n" + json.dumps(_EXAMPLE, indent=2) + "\n```")
    if hints is not None and hints.any_found:
        # Page content, when present, already carries the body text
        sections.append(_hints_block(hints, content_limit, include_body=not page_content))
    if page_content:
        sections.append("Page content:\n" + truncate_text(page_content, content_limit))

    return PromptPayload(
        url=url,
        text="\n\n".join(sections),
        schema=METADATA_JSON_SCHEMA if include_schema else None,
    )


def build_answer_query(url: str) -> str:
    """Question for the answer fallback; the answer must embed the JSON object."""
    return (
        f"What is the title, author, one-sentence summary (about 20 words), publication "
        f"date and content type of the page at {url}? Answer ONLY with a JSON object "
        '{"title": string, "author": string, "summary": string, "datePublished": string, '
        '"type": number} where datePublished is YYYY-MM-DD, YYYY-MM, YYYY or "" and type '
        "is 0=article, 1=academic/research paper, 2=book, -1=not one of these."
    )
