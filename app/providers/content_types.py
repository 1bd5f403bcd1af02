"""Provider-agnostic content types for the reading list."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any
from urllib.parse import urlparse


class ContentType(IntEnum):
    """Value of the `type` field returned by every metadata provider."""

    ARTICLE = 0
    PAPER = 1
    BOOK = 2
    NOT_ARTICLE = -1  # Terminal: never retried
    SEARCH_FAILED = -2  # Provider could not retrieve the page, retryable


STORABLE_TYPES = frozenset({ContentType.ARTICLE, ContentType.PAPER, ContentType.BOOK})


def is_absolute_url(url: str | None) -> bool:
    """Whether url is a well-formed absolute http(s) URL."""
    if not url or not url.strip():
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


@dataclass(frozen=True)
class HintField:
    """A single locally extracted value and whether it was found at all."""

    value: str = ""
    found: bool = False

    @classmethod
    def of(cls, value: str | None) -> HintField:
        value = (value or "").strip()
        return cls(value=value, found=bool(value))


@dataclass(frozen=True)
class LocalHints:
    """Best-effort metadata recovered from raw HTML without calling an LLM."""

    title: HintField = field(default_factory=HintField)
    author: HintField = field(default_factory=HintField)
    date_published: HintField = field(default_factory=HintField)
    body_text: HintField = field(default_factory=HintField)

    @classmethod
    def empty(cls) -> LocalHints:
        return cls()

    @property
    def any_found(self) -> bool:
        return any(
            f.found for f in (self.title, self.author, self.date_published, self.body_text)
        )


@dataclass(frozen=True)
class ExtractionRequest:
    """Input of one pipeline invocation."""

    url: str
    html: str | None = None
    hints: LocalHints | None = None

    def __post_init__(self) -> None:
        if not is_absolute_url(self.url):
            raise ValueError(f"Not an absolute http(s) URL: {self.url!r}")


@dataclass(frozen=True)
class ExtractedMetadata:
    """The five-field record every provider must produce."""

    title: str
    author: str
    summary: str
    date_published: str
    type: int

    @property
    def content_type(self) -> ContentType | None:
        try:
            return ContentType(self.type)
        except ValueError:
            return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtractedMetadata:
        """Build from the model's JSON object (camelCase `datePublished`).

        Raises:
            TypeError/ValueError: If a field has the wrong shape.
        """
        raw_type = data.get("type")
        if isinstance(raw_type, bool) or raw_type is None:
            raise ValueError(f"Invalid type value: {raw_type!r}")
        if isinstance(raw_type, float):
            if not raw_type.is_integer():
                raise ValueError(f"Invalid type value: {raw_type!r}")
            raw_type = int(raw_type)
        elif isinstance(raw_type, str):
            raw_type = int(raw_type.strip())
        elif not isinstance(raw_type, int):
            raise TypeError(f"Invalid type value: {raw_type!r}")

        def _s(key: str) -> str:
            value = data.get(key)
            if value is None:
                return ""
            if isinstance(value, list):
                return ", ".join(str(v).strip() for v in value if str(v).strip())
            if not isinstance(value, (str, int, float)):
                raise TypeError(f"Field {key!r} must be a string, got {type(value).__name__}")
            return str(value).strip()

        return cls(
            title=_s("title"),
            author=_s("author"),
            summary=_s("summary"),
            date_published=_s("datePublished"),
            type=raw_type,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "author": self.author,
            "summary": self.summary,
            "datePublished": self.date_published,
            "type": self.type,
        }


@dataclass(frozen=True)
class StoredArticle:
    """An article row as persisted and returned by the API."""

    title: str
    author: str
    summary: str
    date_read: str
    date_published: str
    link: str
    type: int
    img_path: str = ""
    id: int | None = None

    @classmethod
    def from_metadata(
        cls, metadata: ExtractedMetadata, *, link: str, date_read: str
    ) -> StoredArticle:
        return cls(
            title=metadata.title,
            author=metadata.author,
            summary=metadata.summary,
            date_read=date_read,
            date_published=metadata.date_published,
            link=link,
            type=metadata.type,
        )

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> StoredArticle:
        return cls(
            id=row["id"],
            title=row["title"],
            author=row["author"] or "",
            summary=row["summary"] or "",
            date_read=row["date_read"] or "",
            date_published=row["date_published"] or "",
            link=row["link"],
            img_path=row["img_path"] or "",
            type=row["type"],
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON record shape of the HTTP API."""
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "summary": self.summary,
            "dateRead": self.date_read,
            "datePublished": self.date_published,
            "link": self.link,
            "img_path": self.img_path,
            "type": self.type,
        }
