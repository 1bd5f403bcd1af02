"""Local metadata extraction from raw HTML.

Recovers title, author, publish date and body text with BeautifulSoup using
a prioritized cascade of signals per field (first match wins):

- title: <title>, og:title, twitter:title, first <h1>
- author: meta tags, microdata, byline containers, `.author`; a JSON-LD
  Article block overrides all of them
- date: meta tags, <time>, visible date-like text; JSON-LD datePublished
  overrides when it parses
- body: first main-content container, else all page paragraphs

The result only enriches the prompt, so extraction never raises.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Iterable

from bs4 import BeautifulSoup, Tag

from app.providers.content_types import HintField, LocalHints

logger = logging.getLogger(__name__)

AUTHOR_META = [
    {"name": "author"},
    {"property": "article:author"},
    {"name": "article:author"},
    {"name": re.compile(r"^(dc|dcterms)\.creator$", re.IGNORECASE)},
]

BYLINE_CLASSES = (
    "byline",
    "author-name",
    "post-author",
    "entry-author",
    "article-author",
    "author-info",
    "meta-author",
    "by-author",
    "writer",
)

# Author candidates outside this range are usually whole bio blocks
MIN_AUTHOR_LENGTH = 2
MAX_AUTHOR_LENGTH = 100

DATE_META = [
    {"property": "article:published_time"},
    {"name": "article:published_time"},
    {"name": "date"},
    {"name": re.compile(r"^dc\.date$", re.IGNORECASE)},
]

STRUCTURED_ARTICLE_TYPES = {"Article", "NewsArticle", "BlogPosting"}

CONTENT_SELECTORS = [
    "article",
    "main",
    '[role="main"]',
    ".post-content",
    ".entry-content",
    ".article-content",
    ".article-body",
    ".story-body",
    "#content",
    ".content",
]

BLOCK_TAGS = ["p", "h1", "h2", "h3", "h4", "h5", "h6", "li", "blockquote"]
ALWAYS_KEPT_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6", "li"}
MIN_BLOCK_LENGTH = 40

NOISE_TAGS = ["script", "style", "noscript", "nav", "footer", "aside", "form"]

# Tried in order; first successful parse wins
DATE_LAYOUTS = [
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M%z",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%a, %d %b %Y %H:%M:%S %z",
    "%a, %d %b %Y %H:%M:%S %Z",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%d.%m.%Y",
]

_MONTH = r"(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec)[a-z]*\.?"
VISIBLE_DATE_PATTERNS = [
    re.compile(rf"\b{_MONTH}\s+\d{{1,2}},?\s+\d{{4}}\b"),
    re.compile(rf"\b\d{{1,2}}\s+{_MONTH},?\s+\d{{4}}\b"),
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
]


def parse_date(raw: str | None) -> str | None:
    """Parse a date string against the known layouts.

    Returns:
        The date as YYYY-MM-DD in UTC, or None if no layout matches.
    """
    if not raw:
        return None
    value = " ".join(str(raw).split())
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"

    candidates = [value]
    # Textual forms: drop commas and month abbreviation dots, "Sept" -> "Sep"
    cleaned = re.sub(r"(?<=[A-Za-z])\.", "", value.replace(",", " "))
    cleaned = re.sub(r"\bSept\b", "Sep", cleaned, flags=re.IGNORECASE)
    cleaned = " ".join(cleaned.split())
    if cleaned != value:
        candidates.append(cleaned)

    for candidate in candidates:
        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError:
            parsed = None
        if parsed is None:
            for layout in DATE_LAYOUTS:
                try:
                    parsed = datetime.strptime(candidate, layout)
                    break
                except ValueError:
                    continue
        if parsed is not None:
            if parsed.tzinfo is not None:
                parsed = parsed.astimezone(timezone.utc)
            return parsed.strftime("%Y-%m-%d")
    return None


def extract_locally(html: str | None) -> LocalHints:
    """Best-effort extraction of LocalHints from raw HTML. Never raises."""
    if not html or not html.strip():
        return LocalHints.empty()
    try:
        soup = BeautifulSoup(html, "html.parser")
        structured = _structured_article(soup)

        title = _extract_title(soup)
        author = _extract_author(soup)
        date_published = _extract_date(soup)

        if structured:
            structured_author = _structured_author(structured)
            if structured_author:
                author = structured_author
            structured_date = parse_date(_first_str(structured.get("datePublished")))
            if structured_date:
                date_published = structured_date

        body_text = _extract_body_text(soup)

        return LocalHints(
            title=HintField.of(title),
            author=HintField.of(author),
            date_published=HintField.of(date_published),
            body_text=HintField.of(body_text),
        )
    except Exception:
        logger.exception("Local extraction failed, continuing without hints")
        return LocalHints.empty()


def _meta_content(soup: BeautifulSoup, attrs: dict[str, Any]) -> str | None:
    tag = soup.find("meta", attrs=attrs)
    if isinstance(tag, Tag):
        content = tag.get("content")
        if content and str(content).strip():
            return str(content).strip()
    return None


def _text(tag: Tag | None) -> str:
    if tag is None:
        return ""
    return " ".join(tag.get_text(" ", strip=True).split())


def _extract_title(soup: BeautifulSoup) -> str | None:
    title_tag = soup.find("title")
    if isinstance(title_tag, Tag) and _text(title_tag):
        return _text(title_tag)

    for attrs in ({"property": "og:title"}, {"name": "twitter:title"}, {"property": "twitter:title"}):
        content = _meta_content(soup, attrs)
        if content:
            return content

    h1 = soup.find("h1")
    if isinstance(h1, Tag) and _text(h1):
        return _text(h1)
    return None


def _clean_author(value: str) -> str | None:
    value = " ".join(value.split())
    value = re.sub(r"^(written\s+)?by[:\s]+", "", value, flags=re.IGNORECASE).strip()
    if not (MIN_AUTHOR_LENGTH <= len(value) <= MAX_AUTHOR_LENGTH):
        return None
    # article:author is often a profile URL
    if value.startswith(("http://", "https://")):
        return None
    return value


def _extract_author(soup: BeautifulSoup) -> str | None:
    for attrs in AUTHOR_META:
        content = _meta_content(soup, attrs)
        if content:
            author = _clean_author(content)
            if author:
                return author

    for prop in ("author", "creator"):
        for element in soup.find_all(attrs={"itemprop": prop}):
            if not isinstance(element, Tag):
                continue
            name_tag = element.find(attrs={"itemprop": "name"})
            if isinstance(name_tag, Tag):
                raw = name_tag.get("content") or _text(name_tag)
            else:
                raw = element.get("content") or _text(element)
            author = _clean_author(str(raw or ""))
            if author:
                return author

    for element in soup.find_all(class_=_has_byline_class):
        author = _clean_author(_text(element))
        if author:
            return author

    for element in soup.select(".author"):
        author = _clean_author(_text(element))
        if author:
            return author
    return None


def _has_byline_class(classes: Any) -> bool:
    if not classes:
        return False
    if isinstance(classes, str):
        classes = classes.split()
    return any(name in BYLINE_CLASSES for name in classes)


def _date_candidates(soup: BeautifulSoup) -> Iterable[str]:
    for attrs in DATE_META:
        content = _meta_content(soup, attrs)
        if content:
            yield content

    for time_tag in soup.find_all("time"):
        if not isinstance(time_tag, Tag):
            continue
        datetime_attr = time_tag.get("datetime")
        if datetime_attr:
            yield str(datetime_attr)
        if _text(time_tag):
            yield _text(time_tag)

    page_text = _text(soup.body if isinstance(soup.body, Tag) else soup)
    for pattern in VISIBLE_DATE_PATTERNS:
        for match in pattern.finditer(page_text):
            yield match.group(0)


def _extract_date(soup: BeautifulSoup) -> str | None:
    for candidate in _date_candidates(soup):
        parsed = parse_date(candidate)
        if parsed:
            return parsed
    return None


def _iter_json_ld(soup: BeautifulSoup) -> Iterable[dict[str, Any]]:
    for script in soup.find_all("script", type="application/ld+json"):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed JSON-LD block")
            continue
        items = data if isinstance(data, list) else [data]
        for item in items:
            if not isinstance(item, dict):
                continue
            graph = item.get("@graph")
            if isinstance(graph, list):
                yield from (g for g in graph if isinstance(g, dict))
            yield item


def _structured_article(soup: BeautifulSoup) -> dict[str, Any] | None:
    for item in _iter_json_ld(soup):
        types = item.get("@type")
        if isinstance(types, str):
            types = [types]
        if isinstance(types, list) and STRUCTURED_ARTICLE_TYPES.intersection(
            t for t in types if isinstance(t, str)
        ):
            return item
    return None


def _first_str(value: Any) -> str | None:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("@value") or value.get("value")
    return str(value) if value else None


def _structured_author(item: dict[str, Any]) -> str | None:
    raw = item.get("author")
    entries = raw if isinstance(raw, list) else [raw]
    names: list[str] = []
    for entry in entries:
        if isinstance(entry, dict):
            name = entry.get("name")
        else:
            name = entry
        if isinstance(name, str):
            cleaned = _clean_author(name)
            if cleaned and cleaned not in names:
                names.append(cleaned)
    return ", ".join(names) if names else None


def _inside_block(element: Tag, container: Tag) -> bool:
    for parent in element.parents:
        if parent is container:
            return False
        if parent.name in BLOCK_TAGS:
            return True
    return False


def _collect_blocks(container: Tag, tags: list[str]) -> list[str]:
    blocks: list[str] = []
    for element in container.find_all(tags):
        if _inside_block(element, container):
            continue
        text = _text(element)
        if not text:
            continue
        if element.name in ALWAYS_KEPT_TAGS or len(text) >= MIN_BLOCK_LENGTH:
            blocks.append(text)
    return blocks


def _extract_body_text(soup: BeautifulSoup) -> str | None:
    for tag in soup(NOISE_TAGS):
        tag.decompose()

    for selector in CONTENT_SELECTORS:
        container = soup.select_one(selector)
        if not isinstance(container, Tag):
            continue
        blocks = _collect_blocks(container, BLOCK_TAGS)
        if blocks:
            return "\n\n".join(blocks)
        # Only the first matching container is considered
        break

    blocks = _collect_blocks(soup, ["p"])
    return "\n\n".join(blocks) if blocks else None
