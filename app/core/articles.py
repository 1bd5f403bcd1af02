"""Article service: duplicate check, extraction, persistence, paging."""

from __future__ import annotations

import logging

from app.core.extraction_pipeline import ExtractionPipeline
from app.core.storage import DB, DuplicateArticleError
from app.providers.content_types import StoredArticle, is_absolute_url

logger = logging.getLogger(__name__)

PAGE_SIZE = 10


class InvalidArticleLinkError(ValueError):
    """The submitted link is not an absolute http(s) URL."""


class ArticleExistsError(Exception):
    """The link is already in the reading list."""

    def __init__(self, link: str):
        super().__init__("article exists in db")
        self.link = link


async def create_article(db: DB, pipeline: ExtractionPipeline, link: str) -> StoredArticle:
    """Extract metadata for a new link and store it.

    The existence check runs right before the pipeline so duplicates never
    cost a provider call. Two concurrent submissions of the same new link
    can both pass it; the storage UNIQUE constraint then rejects the second.

    Raises:
        InvalidArticleLinkError: If the link is malformed.
        ArticleExistsError: If the link is already stored.
        ExtractionError: Any pipeline outcome other than success.
    """
    link = (link or "").strip()
    if not is_absolute_url(link):
        raise InvalidArticleLinkError(f"invalid article link: {link!r}")

    if db.article_exists(link):
        logger.info(f"Skipping duplicate submission: {link}")
        raise ArticleExistsError(link)

    result = await pipeline.run(link)

    article = StoredArticle.from_metadata(
        result.metadata,
        link=link,
        date_read=result.completed_at.strftime("%Y-%m-%d"),
    )
    try:
        return db.insert_article(article)
    except DuplicateArticleError as e:
        logger.warning(f"Concurrent duplicate insert for {link}")
        raise ArticleExistsError(link) from e


def get_article_page(db: DB, page: int, page_size: int = PAGE_SIZE) -> tuple[list[StoredArticle], int]:
    """Return (articles, total) for a 1-based page number.

    Raises:
        ValueError: If page < 1.
    """
    if page < 1:
        raise ValueError(f"invalid page number: {page}")

    total = db.get_article_count()
    offset = (page - 1) * page_size
    if total == 0 or offset >= total:
        return [], total
    return db.get_article_page(offset, page_size), total
