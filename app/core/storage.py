from __future__ import annotations

import logging
import os
import sqlite3
import threading
from dataclasses import dataclass, field
from typing import Any

from app.core.settings import Settings
from app.providers.content_types import StoredArticle

logger = logging.getLogger(__name__)


class DuplicateArticleError(Exception):
    """Insert rejected by the UNIQUE(link) constraint."""


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS articles (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  title TEXT NOT NULL,
  author TEXT NOT NULL DEFAULT '',
  summary TEXT NOT NULL DEFAULT '',
  date_read TEXT NOT NULL,
  date_published TEXT NOT NULL DEFAULT '',
  link TEXT NOT NULL UNIQUE,
  img_path TEXT NOT NULL DEFAULT '',
  type INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_articles_date_read ON articles(date_read DESC, id ASC);
"""

ARTICLE_COLUMNS = "id, title, author, summary, date_read, date_published, link, img_path, type"


@dataclass
class DB:
    conn: sqlite3.Connection
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def init(self) -> None:
        self.conn.row_factory = sqlite3.Row
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()

    def article_exists(self, link: str) -> bool:
        with self._lock:
            cur = self.conn.execute("SELECT 1 FROM articles WHERE link = ? LIMIT 1", (link,))
            return cur.fetchone() is not None

    def insert_article(self, article: StoredArticle) -> StoredArticle:
        """Insert an article and return it with its assigned id.

        The UNIQUE(link) constraint is the authoritative duplicate guard;
        the existence check before extraction is only best-effort.

        Raises:
            DuplicateArticleError: If the link is already stored.
        """
        with self._lock:
            try:
                cur = self.conn.execute(
                    """
                    INSERT INTO articles (
                        title, author, summary, date_read, date_published, link, img_path, type
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        article.title,
                        article.author,
                        article.summary,
                        article.date_read,
                        article.date_published,
                        article.link,
                        article.img_path,
                        article.type,
                    ),
                )
                self.conn.commit()
            except sqlite3.IntegrityError as e:
                self.conn.rollback()
                raise DuplicateArticleError(f"article exists in db: {article.link}") from e
            article_id = cur.lastrowid

        logger.info(f"Stored article {article_id}: {article.link}")
        return StoredArticle(
            id=article_id,
            title=article.title,
            author=article.author,
            summary=article.summary,
            date_read=article.date_read,
            date_published=article.date_published,
            link=article.link,
            img_path=article.img_path,
            type=article.type,
        )

    def get_article_page(self, offset: int, limit: int) -> list[StoredArticle]:
        with self._lock:
            cur = self.conn.execute(
                f"""
                SELECT {ARTICLE_COLUMNS} FROM articles
                ORDER BY date_read DESC, id ASC
                LIMIT ? OFFSET ?
                """,
                (limit, offset),
            )
            return [StoredArticle.from_row(r) for r in cur.fetchall()]

    def get_all_articles(self) -> list[StoredArticle]:
        with self._lock:
            cur = self.conn.execute(
                f"SELECT {ARTICLE_COLUMNS} FROM articles ORDER BY date_read DESC, id ASC"
            )
            return [StoredArticle.from_row(r) for r in cur.fetchall()]

    def get_article_count(self) -> int:
        with self._lock:
            cur = self.conn.execute("SELECT count(*) FROM articles")
            return cur.fetchone()[0]

    def health(self) -> dict[str, Any]:
        """Database health for the /health endpoint. Never raises."""
        try:
            count = self.get_article_count()
        except sqlite3.Error as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "down", "message": f"database error: {e}"}
        return {"status": "up", "message": "It's healthy", "articles": count}


_db: DB | None = None


def init_db(settings: Settings | None = None) -> DB:
    global _db
    s = settings or Settings.from_env()
    if s.db_path != ":memory:":
        os.makedirs(os.path.dirname(s.db_path) or ".", exist_ok=True)

    conn = sqlite3.connect(s.db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row

    _db = DB(conn=conn)
    _db.init()
    return _db


def get_db() -> DB:
    assert _db is not None, "DB not initialized"
    return _db
