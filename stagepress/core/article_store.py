"""Article Store interface and a SQLite-backed implementation.

The Article Store owns the canonical article record.  The publishing
core reads content and review status from it and writes back only the
``publishing`` block (and ``review_status`` on reject).  Each call is a
strongly consistent read or write of a single record.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Protocol

from stagepress.core.errors import NotFoundError
from stagepress.models.article import (
    Article,
    PublishingBlock,
    PublishingStage,
    ReviewStatus,
)

logger = logging.getLogger(__name__)


class ArticleStore(Protocol):
    """Operations the publishing core consumes from the Article Store."""

    def get_article(self, article_id: str) -> Article: ...

    def list_approved(self, language: str) -> list[Article]: ...

    def list_published(self, language: str) -> list[Article]: ...

    def update_publishing_metadata(self, article_id: str, block: PublishingBlock) -> None: ...

    def update_review_status(self, article_id: str, status: ReviewStatus) -> None: ...


_CREATE_ARTICLES = """
CREATE TABLE IF NOT EXISTS articles (
    id          TEXT PRIMARY KEY,
    record_json TEXT NOT NULL
);
"""


class SQLiteArticleStore:
    """Article records stored as JSON documents in SQLite.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(_CREATE_ARTICLES)
            conn.commit()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=10.0, check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def save_article(self, article: Article) -> None:
        """Insert or replace an article's editorial fields.

        The ``publishing`` block is owned by the publishing core: when a
        record already exists its block is kept, whatever *article* carries.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT record_json FROM articles WHERE id = ?", (article.id,)
            ).fetchone()
            if row is not None:
                existing = Article.model_validate_json(row[0])
                article = article.model_copy(update={"publishing": existing.publishing})
            conn.execute(
                "INSERT OR REPLACE INTO articles (id, record_json) VALUES (?, ?)",
                (article.id, article.model_dump_json()),
            )
            conn.execute("COMMIT")
        finally:
            conn.close()

    def get_article(self, article_id: str) -> Article:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT record_json FROM articles WHERE id = ?", (article_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError(f"Article {article_id} not found")
        return Article.model_validate_json(row[0])

    def list_articles(self) -> list[Article]:
        with self._connect() as conn:
            rows = conn.execute("SELECT record_json FROM articles ORDER BY id").fetchall()
        return [Article.model_validate_json(row[0]) for row in rows]

    # ------------------------------------------------------------------
    # Queries used by the publishing core
    # ------------------------------------------------------------------

    def list_approved(self, language: str) -> list[Article]:
        """Approved articles; every language is served, with fallback if untranslated."""
        return [a for a in self.list_articles() if a.review_status == ReviewStatus.APPROVED]

    def list_published(self, language: str) -> list[Article]:
        """Articles whose publishing stage is ``published``."""
        return [
            a for a in self.list_articles()
            if a.publishing.stage == PublishingStage.PUBLISHED
        ]

    # ------------------------------------------------------------------
    # Writes owned by the publishing core
    # ------------------------------------------------------------------

    def update_publishing_metadata(self, article_id: str, block: PublishingBlock) -> None:
        self._update(article_id, publishing=block)

    def update_review_status(self, article_id: str, status: ReviewStatus) -> None:
        self._update(article_id, review_status=status)

    def _update(self, article_id: str, **changes: object) -> None:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT record_json FROM articles WHERE id = ?", (article_id,)
            ).fetchone()
            if row is None:
                conn.execute("ROLLBACK")
                raise NotFoundError(f"Article {article_id} not found")
            article = Article.model_validate_json(row[0]).model_copy(update=changes)
            conn.execute(
                "UPDATE articles SET record_json = ? WHERE id = ?",
                (article.model_dump_json(), article_id),
            )
            conn.execute("COMMIT")
        finally:
            conn.close()
        logger.debug("Updated %s on article %s.", ", ".join(changes), article_id)
