"""Canonical article record and the publishing block owned by the coordinator.

The article record itself belongs to the Article Store.  The core reads
``content`` and ``review_status`` and writes only the ``publishing`` block.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

_ARTICLE_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

# Reserved because listing pages live at <prefix>/<language>/index.
RESERVED_ARTICLE_IDS: frozenset[str] = frozenset({"index"})

_WORDS_PER_MINUTE = 200


class ReviewStatus(str, Enum):
    """Reviewer decision; read-only input to the publishing core."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PublishingStage(str, Enum):
    """Where an article sits in the publishing state machine."""

    UNPUBLISHED = "unpublished"
    STAGED = "staged"
    PUBLISHED = "published"
    REJECTED = "rejected"


class ArticleContent(BaseModel):
    """Render-ready title and body for one language."""

    model_config = ConfigDict(frozen=True)

    title: str
    body: str

    @property
    def word_count(self) -> int:
        return len(self.body.split())


class PublishingBlock(BaseModel):
    """Publishing metadata, derivable by folding the article's ledger history."""

    model_config = ConfigDict(frozen=True)

    stage: PublishingStage = PublishingStage.UNPUBLISHED
    version: int = 0
    staged_at: datetime | None = None
    staged_by: str | None = None
    published_at: datetime | None = None
    published_by: str | None = None
    content_hash: dict[str, str] = {}  # environment name -> artifact-set hash
    staging_url: str | None = None
    production_url: str | None = None

    def hash_for(self, environment: str) -> str:
        """Return the artifact-set hash last written to *environment*, or ``""``."""
        return self.content_hash.get(environment, "")


class Article(BaseModel):
    """The canonical article record as exposed by the Article Store."""

    model_config = ConfigDict(frozen=True)

    id: str
    primary_language: str = "en"
    content: dict[str, ArticleContent]
    source: str = ""
    source_url: str = ""
    author: str = ""
    published_date: str = ""
    review_status: ReviewStatus = ReviewStatus.PENDING
    publishing: PublishingBlock = PublishingBlock()

    @field_validator("id")
    @classmethod
    def _check_id(cls, value: str) -> str:
        if not _ARTICLE_ID_PATTERN.match(value) or value in RESERVED_ARTICLE_IDS:
            raise ValueError(f"Invalid article id {value!r}")
        return value

    @model_validator(mode="after")
    def _check_content(self) -> Article:
        if not self.content:
            raise ValueError(f"Article {self.id} has no content in any language")
        if self.primary_language not in self.content:
            raise ValueError(
                f"Article {self.id} has no content in its primary language "
                f"{self.primary_language!r}"
            )
        return self

    @property
    def languages(self) -> list[str]:
        return sorted(self.content)

    def content_for(self, language: str) -> tuple[ArticleContent, bool]:
        """Return the content for *language* and whether it is a fallback.

        A missing translation falls back to the primary language.
        """
        if language in self.content:
            return self.content[language], False
        return self.content[self.primary_language], True

    @property
    def reading_time_minutes(self) -> int:
        words = self.content[self.primary_language].word_count
        return max(1, -(-words // _WORDS_PER_MINUTE))
