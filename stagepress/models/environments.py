"""Named publishing environments and the object-key convention.

Keys are ``<prefix>/<language>/<article-id>`` for detail pages and
``<prefix>/<language>/index`` for listing pages.  A CDN distribution
serves an environment's prefix at its root, so the reader-facing path
of a key is its prefix-relative part.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

LISTING_NAME = "index"


class EnvironmentName(str, Enum):
    STAGING = "staging"
    PRODUCTION = "production"


class Environment(BaseModel):
    """An object-store prefix plus the distribution that serves it."""

    model_config = ConfigDict(frozen=True)

    name: EnvironmentName
    prefix: str
    base_url: str
    distribution_id: str = ""

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def key(self, relative_key: str) -> str:
        return f"{self.prefix}/{relative_key}"

    def relative(self, key: str) -> str:
        """Strip this environment's prefix from an absolute key."""
        head = f"{self.prefix}/"
        if not key.startswith(head):
            raise ValueError(f"Key {key!r} is not under environment prefix {self.prefix!r}")
        return key[len(head):]

    def detail_key(self, language: str, article_id: str) -> str:
        return self.key(detail_relative_key(language, article_id))

    def listing_key(self, language: str) -> str:
        return self.key(listing_relative_key(language))

    # ------------------------------------------------------------------
    # Reader-facing locations
    # ------------------------------------------------------------------

    def url(self, relative_key: str) -> str:
        return f"{self.base_url.rstrip('/')}/{relative_key}"

    def detail_url(self, language: str, article_id: str) -> str:
        return self.url(detail_relative_key(language, article_id))

    def listing_url(self, language: str) -> str:
        return self.url(listing_relative_key(language))


def detail_relative_key(language: str, article_id: str) -> str:
    return f"{language}/{article_id}"


def listing_relative_key(language: str) -> str:
    return f"{language}/{LISTING_NAME}"


def cache_path(relative_key: str) -> str:
    """CDN invalidation path for a prefix-relative key."""
    return f"/{relative_key}"


def listing_subject(language: str) -> str:
    """Ledger subject id used for a language's listing page."""
    return f"listing:{language}"


def subject_for_relative_key(relative_key: str) -> str | None:
    """Map ``<language>/<name>`` to its ledger subject, or ``None`` if malformed."""
    parts = relative_key.split("/")
    if len(parts) != 2 or not all(parts):
        return None
    language, name = parts
    if name == LISTING_NAME:
        return listing_subject(language)
    return name
