"""Deterministic page renderer for detail and listing pages.

Rendering is pure: the same inputs always produce byte-identical output,
which is what makes content-hash idempotence sound.  Nothing time- or
environment-dependent (clock, version counters, hostnames) is embedded.

A missing translation is not an error.  The page is rendered from the
primary language and carries a ``stagepress:fallback`` marker.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from jinja2 import Environment, PackageLoader, StrictUndefined

from stagepress.models.article import Article
from stagepress.models.environments import detail_relative_key

_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
_WHITESPACE = re.compile(r"\s+")

EXCERPT_LENGTH = 200


def _paragraphs(body: str) -> list[str]:
    return [
        _WHITESPACE.sub(" ", chunk).strip()
        for chunk in _PARAGRAPH_SPLIT.split(body)
        if chunk.strip()
    ]


def _excerpt(body: str, max_length: int = EXCERPT_LENGTH) -> str:
    text = _WHITESPACE.sub(" ", body).strip()
    if len(text) <= max_length:
        return text
    cut = text[:max_length].rsplit(" ", 1)[0]
    return f"{cut}..."


class Renderer:
    """Turns articles into self-contained HTML artifacts.

    Parameters
    ----------
    site_title:
        Title shown in every page header.
    languages:
        Supported languages, used for the language switcher on detail pages.
    """

    def __init__(self, site_title: str, languages: Sequence[str]) -> None:
        self._site_title = site_title
        self._languages = list(languages)
        self._env = Environment(
            loader=PackageLoader("stagepress", "templates"),
            autoescape=True,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    @property
    def languages(self) -> list[str]:
        return list(self._languages)

    def render_detail(self, article: Article, language: str) -> bytes:
        """Render the detail page of *article* in *language*."""
        content, fallback = article.content_for(language)
        template = self._env.get_template("detail.html.j2")
        html = template.render(
            language=language,
            content_language=article.primary_language if fallback else language,
            fallback=fallback,
            languages=self._languages,
            site_title=self._site_title,
            article_id=article.id,
            title=content.title,
            paragraphs=_paragraphs(content.body),
            source=article.source,
            source_url=article.source_url,
            published_date=article.published_date,
            reading_time=article.reading_time_minutes,
        )
        return html.encode("utf-8")

    def render_listing(self, language: str, articles: Iterable[Article]) -> bytes:
        """Render the listing page for *language*, preserving the given order."""
        items = []
        for article in articles:
            content, fallback = article.content_for(language)
            items.append({
                "id": article.id,
                "title": content.title,
                "excerpt": _excerpt(content.body),
                "published_date": article.published_date,
                "source": article.source,
                "fallback": fallback,
            })
        template = self._env.get_template("listing.html.j2")
        html = template.render(
            language=language,
            site_title=self._site_title,
            items=items,
        )
        return html.encode("utf-8")

    def render_detail_set(self, article: Article) -> dict[str, bytes]:
        """Render every supported language, keyed by prefix-relative key."""
        return {
            detail_relative_key(language, article.id): self.render_detail(article, language)
            for language in self._languages
        }
