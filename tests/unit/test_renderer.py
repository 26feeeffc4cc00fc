"""Tests for the Renderer — deterministic, escaped, fallback-aware."""

from __future__ import annotations

from stagepress.core.hasher import artifact_set_hash
from stagepress.core.renderer import Renderer


class TestRenderDetail:
    def test_deterministic(self, renderer: Renderer, make_article):
        article = make_article()
        assert renderer.render_detail(article, "en") == renderer.render_detail(article, "en")

    def test_contains_article_content(self, renderer: Renderer, make_article):
        html = renderer.render_detail(make_article(body="First.\n\nSecond."), "en").decode()
        assert 'data-article-id="a1"' in html
        assert "<p>First.</p>" in html
        assert "<p>Second.</p>" in html
        assert "Read original article" in html
        assert "1 min read" in html

    def test_escapes_html(self, renderer: Renderer, make_article):
        html = renderer.render_detail(
            make_article(title="<script>alert(1)</script>"), "en"
        ).decode()
        assert "<script>alert(1)</script>" not in html
        assert "&lt;script&gt;" in html

    def test_missing_translation_falls_back(self, renderer: Renderer, make_article):
        html = renderer.render_detail(make_article(), "es").decode()
        assert '<meta name="stagepress:fallback" content="en">' in html
        assert 'data-fallback="true"' in html
        assert "Article a1" in html

    def test_translation_used_when_present(self, renderer: Renderer, make_article):
        article = make_article(translations={"es": ("Artículo", "Cuerpo del artículo.")})
        html = renderer.render_detail(article, "es").decode()
        assert "Artículo" in html
        assert "stagepress:fallback" not in html

    def test_detail_set_covers_every_language(self, renderer: Renderer, make_article):
        artifacts = renderer.render_detail_set(make_article())
        assert sorted(artifacts) == ["en/a1", "es/a1"]

    def test_content_change_changes_hash(self, renderer: Renderer, make_article):
        before = artifact_set_hash(renderer.render_detail_set(make_article(body="One.")))
        after = artifact_set_hash(renderer.render_detail_set(make_article(body="Two.")))
        assert before != after


class TestRenderListing:
    def test_preserves_order_and_links(self, renderer: Renderer, make_article):
        articles = [make_article("b2"), make_article("a1")]
        html = renderer.render_listing("en", articles).decode()
        assert html.index('data-article-id="b2"') < html.index('data-article-id="a1"')
        assert 'href="/en/a1"' in html

    def test_empty_listing(self, renderer: Renderer):
        html = renderer.render_listing("en", []).decode()
        assert "No articles published yet." in html

    def test_excerpt_truncated(self, renderer: Renderer, make_article):
        html = renderer.render_listing("en", [make_article(body="word " * 100)]).decode()
        assert "..." in html

    def test_listing_language_links(self, make_article):
        renderer = Renderer("Blog", ["en", "es", "uk"])
        html = renderer.render_listing("uk", [make_article()]).decode()
        assert 'href="/uk/a1"' in html
        assert 'data-fallback="true"' in html
