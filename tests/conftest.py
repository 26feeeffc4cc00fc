"""Shared test fixtures for Stagepress."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from stagepress.core.article_store import SQLiteArticleStore
from stagepress.core.backup_manager import BackupManager
from stagepress.core.coordinator import PublishCoordinator
from stagepress.core.environment_store import EnvironmentStore
from stagepress.core.ledger import PublishLedger
from stagepress.core.locks import LeaseLockManager
from stagepress.core.object_store import LocalObjectStore, ObjectStore
from stagepress.core.renderer import Renderer
from stagepress.models.article import Article, ArticleContent, ReviewStatus
from stagepress.models.environments import Environment, EnvironmentName

LANGUAGES = ["en", "es"]


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test state."""
    return tmp_path


@pytest.fixture
def object_store(tmp_dir: Path) -> LocalObjectStore:
    """Provide a filesystem object store standing in for the bucket."""
    return LocalObjectStore(tmp_dir / "objects")


@pytest.fixture
def staging_env() -> Environment:
    return Environment(
        name=EnvironmentName.STAGING,
        prefix="staging",
        base_url="https://staging.example.com",
    )


@pytest.fixture
def production_env() -> Environment:
    return Environment(
        name=EnvironmentName.PRODUCTION,
        prefix="production",
        base_url="https://www.example.com",
        distribution_id="EPROD123",
    )


@pytest.fixture
def make_env_store(
    staging_env: Environment, production_env: Environment
) -> Iterator[Callable[..., EnvironmentStore]]:
    """Factory fixture: wrap any ObjectStore in an EnvironmentStore with fast retries."""
    created: list[EnvironmentStore] = []

    def _factory(objects: ObjectStore, **overrides: Any) -> EnvironmentStore:
        kwargs: dict[str, Any] = {
            "timeout_seconds": 5.0,
            "max_attempts": 2,
            "backoff_seconds": 0.0,
        }
        kwargs.update(overrides)
        store = EnvironmentStore(objects, staging_env, production_env, **kwargs)
        created.append(store)
        return store

    yield _factory
    for store in created:
        store.close()


@pytest.fixture
def env_store(
    object_store: LocalObjectStore, make_env_store: Callable[..., EnvironmentStore]
) -> EnvironmentStore:
    return make_env_store(object_store)


@pytest.fixture
def backups(env_store: EnvironmentStore) -> BackupManager:
    return BackupManager(env_store, backup_prefix="backups", retention_days=30)


@pytest.fixture
def ledger(tmp_dir: Path) -> PublishLedger:
    """Provide a fresh PublishLedger backed by a temp SQLite database."""
    return PublishLedger(tmp_dir / "ledger.db")


@pytest.fixture
def locks(tmp_dir: Path) -> LeaseLockManager:
    return LeaseLockManager(tmp_dir / "locks.db", lease_seconds=60)


@pytest.fixture
def article_store(tmp_dir: Path) -> SQLiteArticleStore:
    return SQLiteArticleStore(tmp_dir / "articles.db")


@pytest.fixture
def renderer() -> Renderer:
    return Renderer("Test Blog", LANGUAGES)


@pytest.fixture
def make_coordinator(
    article_store: SQLiteArticleStore,
    ledger: PublishLedger,
    locks: LeaseLockManager,
    renderer: Renderer,
) -> Callable[..., PublishCoordinator]:
    """Factory fixture: a coordinator over the shared stores and a given EnvironmentStore."""

    def _factory(store: EnvironmentStore, **overrides: Any) -> PublishCoordinator:
        backup_manager = overrides.pop("backups", None) or BackupManager(store)
        return PublishCoordinator(
            article_store,
            store,
            backup_manager,
            ledger,
            locks,
            renderer,
            environment_lock_wait_seconds=overrides.pop("environment_lock_wait_seconds", 0.5),
        )

    return _factory


@pytest.fixture
def coordinator(
    env_store: EnvironmentStore,
    backups: BackupManager,
    make_coordinator: Callable[..., PublishCoordinator],
) -> PublishCoordinator:
    return make_coordinator(env_store, backups=backups)


# ---------------------------------------------------------------------------
# Article factories shared across test modules
# ---------------------------------------------------------------------------


@pytest.fixture
def make_article() -> Callable[..., Article]:
    """Factory fixture: build an Article with sensible defaults."""

    def _factory(
        article_id: str = "a1",
        *,
        title: str | None = None,
        body: str | None = None,
        translations: dict[str, tuple[str, str]] | None = None,
        review_status: ReviewStatus = ReviewStatus.APPROVED,
        published_date: str = "2026-01-15",
        **overrides: Any,
    ) -> Article:
        content = {
            "en": ArticleContent(
                title=title or f"Article {article_id}",
                body=body or f"Body of {article_id}.\n\nSecond paragraph of {article_id}.",
            )
        }
        for language, (t, b) in (translations or {}).items():
            content[language] = ArticleContent(title=t, body=b)
        defaults: dict[str, Any] = {
            "id": article_id,
            "content": content,
            "source": "Example Wire",
            "source_url": f"https://news.example.org/{article_id}",
            "author": "Staff",
            "published_date": published_date,
            "review_status": review_status,
        }
        defaults.update(overrides)
        return Article(**defaults)

    return _factory


@pytest.fixture
def add_article(
    article_store: SQLiteArticleStore, make_article: Callable[..., Article]
) -> Callable[..., Article]:
    """Factory fixture: build an Article and save it to the Article Store."""

    def _factory(article_id: str = "a1", **kwargs: Any) -> Article:
        article = make_article(article_id, **kwargs)
        article_store.save_article(article)
        return article

    return _factory
