"""End-to-end integration tests — stage, promote, list, and roll back.

These tests exercise the PublishCoordinator, EnvironmentStore,
BackupManager, PublishLedger, LeaseLockManager and Renderer working
together over a filesystem object store.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from stagepress.core.coordinator import PublishCoordinator
from stagepress.core.environment_store import EnvironmentStore
from stagepress.models.article import ArticleContent, PublishingStage
from stagepress.models.ledger import LedgerAction


def _production(store: EnvironmentStore) -> dict[str, bytes]:
    return {
        key: store.read(store.production, key)
        for key in store.list_relative_keys(store.production)
    }


def _revise(coordinator: PublishCoordinator, article_id: str, body: str) -> None:
    article = coordinator.articles.get_article(article_id)
    content = dict(article.content)
    content["en"] = ArticleContent(title=content["en"].title, body=body)
    coordinator.articles.save_article(article.model_copy(update={"content": content}))


class TestStagePromoteRestore:
    """One article through its whole life: preview, go live, roll back."""

    def test_stage_is_previewable_but_not_live(self, coordinator, add_article, env_store):
        add_article("a1")
        result = coordinator.stage("a1", "alice")

        assert "a1" in result.staging_url
        assert result.staging_url.startswith("https://staging.example.com/")
        assert sorted(env_store.list_relative_keys(env_store.staging)) == ["en/a1", "es/a1"]
        assert _production(env_store) == {}
        assert coordinator.publishing_status("a1").stage == PublishingStage.STAGED

    def test_promote_publishes_staged_bytes(self, coordinator, add_article, env_store):
        add_article("a1")
        coordinator.stage("a1", "alice")
        before = datetime.now(timezone.utc)

        result = coordinator.promote("a1", "bob")

        assert result.version == 1
        assert result.release_version == 1
        assert result.production_url == "https://www.example.com/en/a1"
        backup = coordinator.backups.get(result.backup_id)
        assert before <= backup.created_at <= datetime.now(timezone.utc)
        assert backup.object_count == 0
        assert _production(env_store) == {
            key: env_store.read(env_store.staging, key) for key in ("en/a1", "es/a1")
        }
        status = coordinator.publishing_status("a1")
        assert status.stage == PublishingStage.PUBLISHED
        assert status.published_by == "bob"
        assert coordinator.articles.get_article("a1").publishing == status

    def test_restore_latest_undoes_promotion(self, coordinator, add_article, env_store):
        add_article("a1")
        coordinator.stage("a1", "alice")
        promoted = coordinator.promote("a1", "alice")

        rollback = coordinator.restore("carol")

        assert rollback.backup_id == promoted.backup_id
        assert rollback.release_version == 2
        assert rollback.affected_subjects == ["a1"]
        assert sorted(rollback.removed_keys) == ["en/a1", "es/a1"]
        assert _production(env_store) == {}
        status = coordinator.publishing_status("a1")
        assert status.stage == PublishingStage.STAGED
        assert status.production_url is None

    def test_restore_can_itself_be_undone(self, coordinator, add_article, env_store):
        add_article("a1")
        coordinator.stage("a1", "alice")
        coordinator.promote("a1", "alice")
        live = _production(env_store)

        first = coordinator.restore("carol")
        second = coordinator.restore("carol", first.pre_restore_backup_id)

        assert second.release_version == 3
        assert _production(env_store) == live
        status = coordinator.publishing_status("a1")
        assert status.stage == PublishingStage.PUBLISHED
        assert status.production_url == "https://www.example.com/en/a1"
        assert coordinator.ledger.verify_chain("a1") is True

    def test_repeat_transitions_are_idempotent(self, coordinator, add_article):
        add_article("a1")
        coordinator.stage("a1", "alice")
        coordinator.promote("a1", "alice")

        restaged = coordinator.stage("a1", "alice")
        again = coordinator.promote("a1", "alice")

        assert restaged.skipped is True
        assert again.skipped is True
        assert again.version == 1
        assert coordinator.release_version() == 1
        assert len(coordinator.list_backups()) == 1


class TestListing:
    """Listing pages show exactly the published articles, newest first."""

    def test_listing_excludes_unpublished(self, coordinator, add_article, env_store):
        add_article("a1", title="First Story", published_date="2026-01-10")
        add_article("a2", title="Second Story", published_date="2026-01-20")
        add_article("a3", title="Draft Story", published_date="2026-01-30")
        for article_id in ("a1", "a2"):
            coordinator.stage(article_id, "alice")
            coordinator.promote(article_id, "alice")
        coordinator.stage("a3", "alice")

        result = coordinator.promote_listing("en", "alice")

        assert result.article_ids == ["a2", "a1"]
        assert result.release_version == 3
        page = env_store.read(env_store.production, "en/index").decode("utf-8")
        assert "First Story" in page
        assert "Second Story" in page
        assert "Draft Story" not in page
        assert page.index("Second Story") < page.index("First Story")

    def test_unchanged_listing_is_skipped(self, coordinator, add_article):
        add_article("a1")
        coordinator.stage("a1", "alice")
        coordinator.promote("a1", "alice")
        coordinator.promote_listing("en", "alice")

        again = coordinator.promote_listing("en", "alice")

        assert again.skipped is True
        assert coordinator.release_version() == 2

    def test_all_languages(self, coordinator, add_article, env_store):
        add_article("a1")
        coordinator.stage("a1", "alice")
        coordinator.promote("a1", "alice")

        results = coordinator.promote_all_listings("alice")

        assert [r.language for r in results] == ["en", "es"]
        assert {"en/index", "es/index"} <= set(env_store.list_relative_keys(env_store.production))
        assert coordinator.listing_status("es").stage == PublishingStage.PUBLISHED

    def test_restore_rolls_back_listing(self, coordinator, add_article):
        add_article("a1")
        coordinator.stage("a1", "alice")
        coordinator.promote("a1", "alice")
        listing = coordinator.promote_listing("en", "alice")

        rollback = coordinator.restore("carol", listing.backup_id)

        assert rollback.affected_subjects == ["listing:en"]
        assert coordinator.listing_status("en").stage == PublishingStage.STAGED
        assert coordinator.publishing_status("a1").stage == PublishingStage.PUBLISHED
        [entry] = [e for e in coordinator.history("listing:en") if e.action == LedgerAction.ROLLBACK]
        assert entry.backup_id == listing.backup_id


class TestRollbackAcrossReleases:
    """Restoring the backup taken before promotion K yields production after K-1."""

    @pytest.mark.parametrize("target", [1, 2, 3])
    def test_restore_to_any_promotion(self, coordinator, add_article, env_store, target):
        add_article("a1")
        snapshots: list[dict[str, bytes]] = [_production(env_store)]
        backup_ids: list[str] = []
        for revision in range(1, 4):
            _revise(coordinator, "a1", f"Revision {revision} of the body.")
            coordinator.stage("a1", "alice")
            result = coordinator.promote("a1", "alice")
            assert result.version == revision
            backup_ids.append(result.backup_id)
            snapshots.append(_production(env_store))

        rollback = coordinator.restore("carol", backup_ids[target - 1])

        assert _production(env_store) == snapshots[target - 1]
        assert rollback.release_version == 4
        expected_stage = PublishingStage.STAGED if target == 1 else PublishingStage.PUBLISHED
        assert coordinator.publishing_status("a1").stage == expected_stage

    def test_release_versions_strictly_increase(self, coordinator, add_article):
        add_article("a1")
        add_article("a2")
        seen = []
        for article_id in ("a1", "a2"):
            coordinator.stage(article_id, "alice")
            seen.append(coordinator.promote(article_id, "alice").release_version)
        seen.append(coordinator.promote_listing("en", "alice").release_version)
        seen.append(coordinator.restore("carol").release_version)

        assert seen == [1, 2, 3, 4]
        assert [r.release_version for r in coordinator.ledger.releases()] == seen
