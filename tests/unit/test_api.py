"""Tests for the FastAPI administrative surface."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from stagepress.api.app import app, get_coordinator
from stagepress.core.locks import article_lock
from stagepress.models.article import ReviewStatus

ALICE = {"X-Actor": "alice"}


@pytest.fixture
def client(coordinator):
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class TestHealth:
    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json()["ok"] is True


class TestArticleRoutes:
    def test_stage_and_promote(self, client, add_article):
        add_article("a1")

        staged = client.post("/articles/a1/stage", headers=ALICE)
        assert staged.status_code == 200
        assert staged.json()["staging_url"] == "https://staging.example.com/en/a1"

        promoted = client.post("/articles/a1/promote", headers=ALICE)
        assert promoted.status_code == 200
        body = promoted.json()
        assert body["version"] == 1
        assert body["release_version"] == 1
        assert body["backup_id"]

        status = client.get("/articles/a1/publishing-status")
        assert status.json()["stage"] == "published"

    def test_missing_actor_is_401(self, client, add_article):
        add_article("a1")
        response = client.post("/articles/a1/stage")
        assert response.status_code == 401

    def test_blank_actor_is_401(self, client, add_article):
        add_article("a1")
        response = client.post("/articles/a1/stage", headers={"X-Actor": "  "})
        assert response.status_code == 401

    def test_unknown_article_is_404(self, client):
        response = client.post("/articles/ghost/stage", headers=ALICE)
        assert response.status_code == 404
        assert response.json()["type"] == "NotFoundError"
        assert response.json()["retryable"] is False

    def test_wrong_state_is_409(self, client, add_article):
        add_article("a1")
        response = client.post("/articles/a1/promote", headers=ALICE)
        assert response.status_code == 409
        assert "expected one of" in response.json()["detail"]

    def test_locked_article_is_423(self, client, add_article, coordinator):
        add_article("a1")
        with coordinator.locks.hold(article_lock("a1")):
            response = client.post("/articles/a1/stage", headers=ALICE)
        assert response.status_code == 423
        assert response.json()["retryable"] is True

    def test_reject(self, client, make_article, article_store):
        article_store.save_article(make_article("a2", review_status=ReviewStatus.PENDING))
        response = client.post("/articles/a2/reject", headers=ALICE)
        assert response.status_code == 200
        assert response.json()["to_stage"] == "rejected"
        assert article_store.get_article("a2").review_status == ReviewStatus.REJECTED

    def test_history(self, client, add_article):
        add_article("a1")
        client.post("/articles/a1/stage", headers=ALICE)
        response = client.get("/articles/a1/history")
        assert [e["action"] for e in response.json()] == ["stage"]


class TestListingAndBackupRoutes:
    def test_listing_unknown_language_is_404(self, client):
        response = client.post("/listing/fr/promote", headers=ALICE)
        assert response.status_code == 404

    def test_listing_promote(self, client, add_article):
        add_article("a1")
        client.post("/articles/a1/stage", headers=ALICE)
        client.post("/articles/a1/promote", headers=ALICE)
        response = client.post("/listing/en/promote", headers=ALICE)
        assert response.status_code == 200
        assert response.json()["article_ids"] == ["a1"]

    def test_rollback_without_backups_is_404(self, client):
        response = client.post("/rollback", headers=ALICE)
        assert response.status_code == 404

    def test_backups_and_rollback(self, client, add_article):
        add_article("a1")
        client.post("/articles/a1/stage", headers=ALICE)
        promoted = client.post("/articles/a1/promote", headers=ALICE).json()

        backups = client.get("/backups").json()
        assert [b["backup_id"] for b in backups] == [promoted["backup_id"]]

        response = client.post(
            "/rollback", params={"backup_id": promoted["backup_id"]}, headers=ALICE
        )
        assert response.status_code == 200
        assert response.json()["release_version"] == 2
        assert response.json()["affected_subjects"] == ["a1"]

    def test_sweep_requires_actor(self, client):
        assert client.post("/backups/sweep").status_code == 401
        response = client.post("/backups/sweep", headers=ALICE)
        assert response.status_code == 200
        assert response.json() == {"deleted": [], "kept": []}
