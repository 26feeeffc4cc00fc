"""Tests for the publishing state machine transition table and fold."""

from __future__ import annotations

import pytest

from stagepress.core.errors import PreconditionFailedError
from stagepress.core.publishing_machine import apply, can_transition, check_transition, fold
from stagepress.models.article import PublishingBlock, PublishingStage
from stagepress.models.ledger import LedgerAction, LedgerEntry

S = PublishingStage
A = LedgerAction


def _entry(action: LedgerAction, from_stage: S, to_stage: S, **fields) -> LedgerEntry:
    return LedgerEntry(
        article_id="a1",
        actor=fields.pop("actor", "alice"),
        action=action,
        from_stage=from_stage,
        to_stage=to_stage,
        **fields,
    )


class TestTransitionTable:
    @pytest.mark.parametrize(
        "current, action, allowed",
        [
            (S.UNPUBLISHED, A.STAGE, True),
            (S.PUBLISHED, A.STAGE, True),
            (S.REJECTED, A.STAGE, False),
            (S.UNPUBLISHED, A.PROMOTE, False),
            (S.STAGED, A.PROMOTE, True),
            (S.PUBLISHED, A.PROMOTE, True),
            (S.UNPUBLISHED, A.REJECT, True),
            (S.STAGED, A.REJECT, False),
            (S.PUBLISHED, A.REJECT, False),
            (S.REJECTED, A.REJECT, False),
            (S.REJECTED, A.ROLLBACK, False),
        ],
    )
    def test_table(self, current, action, allowed):
        assert can_transition(current, action) is allowed

    def test_check_transition_message(self):
        with pytest.raises(PreconditionFailedError, match="Cannot promote a1: it is unpublished"):
            check_transition("a1", S.UNPUBLISHED, A.PROMOTE)


class TestFold:
    def test_empty_history(self):
        assert fold([]) == PublishingBlock()

    def test_stage_then_promote(self):
        block = fold([
            _entry(A.STAGE, S.UNPUBLISHED, S.STAGED, environment="staging",
                   content_hash="h1", location="https://staging/en/a1"),
            _entry(A.PROMOTE, S.STAGED, S.PUBLISHED, actor="bob", environment="production",
                   content_hash="h1", location="https://www/en/a1", version=1),
        ])
        assert block.stage == S.PUBLISHED
        assert block.version == 1
        assert block.staged_by == "alice"
        assert block.published_by == "bob"
        assert block.content_hash == {"staging": "h1", "production": "h1"}
        assert block.staging_url == "https://staging/en/a1"
        assert block.production_url == "https://www/en/a1"

    def test_skipped_promote_keeps_published_by(self):
        first = _entry(A.PROMOTE, S.STAGED, S.PUBLISHED, actor="bob",
                       content_hash="h1", version=1)
        noop = _entry(A.PROMOTE, S.PUBLISHED, S.PUBLISHED, actor="carol",
                      content_hash="h1", version=1, skipped=True)
        block = fold([first, noop])
        assert block.published_by == "bob"
        assert block.version == 1

    def test_reject(self):
        block = apply(PublishingBlock(), _entry(A.REJECT, S.UNPUBLISHED, S.REJECTED))
        assert block.stage == S.REJECTED

    def test_rollback_removing_pages_clears_production(self):
        published = fold([
            _entry(A.PROMOTE, S.STAGED, S.PUBLISHED, content_hash="h1",
                   location="https://www/en/a1", version=1),
        ])
        rolled = apply(published, _entry(A.ROLLBACK, S.PUBLISHED, S.STAGED, version=1))
        assert rolled.stage == S.STAGED
        assert rolled.hash_for("production") == ""
        assert rolled.production_url is None
        assert rolled.version == 1

    def test_rollback_to_older_content(self):
        block = fold([
            _entry(A.PROMOTE, S.STAGED, S.PUBLISHED, content_hash="h2", version=2),
            _entry(A.ROLLBACK, S.PUBLISHED, S.PUBLISHED, content_hash="h1",
                   location="https://www/en/a1", version=2),
        ])
        assert block.hash_for("production") == "h1"
        assert block.stage == S.PUBLISHED
