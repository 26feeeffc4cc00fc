"""Publishing state machine: transition table and ledger fold.

States::

    unpublished -> staged -> published
    unpublished -> rejected            (terminal)
    published   -> staged              (re-edit; not a rollback)

``promote`` is also accepted from ``published`` so that promoting
unchanged content is a recorded no-op.  ``rollback`` entries are
written by restores and may land on any non-rejected subject.

The current ``PublishingBlock`` of a subject is always the fold of its
ledger entries; the copy kept on the article record is a cache of it.
"""

from __future__ import annotations

from collections.abc import Iterable

from stagepress.core.errors import PreconditionFailedError
from stagepress.models.article import PublishingBlock, PublishingStage
from stagepress.models.environments import EnvironmentName
from stagepress.models.ledger import LedgerAction, LedgerEntry

ALLOWED_SOURCES: dict[LedgerAction, frozenset[PublishingStage]] = {
    LedgerAction.STAGE: frozenset({
        PublishingStage.UNPUBLISHED,
        PublishingStage.STAGED,
        PublishingStage.PUBLISHED,
    }),
    LedgerAction.PROMOTE: frozenset({
        PublishingStage.STAGED,
        PublishingStage.PUBLISHED,
    }),
    LedgerAction.REJECT: frozenset({PublishingStage.UNPUBLISHED}),
    LedgerAction.ROLLBACK: frozenset({
        PublishingStage.UNPUBLISHED,
        PublishingStage.STAGED,
        PublishingStage.PUBLISHED,
    }),
}


def can_transition(current: PublishingStage, action: LedgerAction) -> bool:
    return current in ALLOWED_SOURCES[action]


def check_transition(subject: str, current: PublishingStage, action: LedgerAction) -> None:
    """Raise ``PreconditionFailedError`` if *action* is not allowed from *current*."""
    if not can_transition(current, action):
        allowed = sorted(s.value for s in ALLOWED_SOURCES[action])
        raise PreconditionFailedError(
            f"Cannot {action.value} {subject}: it is {current.value}, "
            f"expected one of {allowed}"
        )


def apply(block: PublishingBlock, entry: LedgerEntry) -> PublishingBlock:
    """Return *block* with *entry*'s effect applied."""
    hashes = dict(block.content_hash)
    update: dict = {"stage": entry.to_stage, "version": entry.version}

    if entry.action == LedgerAction.STAGE:
        hashes[EnvironmentName.STAGING.value] = entry.content_hash
        update.update(
            staged_at=entry.timestamp_utc,
            staged_by=entry.actor,
            staging_url=entry.location or block.staging_url,
        )

    elif entry.action == LedgerAction.PROMOTE:
        hashes[EnvironmentName.PRODUCTION.value] = entry.content_hash
        update["production_url"] = entry.location or block.production_url
        if not entry.skipped:
            update.update(published_at=entry.timestamp_utc, published_by=entry.actor)

    elif entry.action == LedgerAction.ROLLBACK:
        if entry.content_hash:
            hashes[EnvironmentName.PRODUCTION.value] = entry.content_hash
        else:
            hashes.pop(EnvironmentName.PRODUCTION.value, None)
        if entry.to_stage == PublishingStage.PUBLISHED:
            update["production_url"] = entry.location or block.production_url
        else:
            update["production_url"] = None

    update["content_hash"] = hashes
    return block.model_copy(update=update)


def fold(entries: Iterable[LedgerEntry]) -> PublishingBlock:
    """Replay *entries* in order onto an empty block."""
    block = PublishingBlock()
    for entry in entries:
        block = apply(block, entry)
    return block
