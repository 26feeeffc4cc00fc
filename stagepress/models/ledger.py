"""Publishing ledger models (append-only, hash-chained per subject).

A ledger *subject* is an article id, or ``listing:<language>`` for a
listing page.  Folding a subject's entries in order yields its current
``PublishingBlock``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from stagepress.models.article import PublishingStage


class LedgerAction(str, Enum):
    STAGE = "stage"
    PROMOTE = "promote"
    ROLLBACK = "rollback"
    REJECT = "reject"


class LedgerEntry(BaseModel):
    """One recorded publishing transition."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    article_id: str
    actor: str
    action: LedgerAction
    from_stage: PublishingStage
    to_stage: PublishingStage
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    environment: str = ""  # environment whose content this entry describes
    content_hash: str = ""  # artifact-set hash live in `environment` afterwards
    location: str = ""  # reader-facing URL produced by the transition
    version: int = 0  # subject version after the transition
    release_version: int | None = None  # global production release, if one was cut
    backup_id: str = ""
    skipped: bool = False  # True when the write was skipped as a no-op
    previous_entry_hash: str = ""
    entry_hash: str = ""


class ReleaseRecord(BaseModel):
    """One bump of the global production version counter."""

    model_config = ConfigDict(frozen=True)

    release_version: int
    action: LedgerAction
    subject: str
    actor: str
    backup_id: str = ""
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
