"""Return values of coordinator operations."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from stagepress.models.ledger import LedgerEntry


class StageResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    article_id: str
    staging_url: str
    content_hash: str
    skipped: bool
    entry: LedgerEntry


class PromoteResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    article_id: str
    production_url: str
    version: int
    release_version: int | None = None
    backup_id: str | None = None
    skipped: bool = False
    entry: LedgerEntry


class RepublishResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    staged: StageResult
    promoted: PromoteResult


class ListingResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    language: str
    production_url: str
    article_ids: list[str]
    release_version: int | None = None
    backup_id: str | None = None
    skipped: bool = False


class RollbackResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    backup_id: str
    pre_restore_backup_id: str
    release_version: int
    restored_keys: list[str] = []
    removed_keys: list[str] = []
    affected_subjects: list[str] = []


class SweepResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    deleted: list[str] = []
    kept: list[str] = []
