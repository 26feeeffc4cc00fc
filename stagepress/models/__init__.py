"""Stagepress data models — all Pydantic v2, all frozen (immutable)."""

from stagepress.models.article import (
    Article,
    ArticleContent,
    PublishingBlock,
    PublishingStage,
    ReviewStatus,
)
from stagepress.models.backups import Backup
from stagepress.models.environments import Environment, EnvironmentName
from stagepress.models.ledger import LedgerAction, LedgerEntry, ReleaseRecord
from stagepress.models.results import (
    ListingResult,
    PromoteResult,
    RepublishResult,
    RollbackResult,
    StageResult,
    SweepResult,
)

__all__ = [
    # article
    "Article",
    "ArticleContent",
    "PublishingBlock",
    "PublishingStage",
    "ReviewStatus",
    # environments
    "Environment",
    "EnvironmentName",
    # backups
    "Backup",
    # ledger
    "LedgerAction",
    "LedgerEntry",
    "ReleaseRecord",
    # results
    "StageResult",
    "PromoteResult",
    "RepublishResult",
    "ListingResult",
    "RollbackResult",
    "SweepResult",
]
