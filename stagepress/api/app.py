"""FastAPI administrative surface for the publishing core.

Every mutating call requires an ``X-Actor`` header carrying the opaque
identity of the reviewer; who may call is decided upstream.  Publishing
errors map to their HTTP status (404, 409, 423, 503, 500) with a JSON
body ``{"detail": ..., "type": ..., "retryable": ...}``.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from stagepress import __version__
from stagepress.config import config
from stagepress.core.coordinator import PublishCoordinator
from stagepress.core.errors import PublishError
from stagepress.models.article import PublishingBlock
from stagepress.models.backups import Backup
from stagepress.models.ledger import LedgerEntry
from stagepress.models.results import (
    ListingResult,
    PromoteResult,
    RepublishResult,
    RollbackResult,
    StageResult,
    SweepResult,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Stagepress", version=__version__)


@lru_cache(maxsize=1)
def _cached_coordinator() -> PublishCoordinator:
    return PublishCoordinator.from_config(config)


def get_coordinator() -> PublishCoordinator:
    """FastAPI dependency returning the shared coordinator."""
    return _cached_coordinator()


def get_actor(x_actor: str | None = Header(default=None)) -> str:
    """The caller's identity, taken from the ``X-Actor`` header."""
    actor = (x_actor or "").strip()
    if not actor:
        raise HTTPException(status_code=401, detail="X-Actor header is required")
    return actor


@app.exception_handler(PublishError)
async def publish_error_handler(request: Request, exc: PublishError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": str(exc),
            "type": type(exc).__name__,
            "retryable": exc.retryable,
        },
    )


@app.get("/healthz")
def healthz():
    return {"ok": True, "version": __version__}


# ---------------------------------------------------------------------------
# Articles
# ---------------------------------------------------------------------------


@app.post("/articles/{article_id}/stage", response_model=StageResult)
def stage_article(
    article_id: str,
    actor: str = Depends(get_actor),
    coordinator: PublishCoordinator = Depends(get_coordinator),
) -> StageResult:
    return coordinator.stage(article_id, actor)


@app.post("/articles/{article_id}/promote", response_model=PromoteResult)
def promote_article(
    article_id: str,
    actor: str = Depends(get_actor),
    coordinator: PublishCoordinator = Depends(get_coordinator),
) -> PromoteResult:
    return coordinator.promote(article_id, actor)


@app.post("/articles/{article_id}/republish", response_model=RepublishResult)
def republish_article(
    article_id: str,
    actor: str = Depends(get_actor),
    coordinator: PublishCoordinator = Depends(get_coordinator),
) -> RepublishResult:
    return coordinator.republish(article_id, actor)


@app.post("/articles/{article_id}/reject", response_model=LedgerEntry)
def reject_article(
    article_id: str,
    actor: str = Depends(get_actor),
    coordinator: PublishCoordinator = Depends(get_coordinator),
) -> LedgerEntry:
    return coordinator.reject(article_id, actor)


@app.get("/articles/{article_id}/publishing-status", response_model=PublishingBlock)
def publishing_status(
    article_id: str,
    coordinator: PublishCoordinator = Depends(get_coordinator),
) -> PublishingBlock:
    return coordinator.publishing_status(article_id)


@app.get("/articles/{article_id}/history", response_model=list[LedgerEntry])
def article_history(
    article_id: str,
    coordinator: PublishCoordinator = Depends(get_coordinator),
) -> list[LedgerEntry]:
    return coordinator.history(article_id)


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


@app.post("/listing/{language}/promote", response_model=ListingResult)
def promote_listing(
    language: str,
    actor: str = Depends(get_actor),
    coordinator: PublishCoordinator = Depends(get_coordinator),
) -> ListingResult:
    return coordinator.promote_listing(language, actor)


# ---------------------------------------------------------------------------
# Backups and rollback
# ---------------------------------------------------------------------------


@app.get("/backups", response_model=list[Backup])
def list_backups(coordinator: PublishCoordinator = Depends(get_coordinator)) -> list[Backup]:
    return coordinator.list_backups()


@app.post("/backups/sweep", response_model=SweepResult)
def sweep_backups(
    actor: str = Depends(get_actor),
    coordinator: PublishCoordinator = Depends(get_coordinator),
) -> SweepResult:
    logger.info("Backup sweep requested by %s.", actor)
    return coordinator.sweep_backups()


@app.post("/rollback", response_model=RollbackResult)
def rollback(
    backup_id: str | None = None,
    actor: str = Depends(get_actor),
    coordinator: PublishCoordinator = Depends(get_coordinator),
) -> RollbackResult:
    return coordinator.restore(actor, backup_id)
