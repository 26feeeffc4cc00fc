"""Publish Coordinator — stage, promote, reject, listing promotion, rollback.

The Coordinator owns the publishing state machine.  It wires together
the Article Store, Renderer, Environment Store, Backup Manager, the
publishing ledger, and the lease locks.

Locking:
- ``article:<id>`` (or ``listing:<language>``) serializes transitions of
  one subject.  It never waits: a second request fails with ``BusyError``.
- ``environment:production`` serializes every backup-then-write sequence
  on production.  It waits up to ``environment_lock_wait_seconds``.
  Promotions take it after their subject lock; ``restore`` takes it
  first, then every affected subject lock without waiting.

Commit order: production bytes first, then the article record, then the
ledger.  If anything fails after production was touched, the touched
keys are restored from the backup taken for that write before the error
propagates, the article record is put back as it was, and that backup
is deleted.  The production lease is checked just before the ledger
commit; a lost lease abandons the write.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import ExitStack, contextmanager

from stagepress.config import PublishConfig
from stagepress.core.article_store import ArticleStore, SQLiteArticleStore
from stagepress.core.backup_manager import BackupManager
from stagepress.core.cdn import CacheInvalidator, CloudFrontInvalidator, LogOnlyInvalidator
from stagepress.core.environment_store import EnvironmentStore
from stagepress.core.errors import NotFoundError, PreconditionFailedError, PublishError
from stagepress.core.hasher import artifact_set_hash, artifact_set_hash_from_digests
from stagepress.core.ledger import PublishLedger
from stagepress.core.locks import LeaseLockManager, Lease, article_lock, environment_lock
from stagepress.core.object_store import LocalObjectStore, ObjectNotFoundError, ObjectStore, S3ObjectStore
from stagepress.core.production_guard import enforce_production_constraints
from stagepress.core.publishing_machine import apply, check_transition
from stagepress.core.renderer import Renderer
from stagepress.models.article import Article, PublishingBlock, PublishingStage, ReviewStatus
from stagepress.models.backups import Backup
from stagepress.models.environments import (
    EnvironmentName,
    listing_relative_key,
    listing_subject,
    subject_for_relative_key,
)
from stagepress.models.ledger import LedgerAction, LedgerEntry, ReleaseRecord
from stagepress.models.results import (
    ListingResult,
    PromoteResult,
    RepublishResult,
    RollbackResult,
    StageResult,
    SweepResult,
)

logger = logging.getLogger(__name__)

_LISTING_PREFIX = "listing:"

# (subject, block before the change, entry to append)
_Change = tuple[str, PublishingBlock, LedgerEntry]


def _is_listing(subject: str) -> bool:
    return subject.startswith(_LISTING_PREFIX)


def _subject_lock(subject: str) -> str:
    return subject if _is_listing(subject) else article_lock(subject)


def _listing_order(articles: Sequence[Article]) -> list[Article]:
    """Newest ``published_date`` first, ties broken by id."""
    by_id = sorted(articles, key=lambda a: a.id)
    return sorted(by_id, key=lambda a: a.published_date, reverse=True)


class PublishCoordinator:
    """Orchestrates every publishing transition.

    Parameters
    ----------
    articles:
        The Article Store.
    store:
        Environment Store for staging and production.
    backups:
        Backup Manager sharing ``store``.
    ledger:
        Publishing ledger and production release log.
    locks:
        Lease lock manager.
    renderer:
        Detail and listing page renderer.
    environment_lock_wait_seconds:
        How long a production write waits for the environment lock.
    """

    def __init__(
        self,
        articles: ArticleStore,
        store: EnvironmentStore,
        backups: BackupManager,
        ledger: PublishLedger,
        locks: LeaseLockManager,
        renderer: Renderer,
        *,
        environment_lock_wait_seconds: float = 10.0,
    ) -> None:
        self.articles = articles
        self.store = store
        self.backups = backups
        self.ledger = ledger
        self.locks = locks
        self.renderer = renderer
        self._environment_wait = environment_lock_wait_seconds

    @classmethod
    def from_config(cls, config: PublishConfig) -> PublishCoordinator:
        """Build a coordinator and all its collaborators from configuration."""
        enforce_production_constraints(config)

        objects: ObjectStore
        if config.storage_backend == "s3":
            objects = S3ObjectStore(
                config.bucket_name,
                endpoint_url=config.s3_endpoint_url,
                region=config.aws_region,
                timeout_seconds=config.storage_timeout_seconds,
            )
        else:
            objects = LocalObjectStore(config.local_storage_root)

        invalidator: CacheInvalidator
        if config.staging_distribution_id or config.production_distribution_id:
            invalidator = CloudFrontInvalidator(timeout_seconds=config.storage_timeout_seconds)
        else:
            invalidator = LogOnlyInvalidator()

        store = EnvironmentStore(
            objects,
            config.environment_for(EnvironmentName.STAGING),
            config.environment_for(EnvironmentName.PRODUCTION),
            invalidator=invalidator,
            timeout_seconds=config.storage_timeout_seconds,
            max_attempts=config.storage_max_attempts,
            backoff_seconds=config.storage_backoff_seconds,
        )
        return cls(
            SQLiteArticleStore(config.article_db_path),
            store,
            BackupManager(
                store,
                backup_prefix=config.backup_prefix,
                retention_days=config.backup_retention_days,
            ),
            PublishLedger(config.ledger_path),
            LeaseLockManager(config.lock_db_path, lease_seconds=config.lock_lease_seconds),
            Renderer(config.site_title, config.languages),
            environment_lock_wait_seconds=config.environment_lock_wait_seconds,
        )

    def close(self) -> None:
        self.store.close()

    # ------------------------------------------------------------------
    # Article transitions
    # ------------------------------------------------------------------

    def stage(self, article_id: str, actor: str) -> StageResult:
        """Render every language of an approved article and write it to staging."""
        with self.locks.hold(article_lock(article_id)):
            return self._stage_locked(article_id, actor)

    def promote(self, article_id: str, actor: str) -> PromoteResult:
        """Back up production, then copy the article's staged pages onto it."""
        with self.locks.hold(article_lock(article_id)):
            return self._promote_locked(article_id, actor)

    def republish(self, article_id: str, actor: str) -> RepublishResult:
        """Stage and promote a published article under one lock.

        Both transitions are recorded.  If the promotion fails the article
        is left staged, with the new pages previewable in staging.
        """
        with self.locks.hold(article_lock(article_id)):
            self.articles.get_article(article_id)
            block = self.ledger.current_publishing(article_id)
            if block.stage != PublishingStage.PUBLISHED:
                raise PreconditionFailedError(
                    f"Cannot republish {article_id}: it is {block.stage.value}, expected published"
                )
            staged = self._stage_locked(article_id, actor)
            promoted = self._promote_locked(article_id, actor)
        return RepublishResult(staged=staged, promoted=promoted)

    def reject(self, article_id: str, actor: str) -> LedgerEntry:
        """Reject an unpublished article.  Terminal."""
        with self.locks.hold(article_lock(article_id)):
            article = self.articles.get_article(article_id)
            block = self.ledger.current_publishing(article_id)
            check_transition(article_id, block.stage, LedgerAction.REJECT)
            entry = LedgerEntry(
                article_id=article_id,
                actor=actor,
                action=LedgerAction.REJECT,
                from_stage=block.stage,
                to_stage=PublishingStage.REJECTED,
                version=block.version,
            )
            self.articles.update_review_status(article_id, ReviewStatus.REJECTED)
            try:
                (sealed,), _ = self._commit([(article_id, block, entry)])
            except Exception:
                self.articles.update_review_status(article_id, article.review_status)
                raise
        logger.info("Article %s rejected by %s.", article_id, actor)
        return sealed

    def _stage_locked(self, article_id: str, actor: str) -> StageResult:
        article = self.articles.get_article(article_id)
        if article.review_status != ReviewStatus.APPROVED:
            raise PreconditionFailedError(
                f"Cannot stage {article_id}: review status is "
                f"{article.review_status.value}, expected approved"
            )
        block = self.ledger.current_publishing(article_id)
        check_transition(article_id, block.stage, LedgerAction.STAGE)

        staging = self.store.staging
        artifacts = self.renderer.render_detail_set(article)
        content_hash = artifact_set_hash(artifacts)
        skipped = content_hash == block.hash_for(staging.name.value)
        if skipped:
            logger.info("Article %s unchanged in staging; write skipped.", article_id)
        else:
            for relative_key in sorted(artifacts):
                self.store.write(staging, relative_key, artifacts[relative_key])

        location = staging.detail_url(article.primary_language, article_id)
        entry = LedgerEntry(
            article_id=article_id,
            actor=actor,
            action=LedgerAction.STAGE,
            from_stage=block.stage,
            to_stage=PublishingStage.STAGED,
            environment=staging.name.value,
            content_hash=content_hash,
            location=location,
            version=block.version,
            skipped=skipped,
        )
        (sealed,), _ = self._commit([(article_id, block, entry)])
        if not skipped:
            self.store.invalidate(staging, artifacts)
            logger.info("Article %s staged by %s at %s.", article_id, actor, location)
        return StageResult(
            article_id=article_id,
            staging_url=location,
            content_hash=content_hash,
            skipped=skipped,
            entry=sealed,
        )

    def _promote_locked(self, article_id: str, actor: str) -> PromoteResult:
        article = self.articles.get_article(article_id)
        block = self.ledger.current_publishing(article_id)
        check_transition(article_id, block.stage, LedgerAction.PROMOTE)

        staging, production = self.store.staging, self.store.production
        artifacts = self.renderer.render_detail_set(article)
        content_hash = artifact_set_hash(artifacts)
        if content_hash != block.hash_for(staging.name.value):
            raise PreconditionFailedError(
                f"Cannot promote {article_id}: its content changed since it was staged; "
                "stage it again and preview before promoting"
            )
        self._verify_staged(article_id, artifacts, content_hash)

        location = production.detail_url(article.primary_language, article_id)
        entry = LedgerEntry(
            article_id=article_id,
            actor=actor,
            action=LedgerAction.PROMOTE,
            from_stage=block.stage,
            to_stage=PublishingStage.PUBLISHED,
            environment=production.name.value,
            content_hash=content_hash,
            location=location,
            version=block.version,
        )

        if content_hash == block.hash_for(production.name.value):
            entry = entry.model_copy(update={"skipped": True})
            (sealed,), _ = self._commit([(article_id, block, entry)])
            logger.info("Article %s unchanged in production; promotion is a no-op.", article_id)
            return PromoteResult(
                article_id=article_id,
                production_url=location,
                version=block.version,
                skipped=True,
                entry=sealed,
            )

        entry = entry.model_copy(update={"version": block.version + 1})
        sealed, release, backup = self._write_production(
            article_id, actor, sorted(artifacts), block, entry
        )
        logger.info(
            "Article %s promoted by %s: version %d, release %d, backup %s.",
            article_id, actor, sealed.version, release.release_version, backup.backup_id,
        )
        return PromoteResult(
            article_id=article_id,
            production_url=location,
            version=sealed.version,
            release_version=release.release_version,
            backup_id=backup.backup_id,
            entry=sealed,
        )

    def _verify_staged(self, subject: str, artifacts: dict[str, bytes], content_hash: str) -> None:
        """Check staging still holds exactly the bytes that were staged."""
        staging = self.store.staging
        try:
            staged = {key: self.store.read(staging, key) for key in artifacts}
        except ObjectNotFoundError as exc:
            raise PreconditionFailedError(
                f"Cannot promote {subject}: staged page is missing ({exc}); stage it again"
            ) from exc
        if artifact_set_hash(staged) != content_hash:
            raise PreconditionFailedError(
                f"Cannot promote {subject}: staging no longer holds the previewed pages; "
                "stage it again"
            )

    # ------------------------------------------------------------------
    # Listing pages
    # ------------------------------------------------------------------

    def promote_listing(self, language: str, actor: str) -> ListingResult:
        """Rebuild and publish the listing page of *language*.

        The listing is staged first and then copied to production behind
        its own backup, exactly like a detail page.  Detail pages are not
        re-rendered.
        """
        if language not in self.renderer.languages:
            raise NotFoundError(f"Language {language!r} is not configured")
        subject = listing_subject(language)

        with self.locks.hold(_subject_lock(subject)):
            articles = _listing_order(self.articles.list_published(language))
            article_ids = [a.id for a in articles]
            relative_key = listing_relative_key(language)
            artifacts = {relative_key: self.renderer.render_listing(language, articles)}
            content_hash = artifact_set_hash(artifacts)

            staging, production = self.store.staging, self.store.production
            block = self.ledger.current_publishing(subject)
            check_transition(subject, block.stage, LedgerAction.STAGE)

            stage_skipped = content_hash == block.hash_for(staging.name.value)
            if not stage_skipped:
                self.store.write(staging, relative_key, artifacts[relative_key])
            stage_entry = LedgerEntry(
                article_id=subject,
                actor=actor,
                action=LedgerAction.STAGE,
                from_stage=block.stage,
                to_stage=PublishingStage.STAGED,
                environment=staging.name.value,
                content_hash=content_hash,
                location=staging.listing_url(language),
                version=block.version,
                skipped=stage_skipped,
            )
            promote_entry = LedgerEntry(
                article_id=subject,
                actor=actor,
                action=LedgerAction.PROMOTE,
                from_stage=PublishingStage.STAGED,
                to_stage=PublishingStage.PUBLISHED,
                environment=production.name.value,
                content_hash=content_hash,
                location=production.listing_url(language),
                version=block.version,
            )
            location = production.listing_url(language)

            (staged_entry,), _ = self._commit([(subject, block, stage_entry)])
            if not stage_skipped:
                self.store.invalidate(staging, artifacts)
            staged_block = apply(block, staged_entry)

            if content_hash == staged_block.hash_for(production.name.value):
                promote_entry = promote_entry.model_copy(update={"skipped": True})
                self._commit([(subject, staged_block, promote_entry)])
                logger.info("Listing %s unchanged in production; promotion is a no-op.", language)
                return ListingResult(
                    language=language,
                    production_url=location,
                    article_ids=article_ids,
                    skipped=True,
                )

            promote_entry = promote_entry.model_copy(update={"version": block.version + 1})
            self._verify_staged(subject, artifacts, content_hash)
            _, release, backup = self._write_production(
                subject, actor, [relative_key], staged_block, promote_entry
            )

        logger.info(
            "Listing %s promoted by %s with %d article(s): release %d, backup %s.",
            language, actor, len(article_ids), release.release_version, backup.backup_id,
        )
        return ListingResult(
            language=language,
            production_url=location,
            article_ids=article_ids,
            release_version=release.release_version,
            backup_id=backup.backup_id,
        )

    def promote_all_listings(self, actor: str) -> list[ListingResult]:
        """Promote the listing of every configured language."""
        return [self.promote_listing(language, actor) for language in self.renderer.languages]

    # ------------------------------------------------------------------
    # Backups and rollback
    # ------------------------------------------------------------------

    def list_backups(self) -> list[Backup]:
        return self.backups.list()

    def sweep_backups(self) -> SweepResult:
        with self._production_lock():
            return self.backups.sweep()

    def restore(self, actor: str, backup_id: str | None = None) -> RollbackResult:
        """Make production equal to a backup (the newest when *backup_id* is omitted).

        Once the affected subjects are locked, production is itself
        snapshotted, so a restore can be undone by restoring that
        snapshot.  A failed restore puts production back and deletes the
        snapshot.  Every subject whose pages changed gets a ``rollback``
        ledger entry, and the global release version is bumped.
        """
        production = self.store.production
        with self._production_lock() as production_lease:
            if backup_id:
                target = self.backups.get(backup_id)
            else:
                target = self.backups.latest()
                if target is None:
                    raise NotFoundError("No backups exist; nothing to restore")

            current = self.backups.production_checksums()
            changed = sorted(
                key
                for key in set(current) | set(target.checksums)
                if current.get(key) != target.checksums.get(key)
            )
            subjects = sorted({
                subject
                for subject in map(subject_for_relative_key, changed)
                if subject is not None
            })

            with ExitStack() as stack:
                for subject in subjects:
                    stack.enter_context(self.locks.hold(_subject_lock(subject)))
                # Undo point is taken only after every subject lock is held.
                pre_restore = self.backups.snapshot(reason=f"before restore of {target.backup_id}")
                try:
                    restored, removed = self.backups.restore(target)
                    changes = [self._rollback_change(subject, actor, target) for subject in subjects]
                    self.locks.ensure_held(production_lease)
                    _, release = self._commit(
                        changes,
                        release=(LedgerAction.ROLLBACK, f"backup:{target.backup_id}", actor, target.backup_id),
                    )
                except Exception:
                    if self._compensate_restore(pre_restore):
                        self._discard_backup(pre_restore)
                    raise

        self.store.invalidate(production, changed)
        logger.info(
            "Production restored to backup %s by %s: release %d, %d subject(s) affected.",
            target.backup_id, actor, release.release_version, len(subjects),
        )
        return RollbackResult(
            backup_id=target.backup_id,
            pre_restore_backup_id=pre_restore.backup_id,
            release_version=release.release_version,
            restored_keys=restored,
            removed_keys=removed,
            affected_subjects=subjects,
        )

    def _rollback_change(self, subject: str, actor: str, target: Backup) -> _Change:
        production = self.store.production
        block = self.ledger.current_publishing(subject)
        check_transition(subject, block.stage, LedgerAction.ROLLBACK)
        digests = {
            key: digest
            for key, digest in target.checksums.items()
            if subject_for_relative_key(key) == subject
        }
        if digests:
            to_stage = PublishingStage.PUBLISHED
            content_hash = artifact_set_hash_from_digests(digests)
            if _is_listing(subject):
                location = production.listing_url(subject[len(_LISTING_PREFIX):])
            else:
                article = self.articles.get_article(subject)
                location = production.detail_url(article.primary_language, subject)
        else:
            to_stage = PublishingStage.STAGED if block.stage == PublishingStage.PUBLISHED else block.stage
            content_hash = ""
            location = ""
        entry = LedgerEntry(
            article_id=subject,
            actor=actor,
            action=LedgerAction.ROLLBACK,
            from_stage=block.stage,
            to_stage=to_stage,
            environment=production.name.value,
            content_hash=content_hash,
            location=location,
            version=block.version,
            backup_id=target.backup_id,
        )
        return subject, block, entry

    def _compensate_restore(self, pre_restore: Backup) -> bool:
        try:
            self.backups.restore(pre_restore)
        except PublishError:
            logger.critical(
                "Restore failed and production could not be returned to backup %s; "
                "restore it manually.",
                pre_restore.backup_id, exc_info=True,
            )
            return False
        logger.warning("Restore failed; production returned to backup %s.", pre_restore.backup_id)
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def publishing_status(self, article_id: str) -> PublishingBlock:
        """Current publishing block of an article, folded from its ledger."""
        self.articles.get_article(article_id)
        return self.ledger.current_publishing(article_id)

    def listing_status(self, language: str) -> PublishingBlock:
        return self.ledger.current_publishing(listing_subject(language))

    def history(self, subject: str) -> list[LedgerEntry]:
        """Ledger entries of an article or ``listing:<language>``, oldest first."""
        entries = self.ledger.history(subject)
        if not entries and not _is_listing(subject):
            self.articles.get_article(subject)
        return entries

    def release_version(self) -> int:
        return self.ledger.current_release_version()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _production_lock(self) -> Iterator[Lease]:
        name = environment_lock(EnvironmentName.PRODUCTION.value)
        with self.locks.hold(name, wait_seconds=self._environment_wait) as lease:
            yield lease

    def _write_production(
        self,
        subject: str,
        actor: str,
        relative_keys: list[str],
        block: PublishingBlock,
        entry: LedgerEntry,
    ) -> tuple[LedgerEntry, ReleaseRecord, Backup]:
        """Snapshot production, copy *relative_keys* from staging, commit.

        Raises ``BackupFailedError`` before touching production if the
        snapshot fails.  Any later failure restores the copied keys from
        the snapshot before propagating.
        """
        staging, production = self.store.staging, self.store.production
        with self._production_lock() as production_lease:
            backup = self.backups.snapshot(reason=f"before promote of {subject}")
            entry = entry.model_copy(update={"backup_id": backup.backup_id})
            try:
                self.store.copy(staging, production, relative_keys)
                self.locks.ensure_held(production_lease)
                (sealed,), release = self._commit(
                    [(subject, block, entry)],
                    release=(LedgerAction.PROMOTE, subject, actor, backup.backup_id),
                )
            except Exception:
                if self._compensate_write(backup, relative_keys):
                    self._discard_backup(backup)
                raise
        self.store.invalidate(production, relative_keys)
        return sealed, release, backup

    def _compensate_write(self, backup: Backup, relative_keys: list[str]) -> bool:
        try:
            self.backups.restore_keys(backup, relative_keys)
        except PublishError:
            logger.critical(
                "Promotion failed and production keys %s could not be restored from "
                "backup %s; restore it manually.",
                relative_keys, backup.backup_id, exc_info=True,
            )
            return False
        logger.warning(
            "Promotion failed; production keys restored from backup %s.",
            backup.backup_id,
        )
        return True

    def _discard_backup(self, backup: Backup) -> None:
        """Delete a backup that duplicates the production just put back."""
        try:
            self.backups.delete(backup.backup_id)
        except PublishError:
            logger.warning(
                "Could not delete backup %s after a failed write; delete it before "
                "restoring without a backup id.",
                backup.backup_id, exc_info=True,
            )

    def _commit(
        self,
        changes: list[_Change],
        *,
        release: tuple[LedgerAction, str, str, str] | None = None,
    ) -> tuple[list[LedgerEntry], ReleaseRecord | None]:
        """Write publishing blocks to the article records, then append to the ledger.

        If the ledger append fails, every article record touched is put
        back to its previous block.
        """
        before: dict[str, PublishingBlock] = {}
        after: dict[str, PublishingBlock] = {}
        for subject, block, entry in changes:
            if _is_listing(subject):
                continue
            before.setdefault(subject, block)
            after[subject] = apply(after.get(subject, block), entry)

        written: list[str] = []
        try:
            for subject, block in after.items():
                self.articles.update_publishing_metadata(subject, block)
                written.append(subject)
            return self.ledger.append_batch([entry for _, _, entry in changes], release=release)
        except Exception:
            for subject in written:
                self.articles.update_publishing_metadata(subject, before[subject])
            raise
