"""Backup Manager — whole-production snapshots, restore, and retention.

Storage layout::

    <backup_prefix>/<backup_id>/<production-relative key>
    <backup_prefix>/<backup_id>/_manifest.json

A snapshot copies every object, reads each copy back to verify its
checksum, and only then writes the manifest.  ``list()`` only reports
backups that have a manifest, so an interrupted snapshot is never
offered as a restore point.  Callers must hold the production
environment lock while snapshotting or restoring.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone

from stagepress.core.environment_store import EnvironmentStore
from stagepress.core.errors import (
    BackupFailedError,
    NotFoundError,
    StorageUnavailableError,
)
from stagepress.core.hasher import canonical_json_bytes, sha256_hex
from stagepress.core.object_store import ObjectNotFoundError
from stagepress.models.backups import BACKUP_ID_FORMAT, Backup
from stagepress.models.results import SweepResult

logger = logging.getLogger(__name__)

MANIFEST_NAME = "_manifest.json"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BackupManager:
    """Snapshots, lists, restores, and expires production backups.

    Parameters
    ----------
    store:
        The Environment Store; all object access goes through it.
    backup_prefix:
        Object-store prefix holding every backup.
    retention_days:
        Backups older than this are removed by ``sweep()``, except the
        newest one, which is always kept.
    clock:
        Returns the current UTC time.  Injected by tests.
    """

    def __init__(
        self,
        store: EnvironmentStore,
        *,
        backup_prefix: str = "backups",
        retention_days: int = 30,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._prefix = backup_prefix.rstrip("/")
        self._retention = timedelta(days=retention_days)
        self._clock = clock

    @property
    def retention(self) -> timedelta:
        return self._retention

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def _backup_root(self, backup_id: str) -> str:
        return f"{self._prefix}/{backup_id}"

    def _object_key(self, backup_id: str, relative_key: str) -> str:
        return f"{self._backup_root(backup_id)}/{relative_key}"

    def _manifest_key(self, backup_id: str) -> str:
        return self._object_key(backup_id, MANIFEST_NAME)

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self, *, reason: str = "") -> Backup:
        """Copy every production object into a new, verified backup.

        Raises ``BackupFailedError`` if any object cannot be copied or
        verified.  Nothing under the production prefix is touched.
        """
        production = self._store.production
        created_at, backup_id = self._allocate_id()
        checksums: dict[str, str] = {}

        try:
            for key in self._store.list_objects(production.prefix):
                relative_key = production.relative(key)
                data = self._store.get_object(key)
                self._store.put_object(self._object_key(backup_id, relative_key), data)
                checksums[relative_key] = sha256_hex(data)

            for relative_key, digest in checksums.items():
                copied = self._store.get_object(self._object_key(backup_id, relative_key))
                if sha256_hex(copied) != digest:
                    raise BackupFailedError(
                        f"Backup {backup_id}: checksum mismatch for {relative_key}"
                    )

            backup = Backup(
                backup_id=backup_id,
                created_at=created_at,
                source_environment=production.name.value,
                reason=reason,
                checksums=checksums,
            )
            self._store.put_object(
                self._manifest_key(backup_id),
                canonical_json_bytes(backup.model_dump(mode="json")),
                content_type="application/json",
            )
        except BackupFailedError:
            self._discard_partial(backup_id)
            raise
        except (StorageUnavailableError, NotFoundError) as exc:
            self._discard_partial(backup_id)
            raise BackupFailedError(
                f"Backup {backup_id} could not be completed: {exc}"
            ) from exc

        logger.info(
            "Backup %s created with %d object(s) (%s).",
            backup_id, backup.object_count, reason or "no reason given",
        )
        return backup

    def production_checksums(self) -> dict[str, str]:
        """SHA-256 of every object currently in production, by relative key."""
        production = self._store.production
        return {
            production.relative(key): sha256_hex(self._store.get_object(key))
            for key in self._store.list_objects(production.prefix)
        }

    def _allocate_id(self) -> tuple[datetime, str]:
        created_at = self._clock()
        while True:
            backup_id = created_at.strftime(BACKUP_ID_FORMAT)
            if not self._store.list_objects(self._backup_root(backup_id)):
                return created_at, backup_id
            created_at += timedelta(microseconds=1)

    def _discard_partial(self, backup_id: str) -> None:
        try:
            self._delete_backup_objects(backup_id)
        except StorageUnavailableError:
            logger.warning(
                "Could not clean up partial backup %s; sweep() will remove it.",
                backup_id, exc_info=True,
            )

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def list(self) -> list[Backup]:
        """Return every complete backup, newest first."""
        backups: list[Backup] = []
        for backup_id in self._backup_ids():
            try:
                backups.append(self.get(backup_id))
            except NotFoundError:
                continue
        backups.sort(key=lambda b: (b.created_at, b.backup_id), reverse=True)
        return backups

    def latest(self) -> Backup | None:
        backups = self.list()
        return backups[0] if backups else None

    def get(self, backup_id: str) -> Backup:
        try:
            raw = self._store.get_object(self._manifest_key(backup_id))
        except (ObjectNotFoundError, ValueError):
            raise NotFoundError(f"Backup {backup_id} not found") from None
        return Backup.model_validate(json.loads(raw))

    def _backup_ids(self) -> set[str]:
        head = f"{self._prefix}/"
        ids: set[str] = set()
        for key in self._store.list_objects(self._prefix):
            rest = key[len(head):]
            if "/" in rest:
                ids.add(rest.split("/", 1)[0])
        return ids

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore(self, backup: Backup) -> tuple[list[str], list[str]]:
        """Make production exactly equal to *backup*.

        Copies every backed-up object onto production and deletes
        production objects the backup does not contain.  Returns the
        restored and removed production-relative keys.
        """
        production = self._store.production
        current = set(self._store.list_relative_keys(production))
        restored = self._restore_keys(backup, backup.keys)
        removed = sorted(current - set(backup.checksums))
        for relative_key in removed:
            self._store.delete(production, relative_key)
        logger.info(
            "Restored backup %s onto production: %d object(s) restored, %d removed.",
            backup.backup_id, len(restored), len(removed),
        )
        return restored, removed

    def restore_keys(self, backup: Backup, relative_keys: Iterable[str]) -> None:
        """Return only *relative_keys* in production to their state in *backup*.

        Keys the backup does not contain are deleted from production.
        Used to undo a promotion that failed part-way through.
        """
        production = self._store.production
        keys = sorted(set(relative_keys))
        self._restore_keys(backup, [k for k in keys if k in backup.checksums])
        for relative_key in keys:
            if relative_key not in backup.checksums:
                self._store.delete(production, relative_key)

    def _restore_keys(self, backup: Backup, relative_keys: Iterable[str]) -> list[str]:
        production = self._store.production
        restored: list[str] = []
        for relative_key in relative_keys:
            self._store.copy_object(
                self._object_key(backup.backup_id, relative_key),
                production.key(relative_key),
            )
            restored.append(relative_key)
        return restored

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def sweep(self, *, now: datetime | None = None) -> SweepResult:
        """Delete backups older than the retention window.

        The newest complete backup is never deleted, whatever its age.
        Leftovers of interrupted snapshots (no manifest) are removed once
        they are older than the window too.
        """
        now = now or self._clock()
        cutoff = now - self._retention
        backups = self.list()
        complete = {b.backup_id for b in backups}

        deleted: list[str] = []
        kept: list[str] = []
        for index, backup in enumerate(backups):
            if index > 0 and backup.created_at < cutoff:
                self.delete(backup.backup_id)
                deleted.append(backup.backup_id)
            else:
                kept.append(backup.backup_id)

        for backup_id in sorted(self._backup_ids() - complete):
            try:
                started = datetime.strptime(backup_id, BACKUP_ID_FORMAT).replace(tzinfo=timezone.utc)
            except ValueError:
                continue
            if started < cutoff:
                self._delete_backup_objects(backup_id)
                deleted.append(backup_id)

        if deleted:
            logger.info("Backup sweep removed %d backup(s): %s", len(deleted), ", ".join(deleted))
        return SweepResult(deleted=deleted, kept=kept)

    def delete(self, backup_id: str) -> None:
        """Remove a backup; the manifest goes first so it is never listed half-deleted."""
        self._store.delete_object(self._manifest_key(backup_id))
        self._delete_backup_objects(backup_id)

    def _delete_backup_objects(self, backup_id: str) -> None:
        for key in self._store.list_objects(self._backup_root(backup_id)):
            self._store.delete_object(key)
