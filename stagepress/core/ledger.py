"""Append-only, hash-chained publishing ledger backed by SQLite.

The ledger is the source of truth for every subject's publishing state;
the ``publishing`` block on an article record is a cache of the fold of
its entries.

Design:
- Append-only: ``append`` / ``append_batch`` are the only writes.
- Hash-chained per subject: each entry seals the previous entry's hash.
- A second table, ``production_releases``, is the global production
  release counter.  Every production write adds exactly one release in
  the same transaction as its ledger entries.
- WAL journal mode for concurrent readers.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from stagepress.core.errors import LedgerIntegrityError
from stagepress.core.hasher import compute_entry_hash
from stagepress.core.publishing_machine import fold
from stagepress.models.article import PublishingBlock
from stagepress.models.ledger import LedgerAction, LedgerEntry, ReleaseRecord


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS publishing_ledger (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id            TEXT NOT NULL UNIQUE,
    article_id          TEXT NOT NULL,
    actor               TEXT NOT NULL,
    action              TEXT NOT NULL,
    from_stage          TEXT NOT NULL,
    to_stage            TEXT NOT NULL,
    timestamp_utc       TEXT NOT NULL,
    environment         TEXT NOT NULL DEFAULT '',
    content_hash        TEXT NOT NULL DEFAULT '',
    location            TEXT NOT NULL DEFAULT '',
    version             INTEGER NOT NULL DEFAULT 0,
    release_version     INTEGER,
    backup_id           TEXT NOT NULL DEFAULT '',
    skipped             INTEGER NOT NULL DEFAULT 0,
    previous_entry_hash TEXT NOT NULL DEFAULT '',
    entry_hash          TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_ARTICLE = """
CREATE INDEX IF NOT EXISTS idx_ledger_article ON publishing_ledger(article_id, id);
"""

_CREATE_RELEASES = """
CREATE TABLE IF NOT EXISTS production_releases (
    release_version INTEGER PRIMARY KEY AUTOINCREMENT,
    action          TEXT NOT NULL,
    subject         TEXT NOT NULL,
    actor           TEXT NOT NULL,
    backup_id       TEXT NOT NULL DEFAULT '',
    timestamp_utc   TEXT NOT NULL
);
"""

_LEDGER_COLUMNS = (
    "entry_id, article_id, actor, action, from_stage, to_stage, timestamp_utc, "
    "environment, content_hash, location, version, release_version, backup_id, "
    "skipped, previous_entry_hash, entry_hash"
)


class PublishLedger:
    """Append-only, hash-chained publishing ledger.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=10.0, check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_LEDGER)
            conn.execute(_CREATE_IDX_ARTICLE)
            conn.execute(_CREATE_RELEASES)
            conn.commit()

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Seal and persist a single entry."""
        sealed, _ = self.append_batch([entry])
        return sealed[0]

    def append_batch(
        self,
        entries: Sequence[LedgerEntry],
        *,
        release: tuple[LedgerAction, str, str, str] | None = None,
    ) -> tuple[list[LedgerEntry], ReleaseRecord | None]:
        """Seal and persist *entries* atomically, optionally cutting a release.

        Parameters
        ----------
        entries:
            Entries to append, in order.  Each is chained onto the latest
            entry of its own subject.
        release:
            ``(action, subject, actor, backup_id)``.  When given, a new
            production release is recorded and its number is stamped on
            every entry before sealing.

        Returns
        -------
        tuple[list[LedgerEntry], ReleaseRecord | None]
            The sealed entries and the release record, if one was cut.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            record: ReleaseRecord | None = None
            if release is not None:
                action, subject, actor, backup_id = release
                record = ReleaseRecord(
                    release_version=0,
                    action=action,
                    subject=subject,
                    actor=actor,
                    backup_id=backup_id,
                )
                cursor = conn.execute(
                    "INSERT INTO production_releases "
                    "(action, subject, actor, backup_id, timestamp_utc) VALUES (?, ?, ?, ?, ?)",
                    (
                        record.action.value,
                        record.subject,
                        record.actor,
                        record.backup_id,
                        record.timestamp_utc.isoformat(),
                    ),
                )
                record = record.model_copy(update={"release_version": cursor.lastrowid})

            sealed: list[LedgerEntry] = []
            for entry in entries:
                if record is not None:
                    entry = entry.model_copy(update={"release_version": record.release_version})
                previous_hash = self._latest_hash(conn, entry.article_id)
                entry_dict = entry.model_dump(mode="json")
                entry_dict["previous_entry_hash"] = previous_hash
                entry_dict["entry_hash"] = ""
                entry = entry.model_copy(
                    update={
                        "previous_entry_hash": previous_hash,
                        "entry_hash": compute_entry_hash(entry_dict),
                    }
                )
                self._insert(conn, entry)
                sealed.append(entry)
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()
        return sealed, record

    @staticmethod
    def _latest_hash(conn: sqlite3.Connection, article_id: str) -> str:
        row = conn.execute(
            "SELECT entry_hash FROM publishing_ledger WHERE article_id = ? "
            "ORDER BY id DESC LIMIT 1",
            (article_id,),
        ).fetchone()
        return row[0] if row else ""

    @staticmethod
    def _insert(conn: sqlite3.Connection, entry: LedgerEntry) -> None:
        conn.execute(
            f"INSERT INTO publishing_ledger ({_LEDGER_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entry.entry_id,
                entry.article_id,
                entry.actor,
                entry.action.value,
                entry.from_stage.value,
                entry.to_stage.value,
                entry.timestamp_utc.isoformat()
                if isinstance(entry.timestamp_utc, datetime)
                else entry.timestamp_utc,
                entry.environment,
                entry.content_hash,
                entry.location,
                entry.version,
                entry.release_version,
                entry.backup_id,
                int(entry.skipped),
                entry.previous_entry_hash,
                entry.entry_hash,
            ),
        )

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def history(self, article_id: str) -> list[LedgerEntry]:
        """Return every entry for a subject, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_LEDGER_COLUMNS} FROM publishing_ledger "
                "WHERE article_id = ? ORDER BY id ASC",
                (article_id,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def latest(self, article_id: str) -> LedgerEntry | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_LEDGER_COLUMNS} FROM publishing_ledger "
                "WHERE article_id = ? ORDER BY id DESC LIMIT 1",
                (article_id,),
            ).fetchone()
        return self._row_to_entry(row) if row else None

    def subjects(self) -> list[str]:
        """Return every subject that has at least one entry."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT article_id FROM publishing_ledger ORDER BY article_id"
            ).fetchall()
        return [row[0] for row in rows]

    def current_publishing(self, article_id: str) -> PublishingBlock:
        """Fold a subject's history into its current publishing block."""
        return fold(self.history(article_id))

    def current_release_version(self) -> int:
        """Return the global production release version (0 before any release)."""
        with self._connect() as conn:
            row = conn.execute("SELECT MAX(release_version) FROM production_releases").fetchone()
        return row[0] or 0

    def releases(self) -> list[ReleaseRecord]:
        """Return every production release, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT release_version, action, subject, actor, backup_id, timestamp_utc "
                "FROM production_releases ORDER BY release_version ASC"
            ).fetchall()
        return [
            ReleaseRecord(
                release_version=row[0],
                action=row[1],
                subject=row[2],
                actor=row[3],
                backup_id=row[4],
                timestamp_utc=row[5],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, article_id: str) -> bool:
        """Verify the hash chain integrity for a subject.

        Walks all entries in order, recomputes each entry_hash, and
        verifies that previous_entry_hash links match.

        Returns True if the chain is valid, raises LedgerIntegrityError otherwise.
        """
        prev_hash = ""
        for entry in self.history(article_id):
            if entry.previous_entry_hash != prev_hash:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {entry.previous_entry_hash!r}"
                )
            expected_hash = compute_entry_hash(entry.model_dump(mode="json"))
            if entry.entry_hash != expected_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id}: "
                    f"expected hash={expected_hash!r}, "
                    f"got {entry.entry_hash!r}"
                )
            prev_hash = entry.entry_hash
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entry(row: tuple) -> LedgerEntry:
        (
            entry_id,
            article_id,
            actor,
            action,
            from_stage,
            to_stage,
            timestamp_utc,
            environment,
            content_hash,
            location,
            version,
            release_version,
            backup_id,
            skipped,
            previous_entry_hash,
            entry_hash,
        ) = row
        return LedgerEntry(
            entry_id=entry_id,
            article_id=article_id,
            actor=actor,
            action=action,
            from_stage=from_stage,
            to_stage=to_stage,
            timestamp_utc=timestamp_utc,
            environment=environment,
            content_hash=content_hash,
            location=location,
            version=version,
            release_version=release_version,
            backup_id=backup_id,
            skipped=bool(skipped),
            previous_entry_hash=previous_entry_hash,
            entry_hash=entry_hash,
        )
