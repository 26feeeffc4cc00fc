"""Lease-based mutual exclusion backed by SQLite.

A lease is a row ``(name, owner, expires_at)``.  Acquiring succeeds when
no row exists for the name or the existing row has expired, so a worker
that crashed while holding a lease blocks others only until the lease
runs out.  A lease held through ``hold()`` is renewed in the background
while the block runs.  SQLite serializes the check-and-set with
``BEGIN IMMEDIATE``, which makes the locks valid across threads and
processes sharing the same database file.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from stagepress.core.errors import BusyError

logger = logging.getLogger(__name__)


_CREATE_LEASES = """
CREATE TABLE IF NOT EXISTS leases (
    name        TEXT PRIMARY KEY,
    owner       TEXT NOT NULL,
    acquired_at REAL NOT NULL,
    expires_at  REAL NOT NULL
);
"""


class Lease(BaseModel):
    """A held lock.  ``owner`` is unique per acquisition."""

    model_config = ConfigDict(frozen=True)

    name: str
    owner: str
    expires_at: float


def article_lock(article_id: str) -> str:
    return f"article:{article_id}"


def environment_lock(environment: str) -> str:
    return f"environment:{environment}"


class LeaseLockManager:
    """Named leases with expiry.

    Parameters
    ----------
    db_path:
        SQLite file holding the lease table.  Created if missing.
    lease_seconds:
        How long a lease stays valid without renewal.
    clock:
        Returns the current time in seconds.  Injected by tests.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        lease_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lease_seconds = lease_seconds
        self._clock = clock
        with self._connect() as conn:
            conn.execute(_CREATE_LEASES)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self._db_path),
            timeout=5.0,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    # ------------------------------------------------------------------
    # Acquire / release
    # ------------------------------------------------------------------

    def try_acquire(self, name: str) -> Lease | None:
        """Take the lease if it is free or expired; never waits."""
        now = self._clock()
        lease = Lease(name=name, owner=uuid.uuid4().hex, expires_at=now + self._lease_seconds)
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT owner, expires_at FROM leases WHERE name = ?", (name,)
            ).fetchone()
            if row is not None and row[1] > now:
                conn.execute("ROLLBACK")
                return None
            if row is not None:
                logger.warning("Reclaiming expired lease %s held by %s.", name, row[0])
            conn.execute(
                "INSERT OR REPLACE INTO leases (name, owner, acquired_at, expires_at) "
                "VALUES (?, ?, ?, ?)",
                (name, lease.owner, now, lease.expires_at),
            )
            conn.execute("COMMIT")
        finally:
            conn.close()
        return lease

    def acquire(
        self,
        name: str,
        *,
        wait_seconds: float = 0.0,
        poll_interval: float = 0.05,
    ) -> Lease:
        """Take the lease, polling for up to *wait_seconds*.

        Raises ``BusyError`` if it is still held when the wait runs out.
        """
        deadline = time.monotonic() + wait_seconds
        while True:
            lease = self.try_acquire(name)
            if lease is not None:
                return lease
            if time.monotonic() >= deadline:
                raise BusyError(f"{name} is locked by another request; retry later")
            time.sleep(poll_interval)

    def release(self, lease: Lease) -> bool:
        """Drop *lease*.  Returns False if it had already been reclaimed."""
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM leases WHERE name = ? AND owner = ?",
                (lease.name, lease.owner),
            )
        if cursor.rowcount == 0:
            logger.warning("Lease %s expired and was reclaimed before release.", lease.name)
            return False
        return True

    def renew(self, lease: Lease) -> Lease:
        """Extend a held lease.  Raises ``BusyError`` if it was lost."""
        expires_at = self._clock() + self._lease_seconds
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE leases SET expires_at = ? WHERE name = ? AND owner = ?",
                (expires_at, lease.name, lease.owner),
            )
        if cursor.rowcount == 0:
            raise BusyError(f"Lease {lease.name} was lost before renewal")
        return lease.model_copy(update={"expires_at": expires_at})

    def holder(self, name: str) -> Lease | None:
        """Return the live lease on *name*, if any."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT owner, expires_at FROM leases WHERE name = ?", (name,)
            ).fetchone()
        if row is None or row[1] <= self._clock():
            return None
        return Lease(name=name, owner=row[0], expires_at=row[1])

    def ensure_held(self, lease: Lease) -> None:
        """Raise ``BusyError`` unless *lease* is still the live lease on its name."""
        current = self.holder(lease.name)
        if current is None or current.owner != lease.owner:
            raise BusyError(f"Lease {lease.name} was lost while held; the operation was abandoned")

    @contextmanager
    def hold(self, name: str, *, wait_seconds: float = 0.0) -> Iterator[Lease]:
        """Hold *name* for the block, renewing the lease in the background.

        A holder that is merely slow keeps its lease; only a holder that
        stopped running lets it expire.
        """
        lease = self.acquire(name, wait_seconds=wait_seconds)
        stop = threading.Event()
        keeper = threading.Thread(
            target=self._keep_alive,
            args=(lease, stop),
            name=f"lease-{name}",
            daemon=True,
        )
        keeper.start()
        try:
            yield lease
        finally:
            stop.set()
            keeper.join()
            self.release(lease)

    def _keep_alive(self, lease: Lease, stop: threading.Event) -> None:
        interval = self._lease_seconds / 3
        while not stop.wait(interval):
            try:
                self.renew(lease)
            except BusyError:
                logger.error("Lease %s was lost while held.", lease.name)
                return
            except sqlite3.Error:
                logger.warning("Could not renew lease %s; will retry.", lease.name, exc_info=True)
