"""Environment Store — the single write path into the object store.

Every object-store call made by the publishing core goes through
``EnvironmentStore``.  Each call carries a bounded timeout and is
retried a bounded number of times with linear backoff; when retries
are exhausted it raises ``StorageUnavailableError``.  A missing key is
never retried.  A call that times out is still waited for before the
next attempt or the error, so no write lands after the caller has
given up on it.

Cache invalidation is best-effort and asynchronous: ``invalidate()``
schedules the request on a background worker and returns immediately.
A failed invalidation is logged, never raised, because origin content
is already correct and edge staleness is bounded by the cache TTL.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from concurrent.futures import wait
from threading import Lock
from typing import Any, TypeVar

from stagepress.core.cdn import CacheInvalidator, InvalidationError, LogOnlyInvalidator
from stagepress.core.errors import StorageUnavailableError
from stagepress.core.object_store import ObjectNotFoundError, ObjectStore, ObjectStoreError
from stagepress.models.environments import Environment, EnvironmentName, cache_path

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EnvironmentStore:
    """Writes, copies, and invalidates objects per named environment.

    Parameters
    ----------
    object_store:
        Backend holding every environment prefix and the backups prefix.
    staging, production:
        The two named environments.
    invalidator:
        CDN backend used for environments that have a distribution id.
    timeout_seconds:
        How long a single object-store or CDN call may take before it
        counts as failed.
    max_attempts:
        Attempts per call before giving up with ``StorageUnavailableError``.
    backoff_seconds:
        Sleep before retry *n* is ``backoff_seconds * n``.
    """

    def __init__(
        self,
        object_store: ObjectStore,
        staging: Environment,
        production: Environment,
        *,
        invalidator: CacheInvalidator | None = None,
        timeout_seconds: float = 30.0,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
    ) -> None:
        self._objects = object_store
        self._environments = {
            EnvironmentName.STAGING: staging,
            EnvironmentName.PRODUCTION: production,
        }
        self._invalidator = invalidator or LogOnlyInvalidator()
        self._timeout = timeout_seconds
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff_seconds
        self._io = ThreadPoolExecutor(max_workers=8, thread_name_prefix="stagepress-io")
        self._cdn = ThreadPoolExecutor(max_workers=2, thread_name_prefix="stagepress-cdn")
        self._pending: set[Future] = set()
        self._pending_lock = Lock()

    # ------------------------------------------------------------------
    # Environments
    # ------------------------------------------------------------------

    def environment(self, name: EnvironmentName | str) -> Environment:
        return self._environments[EnvironmentName(name)]

    @property
    def staging(self) -> Environment:
        return self._environments[EnvironmentName.STAGING]

    @property
    def production(self) -> Environment:
        return self._environments[EnvironmentName.PRODUCTION]

    # ------------------------------------------------------------------
    # Environment-relative operations
    # ------------------------------------------------------------------

    def write(self, environment: Environment, relative_key: str, data: bytes) -> None:
        self.put_object(environment.key(relative_key), data)

    def read(self, environment: Environment, relative_key: str) -> bytes:
        return self.get_object(environment.key(relative_key))

    def read_optional(self, environment: Environment, relative_key: str) -> bytes | None:
        try:
            return self.read(environment, relative_key)
        except ObjectNotFoundError:
            return None

    def copy(
        self,
        source: Environment,
        destination: Environment,
        relative_keys: Iterable[str],
    ) -> list[str]:
        """Copy objects between environments byte-for-byte.

        Promotion uses this instead of rendering twice so production
        receives exactly the bytes that were previewed in staging.
        Returns the destination keys written, in order.
        """
        written: list[str] = []
        for relative_key in relative_keys:
            destination_key = destination.key(relative_key)
            self.copy_object(source.key(relative_key), destination_key)
            written.append(destination_key)
        return written

    def delete(self, environment: Environment, relative_key: str) -> None:
        self.delete_object(environment.key(relative_key))

    def list_relative_keys(self, environment: Environment) -> list[str]:
        return [environment.relative(k) for k in self.list_objects(environment.prefix)]

    def invalidate(self, environment: Environment, relative_keys: Iterable[str]) -> Future | None:
        """Schedule a best-effort cache invalidation; never raises."""
        paths = sorted({cache_path(k) for k in relative_keys})
        if not paths:
            return None
        future = self._cdn.submit(self._invalidate_now, environment, paths)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def wait_for_invalidations(self, timeout: float | None = None) -> None:
        """Block until scheduled invalidations finish (used by tests and shutdown)."""
        with self._pending_lock:
            pending = set(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        self.wait_for_invalidations(timeout=self._timeout)
        self._cdn.shutdown(wait=True)
        self._io.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Absolute-key operations (shared with the Backup Manager)
    # ------------------------------------------------------------------

    def put_object(self, key: str, data: bytes, *, content_type: str = "text/html; charset=utf-8") -> None:
        self._call(f"put {key}", lambda: self._objects.put(key, data, content_type=content_type))

    def get_object(self, key: str) -> bytes:
        return self._call(f"get {key}", self._objects.get, key)

    def copy_object(self, source_key: str, destination_key: str) -> None:
        self._call(
            f"copy {source_key} -> {destination_key}",
            self._objects.copy, source_key, destination_key,
        )

    def delete_object(self, key: str) -> None:
        self._call(f"delete {key}", self._objects.delete, key)

    def list_objects(self, prefix: str) -> list[str]:
        return self._call(f"list {prefix}", self._objects.list_keys, prefix)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _call(self, description: str, fn: Callable[..., T], *args: Any) -> T:
        """Run *fn* with a timeout, retrying transient failures."""
        last_error: Exception | None = None
        for attempt in range(1, self._max_attempts + 1):
            future = self._io.submit(fn, *args)
            try:
                return future.result(timeout=self._timeout)
            except ObjectNotFoundError:
                raise
            except FutureTimeoutError:
                last_error = TimeoutError(f"timed out after {self._timeout}s")
                self._settle(description, future)
            except (ObjectStoreError, InvalidationError, OSError) as exc:
                last_error = exc
            if attempt < self._max_attempts:
                logger.warning(
                    "Storage call %s failed (attempt %d/%d): %s; retrying.",
                    description, attempt, self._max_attempts, last_error,
                )
                time.sleep(self._backoff * attempt)
        raise StorageUnavailableError(
            f"Storage call {description} failed after {self._max_attempts} attempt(s): {last_error}"
        )

    def _settle(self, description: str, future: Future) -> None:
        """Wait for a timed-out call to finish before anything else touches its keys.

        A running call cannot be cancelled.  Retrying or compensating while
        it is still in flight would let its write land afterwards.
        """
        if future.cancel():
            return
        logger.warning(
            "Storage call %s timed out; waiting for it to finish before continuing.",
            description,
        )
        wait([future])

    def _invalidate_now(self, environment: Environment, paths: list[str]) -> None:
        if not environment.distribution_id:
            logger.info(
                "Environment %s has no distribution; %d path(s) not invalidated.",
                environment.name.value, len(paths),
            )
            return
        try:
            self._call(
                f"invalidate {environment.name.value}",
                self._invalidator.invalidate, environment.distribution_id, paths,
            )
        except Exception:
            logger.warning(
                "Cache invalidation for %s failed; edge content may be stale "
                "until the cache TTL expires.",
                environment.name.value, exc_info=True,
            )

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)
