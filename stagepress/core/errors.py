"""Publishing error taxonomy.

Every error carries the HTTP status the administrative API reports it
with.  ``BusyError`` and ``StorageUnavailableError`` are retryable by the
caller; the others are not.
"""

from __future__ import annotations


class PublishError(RuntimeError):
    """Base class for all publishing failures."""

    status_code: int = 500
    retryable: bool = False


class NotFoundError(PublishError):
    """Unknown article, backup, or object."""

    status_code = 404


class PreconditionFailedError(PublishError):
    """The subject is in the wrong state for the requested transition."""

    status_code = 409


class BusyError(PublishError):
    """A lock on the article or environment is held by another request."""

    status_code = 423
    retryable = True


class StorageUnavailableError(PublishError):
    """Object-store or CDN calls kept failing after bounded retries."""

    status_code = 503
    retryable = True


class BackupFailedError(PublishError):
    """A snapshot could not be verified complete; nothing was written."""

    status_code = 500


class LedgerIntegrityError(PublishError):
    """Raised when a subject's hash chain is broken."""
