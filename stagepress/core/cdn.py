"""Edge-cache invalidation backends.

``CloudFrontInvalidator`` issues a CloudFront invalidation batch.
``LogOnlyInvalidator`` is used when no distribution is configured
(local deployments); it only logs the paths it was asked to invalidate.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from typing import Any, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class InvalidationError(RuntimeError):
    """Raised when an invalidation request is rejected or cannot be sent."""


class CacheInvalidator(Protocol):
    def invalidate(self, distribution_id: str, paths: Sequence[str]) -> str: ...


class LogOnlyInvalidator:
    """Invalidator for environments without a CDN distribution."""

    def invalidate(self, distribution_id: str, paths: Sequence[str]) -> str:
        logger.info(
            "No CDN configured; skipping invalidation of %d path(s) for %r.",
            len(paths), distribution_id or "<none>",
        )
        return ""


class CloudFrontInvalidator:
    """Creates CloudFront invalidations.

    Parameters
    ----------
    client:
        A pre-built boto3 CloudFront client.  Built when omitted.
    timeout_seconds:
        Connect and read timeout for the API call.
    """

    def __init__(self, *, client: Any | None = None, timeout_seconds: float = 30.0) -> None:
        self._client = client or boto3.client(
            "cloudfront",
            config=Config(
                connect_timeout=timeout_seconds,
                read_timeout=timeout_seconds,
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        )

    def invalidate(self, distribution_id: str, paths: Sequence[str]) -> str:
        """Invalidate *paths* on *distribution_id* and return the invalidation id."""
        if not distribution_id:
            raise InvalidationError("distribution_id is required")
        unique_paths = sorted(set(paths))
        try:
            response = self._client.create_invalidation(
                DistributionId=distribution_id,
                InvalidationBatch={
                    "Paths": {"Quantity": len(unique_paths), "Items": unique_paths},
                    "CallerReference": str(uuid.uuid4()),
                },
            )
        except (ClientError, BotoCoreError) as exc:
            raise InvalidationError(
                f"CloudFront invalidation failed for {distribution_id}: {exc}"
            ) from exc
        invalidation_id = response["Invalidation"]["Id"]
        logger.info(
            "CloudFront invalidation %s created for %d path(s) on %s.",
            invalidation_id, len(unique_paths), distribution_id,
        )
        return invalidation_id
