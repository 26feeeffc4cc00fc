"""Production configuration guard — enforces hard constraints in production.

The guard runs once when the coordinator is built from configuration and
fails hard (raises ``ProductionConfigError``) if production would start
in a state that cannot honour its guarantees: readers must be served
from a shared bucket behind a CDN, not from a local directory.
"""

from __future__ import annotations

import logging

from stagepress.config import PublishConfig
from stagepress.core.errors import PublishError

logger = logging.getLogger(__name__)


class ProductionConfigError(PublishError):
    """Raised when production configuration constraints are violated.

    The process should exit; this error must not be caught and ignored.
    """


def enforce_production_constraints(config: PublishConfig) -> None:
    """Validate all production-critical configuration constraints.

    Constraints enforced
    --------------------
    1. Debug mode must be disabled.
    2. The object store must be S3, with a bucket configured.
    3. The production CDN distribution must be configured.

    Parameters
    ----------
    config:
        The active ``PublishConfig`` instance.

    Raises
    ------
    ProductionConfigError
        If any production constraint is violated.
    """
    if not config.is_production:
        return

    violations: list[str] = []

    if config.debug:
        violations.append(
            "debug=True is not allowed in production. Set STAGEPRESS_DEBUG=false."
        )

    if config.storage_backend != "s3":
        violations.append(
            f"storage_backend={config.storage_backend!r} is not allowed in production. "
            "Set STAGEPRESS_STORAGE_BACKEND=s3."
        )
    elif not config.bucket_name:
        violations.append(
            "bucket_name is required in production. Set STAGEPRESS_BUCKET_NAME."
        )

    if not config.production_distribution_id:
        violations.append(
            "production_distribution_id is required in production. "
            "Set STAGEPRESS_PRODUCTION_DISTRIBUTION_ID."
        )

    if violations:
        msg = (
            "Production configuration guard failed.\n"
            + "\n".join(f"  - {v}" for v in violations)
        )
        logger.critical(msg)
        raise ProductionConfigError(msg)

    logger.info("Production configuration guard passed.")
