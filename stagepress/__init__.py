"""Stagepress: staged, versioned, rollback-safe publishing of static article pages.

Articles approved by a reviewer are rendered to a staging environment for
preview, then promoted to production behind a whole-production backup.
Every transition is recorded in a hash-chained ledger, and any backup can
be restored as a new, versioned production release.
"""

__version__ = "0.1.0"
__description__ = "Staged, versioned, rollback-safe static article publishing"

from stagepress.core.coordinator import PublishCoordinator

__all__ = ["PublishCoordinator", "__version__"]
