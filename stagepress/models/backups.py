"""Backup models — whole-production snapshots."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

BACKUP_ID_FORMAT = "%Y%m%dT%H%M%S%fZ"


class Backup(BaseModel):
    """An exact copy of production's object set at one instant.

    Only backups whose manifest has been written are ever listed, so a
    listed backup is always complete.  ``checksums`` maps each
    production-relative key to the SHA-256 of its bytes.
    """

    model_config = ConfigDict(frozen=True)

    backup_id: str
    created_at: datetime
    source_environment: str = "production"
    reason: str = ""
    checksums: dict[str, str] = {}

    @property
    def keys(self) -> list[str]:
        return sorted(self.checksums)

    @property
    def object_count(self) -> int:
        return len(self.checksums)
