"""Runtime configuration — env-driven via pydantic-settings.

Reads from a .env file and STAGEPRESS_* environment variables.

Examples
--------
Override via environment::

    export STAGEPRESS_ENVIRONMENT=production
    export STAGEPRESS_STORAGE_BACKEND=s3
    export STAGEPRESS_BUCKET_NAME=blog-public
    export STAGEPRESS_PRODUCTION_DISTRIBUTION_ID=E2ABCDEF123456
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from stagepress.models.environments import Environment, EnvironmentName


class PublishConfig(BaseSettings):
    """Publishing configuration with environment variable overrides."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="STAGEPRESS_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Local state
    ledger_path: Path = Path(".stagepress/ledger.db")
    article_db_path: Path = Path(".stagepress/articles.db")
    lock_db_path: Path = Path(".stagepress/locks.db")

    # Object storage
    storage_backend: Literal["local", "s3"] = "local"
    local_storage_root: Path = Path(".stagepress/objects")
    bucket_name: str = ""
    s3_endpoint_url: str | None = None
    aws_region: str = "us-east-1"

    # Environments
    staging_prefix: str = "staging"
    production_prefix: str = "production"
    backup_prefix: str = "backups"
    staging_distribution_id: str = ""
    production_distribution_id: str = ""
    staging_base_url: str = "https://staging.example.com"
    production_base_url: str = "https://www.example.com"

    # Content
    languages: list[str] = ["en", "es", "uk"]
    primary_language: str = "en"
    site_title: str = "AI & Tech Blog"

    # Backups
    backup_retention_days: int = 30

    # Locking
    lock_lease_seconds: float = 300.0
    environment_lock_wait_seconds: float = 10.0

    # Storage calls
    storage_timeout_seconds: float = 30.0
    storage_max_attempts: int = 3
    storage_backoff_seconds: float = 0.5

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 8080

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"

    def environment_for(self, name: EnvironmentName | str) -> Environment:
        """Build the ``Environment`` for *name* from this configuration."""
        name = EnvironmentName(name)
        if name == EnvironmentName.STAGING:
            return Environment(
                name=name,
                prefix=self.staging_prefix,
                base_url=self.staging_base_url,
                distribution_id=self.staging_distribution_id,
            )
        return Environment(
            name=name,
            prefix=self.production_prefix,
            base_url=self.production_base_url,
            distribution_id=self.production_distribution_id,
        )


# Module-level singleton; import as `from stagepress.config import config`
config = PublishConfig()
