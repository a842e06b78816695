from functools import lru_cache
from typing import ClassVar

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # Knowledge store (optional; empty string means disabled)
    memory_db_path: str = ""

    # Shared context entries expire after this many milliseconds unless a TTL is given
    context_default_ttl_ms: int = 3_600_000

    # Validity horizon applied to new database analyses
    analysis_validity_hours: int = 24

    # Knowledge unused for this many days is reported as archivable
    knowledge_archive_days: int = 30

    # Maintenance schedule (optional; empty = scheduler disabled)
    maintenance_schedule_cron: str = ""  # e.g. "*/15 * * * *"

    # Prometheus exposition port for `ar-wizard-memory serve`
    metrics_port: int = 9108

    log_level: str = "INFO"

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings. Fails at first call, not at import time."""
    return Settings()
