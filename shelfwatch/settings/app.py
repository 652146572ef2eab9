"""Application settings powered by Pydantic BaseSettings."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from shelfwatch.store.store import DEFAULT_BUSY_TIMEOUT_MS
from shelfwatch.tracker.constants import (
    DEFAULT_RECENT_ITEMS_DAYS_BACK,
    DEFAULT_UNEXPECTED_DAYS_BACK,
    NEAR_DUE_DAYS,
)
from shelfwatch.tracker.retention import RetentionPolicy


class AppSettings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SHELFWATCH_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    db_path: Path = Field(default=Path("state/shelfwatch.sqlite"))
    busy_timeout_ms: int = Field(default=DEFAULT_BUSY_TIMEOUT_MS, ge=0)
    near_due_days: int = Field(default=NEAR_DUE_DAYS)
    report_days_back: int = Field(default=DEFAULT_UNEXPECTED_DAYS_BACK, ge=0)
    recent_items_days_back: int = Field(default=DEFAULT_RECENT_ITEMS_DAYS_BACK, ge=0)
    snapshot_retention_days: int | None = Field(default=None, ge=1)
    transition_retention_days: int | None = Field(default=None, ge=1)
    json_logs: bool = True

    def retention_policy(self) -> RetentionPolicy:
        """Return the configured retention policy (keeps everything by default)."""
        return RetentionPolicy(
            snapshot_days=self.snapshot_retention_days,
            transition_days=self.transition_retention_days,
        )


def get_settings() -> AppSettings:
    """Get a settings instance."""
    return AppSettings()
