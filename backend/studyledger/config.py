# SPDX-License-Identifier: Apache-2.0
"""All configuration via environment variables (12-factor). No hardcoded values."""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="STUDYLEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = Field(default="sqlite:///./studyledger.db", description="Database URL")

    # Civil timezone shared by every study window (fixed offset, KST by default)
    local_utc_offset_seconds: int = Field(
        default=9 * 3600,
        ge=-14 * 3600,
        le=14 * 3600,
        description="Offset of local civil time from UTC, in seconds",
    )

    # Remote ledger
    ledger_url: str = Field(default="http://localhost:8100", description="Remote ledger gateway base URL")
    ledger_api_key: str | None = Field(default=None, description="Bearer token for the ledger gateway")
    ledger_timeout_seconds: float = Field(default=10.0, gt=0, le=120, description="Per-call ledger timeout")

    # Closure scheduler
    scheduler_enabled: bool = Field(default=True, description="Run the periodic closure job in-process")
    closure_interval_minutes: int = Field(default=60, ge=1, le=24 * 60)
    closure_overdue_attempts: int = Field(default=3, ge=1, description="Failed closures before a session is overdue")

    # Event source
    github_webhook_secret: str | None = Field(default=None, description="HMAC secret for X-Hub-Signature-256")

    # CORS
    allowed_origins: list[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins",
    )

    log_level: str = Field(default="INFO")

    @property
    def production(self) -> bool:
        return self.github_webhook_secret is not None


settings = Settings()

# Backward-compatible names for existing imports
SQLITE_URL = settings.database_url
LOCAL_UTC_OFFSET_SECONDS = settings.local_utc_offset_seconds
LEDGER_TIMEOUT_SECONDS = settings.ledger_timeout_seconds
SECONDS_PER_DAY = 24 * 3600
INITIAL_HASH = "0" * 64
