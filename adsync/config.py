"""ADSYNC — Central Configuration via Pydantic Settings."""

import os
from typing import List

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from adsync.core.errors import ConfigurationError


class RateLimitSettings(BaseModel):
    """Quota and retry knobs for the Graph API client."""

    requests_per_hour: int = Field(default=200, ge=1)
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_ms: int = Field(default=5000, ge=0)
    max_retry_delay_ms: int = Field(default=60000, ge=0)
    request_timeout_ms: int = Field(default=30000, ge=1000)

    model_config = {"frozen": True}


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file.

    Immutable once constructed; nested values use ``__`` in env names,
    e.g. ``RATE_LIMIT__REQUESTS_PER_HOUR=80``.
    """

    # ── Meta API ──
    meta_app_id: str = ""
    meta_app_secret: str = ""
    meta_access_token: str = ""
    meta_business_id: str = ""
    meta_api_version: str = "v21.0"
    meta_base_url: str = "https://graph.facebook.com"

    # ── Client limits ──
    rate_limit: RateLimitSettings = RateLimitSettings()
    max_concurrent_requests: int = Field(default=3, ge=1)
    page_limit: int = Field(default=500, ge=1)
    max_pages: int = Field(default=100, ge=1)

    # ── Sync behaviour ──
    insights_level: str = "ad"  # account | campaign | adset | ad
    active_accounts_only: bool = True
    sync_run_timeout_seconds: int = Field(default=3600, ge=1)

    # ── Database ──
    database_url: str = ""

    # ── App ──
    log_level: str = "INFO"
    scheduler_enabled: bool = True
    scheduler_timezone: str = "UTC"
    daily_job_cron: str = "0 2 * * *"  # yesterday's performance, 02:00
    hierarchy_job_cron: str = "0 1 * * sun"  # weekly hierarchy, Sunday 01:00

    @property
    def graph_url(self) -> str:
        return f"{self.meta_base_url}/{self.meta_api_version}"

    @property
    def effective_database_url(self) -> str:
        """Return the configured URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/adsync.db"
        return "sqlite:///./adsync.db"

    def missing_credentials(self) -> List[str]:
        required = {
            "meta_app_id": self.meta_app_id,
            "meta_app_secret": self.meta_app_secret,
            "meta_access_token": self.meta_access_token,
            "meta_business_id": self.meta_business_id,
        }
        return [name for name, value in required.items() if not value.strip()]

    def require_credentials(self) -> None:
        """Raise ConfigurationError unless every Meta credential is present."""
        missing = self.missing_credentials()
        if missing:
            raise ConfigurationError(
                f"Missing Meta API configuration: {', '.join(missing)}"
            )
        if self.insights_level not in ("account", "campaign", "adset", "ad"):
            raise ConfigurationError(
                f"Invalid insights_level '{self.insights_level}'"
            )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
        "frozen": True,
        "extra": "ignore",
    }


settings = Settings()
