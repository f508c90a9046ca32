"""
Configuration management using Pydantic Settings.
All parameters are loaded from environment variables with sensible defaults.
"""

from functools import lru_cache
from pathlib import Path
import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_BASE_PATH = Path(os.environ.get("RECORDMATCH_BASE_PATH", Path.cwd()))
ENV_FILE_PATH = APP_BASE_PATH / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: str = Field(default="development")
    app_debug: bool = Field(default=False)
    app_log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    # Reconciliation tolerance
    amount_tolerance_cents: int = Field(default=100, ge=0)
    percentage_tolerance: float = Field(default=0.01, ge=0)
    date_tolerance_days: int = Field(default=1, ge=0)

    # Report claim (conditional insert) retries
    report_claim_attempts: int = Field(default=3, ge=1)
    report_claim_backoff_seconds: float = Field(default=0.05, ge=0)

    # Duplicate scanner
    scan_recent_days: int = Field(default=30, ge=1)
    field_report_threshold: float = Field(default=0.5, ge=0, le=1)
    suppress_rejected_pairs: bool = Field(default=False)

    # Reporting
    dashboard_trend_days: int = Field(default=30, ge=1)
    dashboard_recent_reports: int = Field(default=10, ge=0)

    # Paging
    default_page_size: int = Field(default=20, ge=1)
    max_page_size: int = Field(default=100, ge=1)

    def default_tolerance(self):
        """Build the reconciliation tolerance from the configured defaults."""
        from .models import ReconciliationTolerance

        return ReconciliationTolerance(
            amount_tolerance_cents=self.amount_tolerance_cents,
            percentage_tolerance=self.percentage_tolerance,
            date_tolerance_days=self.date_tolerance_days,
        )

    def clamp_page_size(self, limit: int) -> int:
        """Clamp a requested page size to the configured bounds."""
        if limit <= 0:
            return self.default_page_size
        return min(limit, self.max_page_size)

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
