"""Application settings using Pydantic. No side effects at import time."""

from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DEFAULT_BACKOFF_BASE_MS,
    DEFAULT_CALL_TIMEOUT,
    DEFAULT_ERROR_THRESHOLD_PERCENTAGE,
    DEFAULT_REQUESTS_PER_SECOND,
    DEFAULT_RESET_TIMEOUT,
    DEFAULT_VOLUME_THRESHOLD,
    DEFAULT_WHOP_BASE_URL,
    DEFAULT_WINDOW_SIZE,
    DLQ_ALERT_THRESHOLD,
    DLQ_RETENTION_DAYS,
    MAX_DLQ_SIZE,
    MAX_PAGES,
    MAX_PROCESSING_TIME,
    MAX_RECORDS_PER_RUN,
    MAX_RETRIES,
)


@dataclass(frozen=True)
class ProcessingLimits:
    """Caps applied to a single paginated job run."""

    max_records: int = MAX_RECORDS_PER_RUN
    max_processing_time: float = MAX_PROCESSING_TIME  # seconds
    max_pages: int = MAX_PAGES


class Settings(BaseSettings):
    """Ingestion settings with validation.

    Settings are loaded from environment variables and .env file.
    No side effects at class definition time - .env is loaded only when
    Settings() is instantiated.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra env vars
    )

    # === Whop API ===
    whop_base_url: str = DEFAULT_WHOP_BASE_URL
    whop_api_key: str | None = None
    whop_company_id: str | None = None

    # === Rate Limits ===
    whop_api_requests_per_second: Annotated[float, Field(gt=0)] = DEFAULT_REQUESTS_PER_SECOND
    whop_api_max_retries: Annotated[int, Field(ge=0)] = MAX_RETRIES
    whop_api_retry_backoff_base_ms: Annotated[int, Field(ge=0)] = DEFAULT_BACKOFF_BASE_MS

    # === Circuit Breaker ===
    circuit_breaker_timeout: Annotated[float, Field(gt=0)] = DEFAULT_CALL_TIMEOUT
    circuit_breaker_error_threshold: Annotated[float, Field(gt=0, le=100)] = (
        DEFAULT_ERROR_THRESHOLD_PERCENTAGE
    )
    circuit_breaker_reset_timeout: Annotated[float, Field(gt=0)] = DEFAULT_RESET_TIMEOUT
    circuit_breaker_window_size: Annotated[int, Field(gt=0)] = DEFAULT_WINDOW_SIZE
    circuit_breaker_volume_threshold: Annotated[int, Field(ge=0)] = DEFAULT_VOLUME_THRESHOLD

    # === Processing Limits ===
    max_records_per_run: Annotated[int, Field(gt=0)] = MAX_RECORDS_PER_RUN
    max_processing_time: Annotated[float, Field(gt=0)] = MAX_PROCESSING_TIME
    max_pages: Annotated[int, Field(gt=0)] = MAX_PAGES
    api_call_timeout: Annotated[float, Field(gt=0)] = DEFAULT_CALL_TIMEOUT

    # === Dead Letter Queue ===
    max_dlq_size: Annotated[int, Field(gt=0)] = MAX_DLQ_SIZE
    dlq_retention_days: Annotated[int, Field(gt=0)] = DLQ_RETENTION_DAYS
    dlq_alert_threshold: Annotated[int, Field(gt=0)] = DLQ_ALERT_THRESHOLD

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_json: bool = Field(default=False, description="Emit JSON log lines")

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value

    @property
    def has_whop(self) -> bool:
        """Check if Whop API credentials are configured."""
        return bool(self.whop_api_key and self.whop_company_id)

    def backfill_limits(self) -> ProcessingLimits:
        """Processing caps for backfill jobs."""
        return ProcessingLimits(
            max_records=self.max_records_per_run,
            max_processing_time=self.max_processing_time,
            max_pages=self.max_pages,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    This is the recommended way to access settings to avoid
    repeated .env file parsing.
    """
    return Settings()
