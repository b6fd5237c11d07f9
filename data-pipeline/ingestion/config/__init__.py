"""Configuration module for the ingestion layer."""

from .constants import (
    # Upstream
    WHOP_DEPENDENCY,
    DEFAULT_PAGE_SIZE,
    # Rate limit
    DEFAULT_REQUESTS_PER_SECOND,
    MAX_RETRIES,
    DEFAULT_BACKOFF_BASE_MS,
    # Dead letter queue
    MAX_DLQ_SIZE,
    DLQ_ALERT_THRESHOLD,
)
from .settings import ProcessingLimits, Settings, get_settings

__all__ = [
    "Settings",
    "ProcessingLimits",
    "get_settings",
    "WHOP_DEPENDENCY",
    "DEFAULT_PAGE_SIZE",
    "DEFAULT_REQUESTS_PER_SECOND",
    "MAX_RETRIES",
    "DEFAULT_BACKOFF_BASE_MS",
    "MAX_DLQ_SIZE",
    "DLQ_ALERT_THRESHOLD",
]
