"""Observability infrastructure for the ingestion layer.

Provides structured logging and metrics collection.
"""

from .logger import LogContext, get_logger, log_context, setup_logging
from .metrics import JobMetrics, MetricsCollector

__all__ = [
    "LogContext",
    "get_logger",
    "log_context",
    "setup_logging",
    "JobMetrics",
    "MetricsCollector",
]
