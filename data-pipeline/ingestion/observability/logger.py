"""Structured JSON logger for the ingestion layer.

Provides context-aware logging with automatic JSON formatting.

Usage:
    from ingestion.observability import get_logger, log_context

    logger = get_logger(__name__)

    with log_context(dependency="whop-api", job_type="backfill-payments"):
        logger.info("Page fetched", extra={"page": 3})
        # Output: {"timestamp": "...", "dependency": "whop-api", "job_type": "...", "page": 3}
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

ROOT_LOGGER = "ingestion"

# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


@dataclass
class LogContext:
    """Context for structured logging.

    Attributes are automatically included in all log messages
    within this context.
    """

    dependency: str | None = None
    job_type: str | None = None
    endpoint: str | None = None
    attempt: int | None = None
    correlation_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        return {k: v for k, v in asdict(self).items() if v is not None}


# Context variable to store current log context
_log_context: contextvars.ContextVar[LogContext] = contextvars.ContextVar(
    "log_context",
    default=LogContext(),
)


class _ContextManager:
    """Context manager for setting log context."""

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.token: contextvars.Token[LogContext] | None = None

    def __enter__(self) -> LogContext:
        current = _log_context.get()
        # Merge with current context
        new_context = LogContext(
            dependency=self.kwargs.get("dependency", current.dependency),
            job_type=self.kwargs.get("job_type", current.job_type),
            endpoint=self.kwargs.get("endpoint", current.endpoint),
            attempt=self.kwargs.get("attempt", current.attempt),
            correlation_id=self.kwargs.get("correlation_id", current.correlation_id),
        )
        self.token = _log_context.set(new_context)
        return new_context

    def __exit__(self, *args: Any) -> None:
        if self.token is not None:
            _log_context.reset(self.token)


def log_context(**kwargs: Any) -> _ContextManager:
    """Create a context manager for setting log context.

    Args:
        **kwargs: Context fields to set (dependency, job_type, endpoint, etc.)

    Returns:
        Context manager that sets the context

    Example:
        with log_context(job_type="backfill-memberships"):
            logger.info("Starting backfill")
    """
    return _ContextManager(**kwargs)


def current_context() -> LogContext:
    """Return the active log context."""
    return _log_context.get()


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}


class StructuredFormatter(logging.Formatter):
    """JSON formatter with context support."""

    def format(self, record: logging.LogRecord) -> str:
        ctx = _log_context.get()

        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        entry.update(ctx.to_dict())
        entry.update(_extra_fields(record))

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


class PrettyFormatter(logging.Formatter):
    """Single-line colored output for terminals.

    Format: HH:MM:SS LEVL [dependency] [job_type] [endpoint] message | key=value, ...
    """

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        ctx = _log_context.get()
        tags = "".join(
            f"[{value}] " for value in (ctx.dependency, ctx.job_type, ctx.endpoint) if value
        )
        color = self.LEVEL_COLORS.get(record.levelno, "")
        head = f"{datetime.now():%H:%M:%S} {color}{record.levelname[:4]}{self.RESET}"

        line = f"{head} {tags}{record.getMessage()}"
        extras = _extra_fields(record)
        if extras:
            line += " | " + ", ".join(f"{key}={value}" for key, value in extras.items())

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# Track if logging has been set up
_logging_configured = False


def setup_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    quiet: bool = False,
    force: bool = False,
) -> None:
    """Set up logging for the ingestion layer.

    Args:
        level: Logging level (default: INFO)
        json_format: Use JSON format (default: False, use pretty format)
        quiet: Suppress all output except errors (default: False)
        force: Reconfigure even if logging was already set up
    """
    global _logging_configured

    if _logging_configured and not force:
        return

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(logging.ERROR if quiet else level)
    handler.setFormatter(StructuredFormatter() if json_format else PrettyFormatter())
    root.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _logging_configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given module.

    Args:
        name: Module name (usually __name__)

    Returns:
        Configured logger instance
    """
    setup_logging()

    if not name.startswith(ROOT_LOGGER):
        name = f"{ROOT_LOGGER}.{name}"

    return logging.getLogger(name)
