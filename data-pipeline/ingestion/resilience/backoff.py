"""Backoff policy and Retry-After parsing for rate limit handling."""

import random
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

from ingestion.config.constants import DEFAULT_BACKOFF_BASE_MS, DEFAULT_RETRY_AFTER, RETRY_JITTER

_TRY_AGAIN_PATTERN = re.compile(r"try again in (\d+) seconds?", re.IGNORECASE)


@dataclass(frozen=True)
class ExponentialBackoff:
    """Exponential backoff with symmetric jitter.

    delay_ms = base_ms * (multiplier ^ attempt), then +/- jitter_ratio

    Example with defaults (pre-jitter):
        attempt 0: 1000ms
        attempt 1: 2000ms
        attempt 2: 4000ms
        attempt 3: 8000ms
    """

    base_ms: int = DEFAULT_BACKOFF_BASE_MS
    multiplier: float = 2.0
    jitter_ratio: float = RETRY_JITTER

    def delay_ms(self, attempt: int) -> float:
        """Pre-jitter delay for the given attempt (0-indexed)."""
        return self.base_ms * (self.multiplier**attempt)

    def jittered(self, delay: float) -> float:
        """Apply +/- jitter_ratio randomness to a delay (any unit)."""
        return apply_jitter(delay, self.jitter_ratio)


def apply_jitter(delay: float, ratio: float = RETRY_JITTER) -> float:
    """Return delay shifted randomly within +/- ratio, never negative."""
    if ratio <= 0:
        return delay
    spread = delay * ratio
    return max(0.0, delay + random.uniform(-spread, spread))


def parse_retry_after(
    retry_after: str | float | int | None,
    error_message: str | None = None,
    *,
    now: datetime | None = None,
) -> float:
    """Parse a server retry hint into seconds.

    Accepts, in order of precedence: a "try again in N seconds" phrase in the
    error message, a numeric seconds value, or an HTTP date. Anything else
    falls back to 5 seconds.

    Args:
        retry_after: Retry-After header value (seconds or HTTP date)
        error_message: Upstream error message that may embed a wait hint
        now: Reference time for HTTP dates (defaults to current UTC time)

    Returns:
        Seconds to wait
    """
    if error_message:
        match = _TRY_AGAIN_PATTERN.search(error_message)
        if match:
            return float(match.group(1))

    if retry_after is None or retry_after == "":
        return DEFAULT_RETRY_AFTER

    if isinstance(retry_after, (int, float)):
        return float(retry_after) if retry_after > 0 else DEFAULT_RETRY_AFTER

    value = retry_after.strip()
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return seconds if seconds > 0 else DEFAULT_RETRY_AFTER

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER

    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    reference = now or datetime.now(timezone.utc)
    return max((retry_at - reference).total_seconds(), DEFAULT_RETRY_AFTER)
