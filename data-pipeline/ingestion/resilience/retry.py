"""Bounded retry for upstream rate-limit rejections.

Only rate-limit signals are retried:
- The rate limiter is told about every signal so it can pause dispatching
- Wait = max(server Retry-After, base * 2^attempt), then +/- 30% jitter
- Any other failure, or exhausted retries, propagates unchanged
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ingestion.config.constants import MAX_RETRIES
from ingestion.core.errors import IngestionError, RateLimitError
from ingestion.observability.logger import get_logger

from .backoff import ExponentialBackoff, parse_retry_after
from .rate_limiter import RateLimiter

logger = get_logger(__name__)


@dataclass
class RetryCoordinator:
    """Retry executor for rate-limited upstream calls.

    Usage:
        coordinator = RetryCoordinator(rate_limiter=limiter, max_retries=3)

        result = await coordinator.execute(protected_call, "GET", "/payments", params)
    """

    rate_limiter: RateLimiter
    max_retries: int = MAX_RETRIES
    backoff: ExponentialBackoff = field(default_factory=ExponentialBackoff)
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    # Called with the attempt number on every rate-limit signal
    on_rate_limit: Callable[[int], None] | None = None

    async def execute(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Execute function, retrying on rate-limit signals.

        Args:
            func: Async function to execute
            *args: Positional arguments
            **kwargs: Keyword arguments

        Returns:
            Function result

        Raises:
            RateLimitError: If every attempt was rate limited
            Original exception: On any other failure
        """
        attempt = 0

        while True:
            try:
                return await func(*args, **kwargs)

            except RateLimitError as e:
                e.label(attempt=attempt)

                if attempt >= self.max_retries:
                    logger.error(
                        "Rate limit exceeded - max retries exhausted",
                        extra={"attempt": attempt, "max_retries": self.max_retries},
                    )
                    raise

                self.rate_limiter.on_rate_limit_detected()
                if self.on_rate_limit is not None:
                    self.on_rate_limit(attempt)

                retry_after = parse_retry_after(e.retry_after, str(e))
                backoff_ms = self.backoff.delay_ms(attempt)
                wait = self.backoff.jittered(max(retry_after * 1000, backoff_ms)) / 1000

                logger.warning(
                    "Rate limit hit, retrying with backoff",
                    extra={
                        "attempt": attempt,
                        "next_attempt": attempt + 1,
                        "max_retries": self.max_retries,
                        "retry_after": retry_after,
                        "backoff_ms": backoff_ms,
                        "wait": round(wait, 3),
                    },
                )

                await self.sleep(wait)
                attempt += 1

            except IngestionError as e:
                e.label(attempt=attempt)
                raise
