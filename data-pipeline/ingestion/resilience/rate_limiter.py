"""FIFO pacing rate limiter.

Spaces outbound calls at a fixed interval derived from a requests-per-second
budget, and pauses dispatching when upstream keeps signalling rate limits:
- Callers are released strictly in arrival order
- A single dispatch loop runs at a time
- Three consecutive rate-limit signals add a short pause
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from ingestion.config.constants import (
    DEFAULT_REQUESTS_PER_SECOND,
    MAX_CONSECUTIVE_RATE_LIMITS,
    MAX_RATE_LIMIT_PAUSE,
    RATE_LIMIT_PAUSE_MULTIPLIER,
)
from ingestion.observability.logger import get_logger

logger = get_logger(__name__)


@dataclass
class _PendingAcquire:
    waiter: asyncio.Future[None]
    enqueued_at: float


@dataclass
class RateLimiter:
    """Serialized FIFO rate limiter.

    Usage:
        limiter = RateLimiter(requests_per_second=2.0)

        # Acquire before making request
        await limiter.acquire()
        response = await make_request()
        limiter.on_success()
    """

    # Configuration
    requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND
    name: str = "default"
    max_consecutive_rate_limits: int = MAX_CONSECUTIVE_RATE_LIMITS

    # State
    _queue: deque[_PendingAcquire] = field(default_factory=deque, init=False)
    _running: bool = field(default=False, init=False)
    _task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)
    _last_dispatch: float = field(default=float("-inf"), init=False)
    _pause_until: float = field(default=0.0, init=False)
    _consecutive_rate_limits: int = field(default=0, init=False)
    _dispatched: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        if self.requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")

    @property
    def min_interval(self) -> float:
        """Minimum seconds between two dispatches."""
        return 1.0 / self.requests_per_second

    @property
    def pending(self) -> int:
        """Number of callers waiting for their turn."""
        return len(self._queue)

    @property
    def consecutive_rate_limits(self) -> int:
        return self._consecutive_rate_limits

    @property
    def pause_until(self) -> float:
        """Monotonic timestamp until which dispatching is paused (0 = none)."""
        return self._pause_until

    async def acquire(self) -> None:
        """Suspend until it is this caller's turn to proceed.

        Never fails; only delays. A caller that stops awaiting still
        consumes its slot when the loop reaches it.
        """
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._queue.append(_PendingAcquire(waiter=waiter, enqueued_at=time.monotonic()))
        self._ensure_dispatching()
        await waiter

    def _ensure_dispatching(self) -> None:
        if self._running or not self._queue:
            return
        self._running = True
        self._task = asyncio.get_running_loop().create_task(self._dispatch())

    async def _dispatch(self) -> None:
        try:
            while self._queue:
                pending = self._queue.popleft()
                await self._wait_for_slot()

                now = time.monotonic()
                self._last_dispatch = now
                if self._pause_until <= now:
                    self._pause_until = 0.0
                self._dispatched += 1

                if not pending.waiter.done():
                    pending.waiter.set_result(None)

                queued_for = now - pending.enqueued_at
                if queued_for > 1.0:
                    logger.debug(
                        "Slow rate limiter dispatch",
                        extra={"limiter": self.name, "queued_for": round(queued_for, 3)},
                    )
        finally:
            self._running = False

    async def _wait_for_slot(self) -> None:
        # Re-evaluated after each sleep so a pause extended meanwhile is honored
        while True:
            now = time.monotonic()
            wait = max(
                self._pause_until - now,
                self.min_interval - (now - self._last_dispatch),
            )
            if wait <= 0:
                return
            await asyncio.sleep(wait)

    def on_rate_limit_detected(self) -> None:
        """Record an upstream rate-limit signal.

        After `max_consecutive_rate_limits` signals, dispatching pauses for
        min(min_interval * 5, 10s) and the counter starts over.
        """
        self._consecutive_rate_limits += 1
        if self._consecutive_rate_limits < self.max_consecutive_rate_limits:
            return

        pause = min(self.min_interval * RATE_LIMIT_PAUSE_MULTIPLIER, MAX_RATE_LIMIT_PAUSE)
        self._pause_until = max(self._pause_until, time.monotonic() + pause)
        self._consecutive_rate_limits = 0

        logger.warning(
            "Rate limiter pausing after consecutive rate limits",
            extra={"limiter": self.name, "pause_seconds": round(pause, 3)},
        )

    def on_success(self) -> None:
        """Decay the consecutive rate-limit counter toward zero."""
        if self._consecutive_rate_limits > 0:
            self._consecutive_rate_limits -= 1

    def snapshot(self) -> dict[str, Any]:
        """Current limiter state for health output."""
        return {
            "requests_per_second": self.requests_per_second,
            "pending": self.pending,
            "dispatched": self._dispatched,
            "consecutive_rate_limits": self._consecutive_rate_limits,
            "paused_for": round(max(0.0, self._pause_until - time.monotonic()), 3),
        }
