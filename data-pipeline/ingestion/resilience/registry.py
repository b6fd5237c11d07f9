"""Per-dependency resilience instances.

One rate limiter and one circuit breaker per upstream dependency, created on
first use and shared by every caller that goes through the registry.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from ingestion.config.settings import Settings
from ingestion.core.errors import RateLimitError
from ingestion.observability.logger import get_logger

from .backoff import ExponentialBackoff
from .circuit_breaker import BreakerListener, CircuitBreaker, CircuitState
from .rate_limiter import RateLimiter
from .retry import RetryCoordinator

logger = get_logger(__name__)


class ResilienceRegistry:
    """Lazily built limiters and breakers keyed by dependency name.

    Usage:
        registry = ResilienceRegistry(settings)

        limiter = registry.rate_limiter("whop-api")
        breaker = registry.circuit_breaker("whop-api")
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._limiters: dict[str, RateLimiter] = {}
        self._breakers: dict[str, CircuitBreaker] = {}
        self._listeners: list[BreakerListener] = []

    def rate_limiter(self, name: str) -> RateLimiter:
        """Get or create the rate limiter for a dependency."""
        limiter = self._limiters.get(name)
        if limiter is None:
            limiter = RateLimiter(
                requests_per_second=self.settings.whop_api_requests_per_second,
                name=name,
            )
            self._limiters[name] = limiter
            logger.debug(
                "Created rate limiter",
                extra={"dependency": name, "requests_per_second": limiter.requests_per_second},
            )
        return limiter

    def circuit_breaker(self, name: str) -> CircuitBreaker:
        """Get or create the circuit breaker for a dependency.

        Rate-limit rejections are excluded from the failure window; they are
        handled by the retry layer and do not mean the upstream is down.
        """
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                name=name,
                timeout=self.settings.circuit_breaker_timeout,
                error_threshold_percentage=self.settings.circuit_breaker_error_threshold,
                reset_timeout=self.settings.circuit_breaker_reset_timeout,
                window_size=self.settings.circuit_breaker_window_size,
                volume_threshold=self.settings.circuit_breaker_volume_threshold,
                excluded_exceptions=(RateLimitError,),
            )
            for listener in self._listeners:
                breaker.add_listener(listener)
            self._breakers[name] = breaker
            logger.debug("Created circuit breaker", extra={"dependency": name})
        return breaker

    def retry_coordinator(
        self,
        name: str,
        on_rate_limit: Callable[[int], None] | None = None,
    ) -> RetryCoordinator:
        """Build a retry coordinator bound to the dependency's limiter."""
        return RetryCoordinator(
            rate_limiter=self.rate_limiter(name),
            max_retries=self.settings.whop_api_max_retries,
            backoff=ExponentialBackoff(base_ms=self.settings.whop_api_retry_backoff_base_ms),
            on_rate_limit=on_rate_limit,
        )

    def add_listener(self, listener: BreakerListener) -> None:
        """Subscribe to events of existing and future breakers."""
        self._listeners.append(listener)
        for breaker in self._breakers.values():
            breaker.add_listener(listener)

    def breaker_state(self, name: str) -> CircuitState | None:
        """Current breaker state, or None if the dependency was never called."""
        breaker = self._breakers.get(name)
        return breaker.state if breaker is not None else None

    def all_breakers(self) -> dict[str, CircuitBreaker]:
        return dict(self._breakers)

    def snapshot(self) -> dict[str, Any]:
        """Breaker and limiter state per dependency."""
        names = sorted(set(self._breakers) | set(self._limiters))
        result: dict[str, Any] = {}
        for name in names:
            entry: dict[str, Any] = {}
            if name in self._breakers:
                entry.update(self._breakers[name].snapshot())
            if name in self._limiters:
                entry["rate_limiter"] = self._limiters[name].snapshot()
            result[name] = entry
        return result
