"""Resilience patterns for upstream API calls.

- rate_limiter: FIFO pacing with pause on repeated rate-limit signals
- circuit_breaker: Rolling-window failure isolation
- retry: Bounded retry on rate-limit signals
- chain: Middleware composition around the transport
- registry: One limiter and breaker per dependency
"""

from .backoff import ExponentialBackoff, apply_jitter, parse_retry_after
from .chain import (
    Middleware,
    UpstreamCall,
    build_call_chain,
    circuit_protected,
    compose,
    dead_lettered,
    rate_limited,
    request_id,
    retry_on_rate_limit,
)
from .circuit_breaker import CircuitBreaker, CircuitState
from .rate_limiter import RateLimiter
from .registry import ResilienceRegistry
from .retry import RetryCoordinator

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "ExponentialBackoff",
    "Middleware",
    "RateLimiter",
    "ResilienceRegistry",
    "RetryCoordinator",
    "UpstreamCall",
    "apply_jitter",
    "build_call_chain",
    "circuit_protected",
    "compose",
    "dead_lettered",
    "parse_retry_after",
    "rate_limited",
    "request_id",
    "retry_on_rate_limit",
]
