"""Composable middleware chain around an upstream call.

Every upstream call has the shape (method, endpoint, params) -> response.
Middlewares wrap such a call and return a call of the same shape, so the
resilience concerns stack without knowing about each other:

    dead_lettered          record permanent failures
      retry_on_rate_limit  bounded retry on rate-limit signals
        rate_limited       FIFO pacing, success notification
          circuit_protected  failure isolation and per-call timeout
            transport

Each retry attempt goes through the limiter and the breaker again.
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any
from urllib.parse import urlencode

from ingestion.core.errors import CircuitOpenError, IngestionError, TimeoutError

from .circuit_breaker import CircuitBreaker
from .rate_limiter import RateLimiter
from .retry import RetryCoordinator

Params = Mapping[str, Any] | None
UpstreamCall = Callable[[str, str, Params], Awaitable[Any]]
Middleware = Callable[[UpstreamCall], UpstreamCall]


def compose(call: UpstreamCall, middlewares: Sequence[Middleware]) -> UpstreamCall:
    """Wrap a call; the first middleware becomes the outermost layer."""
    for middleware in reversed(middlewares):
        call = middleware(call)
    return call


def circuit_protected(breaker: CircuitBreaker) -> Middleware:
    def wrap(call: UpstreamCall) -> UpstreamCall:
        @functools.wraps(call)
        async def wrapped(method: str, endpoint: str, params: Params = None) -> Any:
            return await breaker.execute(call, method, endpoint, params)

        return wrapped

    return wrap


def rate_limited(limiter: RateLimiter) -> Middleware:
    def wrap(call: UpstreamCall) -> UpstreamCall:
        @functools.wraps(call)
        async def wrapped(method: str, endpoint: str, params: Params = None) -> Any:
            await limiter.acquire()
            result = await call(method, endpoint, params)
            limiter.on_success()
            return result

        return wrapped

    return wrap


def retry_on_rate_limit(coordinator: RetryCoordinator) -> Middleware:
    def wrap(call: UpstreamCall) -> UpstreamCall:
        @functools.wraps(call)
        async def wrapped(method: str, endpoint: str, params: Params = None) -> Any:
            return await coordinator.execute(call, method, endpoint, params)

        return wrapped

    return wrap


def dead_lettered(store: Any) -> Middleware:
    """Record permanent failures in a dead letter store, then re-raise.

    Breaker rejections and timeouts are surfaced as-is; they say nothing
    about the item itself.
    """

    def wrap(call: UpstreamCall) -> UpstreamCall:
        @functools.wraps(call)
        async def wrapped(method: str, endpoint: str, params: Params = None) -> Any:
            try:
                return await call(method, endpoint, params)
            except (CircuitOpenError, TimeoutError):
                raise
            except IngestionError as e:
                store.add_failed_event(
                    request_id(method, endpoint, params),
                    event_type(endpoint),
                    {"method": method, "endpoint": endpoint, "params": dict(params or {})},
                    str(e),
                    retry_count=e.attempt or 0,
                )
                raise

        return wrapped

    return wrap


def build_call_chain(
    transport: UpstreamCall,
    *,
    limiter: RateLimiter,
    breaker: CircuitBreaker,
    coordinator: RetryCoordinator,
    dead_letters: Any = None,
) -> UpstreamCall:
    """Compose the standard resilience chain around a transport call."""
    middlewares: list[Middleware] = [
        retry_on_rate_limit(coordinator),
        rate_limited(limiter),
        circuit_protected(breaker),
    ]
    if dead_letters is not None:
        middlewares.insert(0, dead_lettered(dead_letters))
    return compose(transport, middlewares)


def request_id(method: str, endpoint: str, params: Params = None) -> str:
    """Stable identity for a request, used as the dead letter key."""
    key = f"{method.upper()} {endpoint}"
    if params:
        query = urlencode(sorted((k, str(v)) for k, v in params.items() if v is not None))
        if query:
            key = f"{key}?{query}"
    return key


def event_type(endpoint: str) -> str:
    """Collection name for an endpoint ("/payments/pay_1" -> "payments")."""
    segments = [segment for segment in endpoint.split("/") if segment]
    return segments[0] if segments else "unknown"
