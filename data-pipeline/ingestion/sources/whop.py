"""
Whop REST API client

Read-only client for memberships, members, payments and plans.
Every request goes through the resilience chain of the "whop-api"
dependency (retry on 429, FIFO pacing, circuit breaker).

API Documentation: https://docs.whop.com/api-reference

Usage:
    from ingestion.sources.whop import WhopClient

    async with WhopClient(settings, registry, dead_letters=dlq) as client:
        page = await client.get_payments(page=1, limit=100)
        membership = await client.get_membership("mem_123")

Rate Limits:
    - Paced at WHOP_API_REQUESTS_PER_SECOND (default 2/s)
    - 429 responses are retried with backoff, honoring Retry-After
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, time as dt_time, timedelta, timezone
from typing import Any

import aiohttp

from ingestion.config.constants import ALLOWED_METHODS, DEFAULT_PAGE_SIZE, WHOP_DEPENDENCY
from ingestion.config.settings import Settings
from ingestion.core.batch import BatchOutcome, batch_process_with_limit
from ingestion.core.errors import (
    DataNotFoundError,
    MethodNotAllowedError,
    NetworkError,
    RateLimitError,
    TimeoutError,
    UpstreamHTTPError,
)
from ingestion.observability.logger import get_logger, log_context
from ingestion.resilience.chain import UpstreamCall, build_call_chain
from ingestion.resilience.registry import ResilienceRegistry
from ingestion.state.dead_letter import DeadLetterStore

logger = get_logger(__name__)

_STATUS_MESSAGES = {
    400: "Invalid request to Whop API. Check parameters and API key.",
    401: "Unauthorized. Invalid or missing Whop API key.",
    403: "Forbidden. API key does not have required permissions.",
    404: "Resource not found in Whop API.",
    429: "Rate limit exceeded. Too many requests to Whop API.",
}


def yesterday_window(now: datetime | None = None) -> tuple[str, str]:
    """Start and end of the previous UTC day as ISO-8601 strings."""
    today = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).date()
    start = datetime.combine(today - timedelta(days=1), dt_time.min, tzinfo=timezone.utc)
    end = datetime.combine(today - timedelta(days=1), dt_time.max, tzinfo=timezone.utc)
    return _iso(start), _iso(end)


def _iso(value: datetime) -> str:
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _query_items(params: Mapping[str, Any] | None) -> list[tuple[str, str]]:
    """Flatten params for the query string; sequences repeat their key."""
    items: list[tuple[str, str]] = []
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            items.extend((key, str(v)) for v in value)
        elif isinstance(value, bool):
            items.append((key, "true" if value else "false"))
        else:
            items.append((key, str(value)))
    return items


def _error_message(body: Any) -> str | None:
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            error = error.get("message")
        message = body.get("message") or error
        return str(message) if message else None
    if isinstance(body, str) and body:
        return body
    return None


def _join(value: str | Sequence[str] | None) -> str | None:
    if value is None or isinstance(value, str):
        return value
    return ",".join(value)


class WhopClient:
    """Whop API client."""

    def __init__(
        self,
        settings: Settings,
        registry: ResilienceRegistry,
        dead_letters: DeadLetterStore | None = None,
        on_rate_limit: Callable[[int], None] | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """
        Initialize Whop API client.

        Args:
            settings: Application settings (base URL, credentials, timeouts)
            registry: Source of the shared limiter and breaker
            dead_letters: Store for permanently failed requests
            on_rate_limit: Callback(attempt) for every 429 that is retried
            session: Pre-built aiohttp session (created lazily otherwise)
        """
        self.base_url = settings.whop_base_url.rstrip("/")
        self.api_key = settings.whop_api_key or ""
        self.company_id = settings.whop_company_id or ""
        self.request_timeout = settings.api_call_timeout
        self.dependency = WHOP_DEPENDENCY

        if not settings.has_whop:
            logger.warning(
                "Whop API credentials not configured. "
                "Set WHOP_API_KEY and WHOP_COMPANY_ID environment variables."
            )

        self.rate_limiter = registry.rate_limiter(self.dependency)
        self.circuit_breaker = registry.circuit_breaker(self.dependency)
        self.retry = registry.retry_coordinator(self.dependency, on_rate_limit=on_rate_limit)

        self._call: UpstreamCall = build_call_chain(
            self._send,
            limiter=self.rate_limiter,
            breaker=self.circuit_breaker,
            coordinator=self.retry,
            dead_letters=dead_letters,
        )

        # Session
        self._session = session

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> WhopClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    # ==================== Transport ====================

    async def request(
        self,
        method: str,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """Send a request through the resilience chain.

        Raises:
            MethodNotAllowedError: For anything but GET (before any dispatch)
            RateLimitError: When 429s outlast the retry budget
            CircuitOpenError: While the breaker is open
            TimeoutError: When the call exceeds the breaker timeout
        """
        upper_method = method.upper()
        if upper_method not in ALLOWED_METHODS:
            logger.error(
                "Only GET requests are allowed to Whop API",
                extra={"method": upper_method, "endpoint": endpoint},
            )
            raise MethodNotAllowedError(
                f"Method {upper_method} is not allowed. "
                "This service only reads data from Whop API.",
                method=upper_method,
                dependency=self.dependency,
            )

        if not endpoint:
            raise ValueError("Endpoint is required")

        with log_context(dependency=self.dependency, endpoint=endpoint):
            return await self._call(upper_method, endpoint, params)

    async def _send(
        self,
        method: str,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """Single HTTP round trip; maps failures onto the error hierarchy."""
        session = await self._get_session()
        url = f"{self.base_url}{endpoint}"

        logger.debug(
            "Making HTTP request",
            extra={"method": method, "url": url, "has_params": bool(params)},
        )

        start = time.monotonic()
        try:
            async with session.request(
                method,
                url,
                headers=self._get_headers(),
                params=_query_items(params),
            ) as resp:
                return await self._handle_response(resp, method, endpoint, params)

        except asyncio.TimeoutError as e:
            # aiohttp socket and connect timeouts are also ClientErrors
            elapsed = time.monotonic() - start
            logger.warning(
                f"Whop API request timed out after {elapsed:.1f}s",
                extra={"method": method, "endpoint": endpoint},
            )
            raise TimeoutError(
                f"Whop API request timed out after {self.request_timeout}s",
                timeout_seconds=self.request_timeout,
                dependency=self.dependency,
                elapsed=elapsed,
            ) from e

        except aiohttp.ClientError as e:
            logger.error(
                f"Whop API request failed: {e}",
                extra={"method": method, "endpoint": endpoint},
            )
            raise NetworkError(
                f"Whop API request failed: {e}",
                dependency=self.dependency,
                elapsed=time.monotonic() - start,
            ) from e

    async def _handle_response(
        self,
        resp: aiohttp.ClientResponse,
        method: str,
        endpoint: str,
        params: Mapping[str, Any] | None,
    ) -> Any:
        """Handle API response and errors."""
        text = await resp.text()
        try:
            body: Any = json.loads(text) if text else None
        except ValueError:
            body = text

        if resp.status < 400:
            return body

        upstream_message = _error_message(body)

        if resp.status == 429:
            raise RateLimitError(
                upstream_message or _STATUS_MESSAGES[429],
                retry_after=resp.headers.get("Retry-After"),
                dependency=self.dependency,
            )

        if resp.status == 404:
            raise DataNotFoundError(
                f"{_STATUS_MESSAGES[404]} ({endpoint})",
                dependency=self.dependency,
            )

        if resp.status >= 500:
            message = "Whop API server error. Please try again later."
        else:
            message = _STATUS_MESSAGES.get(resp.status, "Whop API error")

        logger.error(
            "Whop API request failed",
            extra={
                "method": method,
                "endpoint": endpoint,
                "status_code": resp.status,
                "error_message": upstream_message,
                "params": dict(params or {}),
            },
        )
        raise UpstreamHTTPError(
            f"{message} {upstream_message}" if upstream_message else message,
            status_code=resp.status,
            body=body,
            dependency=self.dependency,
        )

    # ==================== Collections ====================

    def _list_params(
        self,
        *,
        limit: int | None,
        page: int | None,
        cursor: str | None,
        created_after: str | None,
        created_before: str | None,
        use_default_date_filter: bool,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"company_id": self.company_id}

        if use_default_date_filter and not created_after and not created_before:
            params["created_after"], params["created_before"] = yesterday_window()
            logger.debug(
                "Using default date filter (yesterday)",
                extra={
                    "created_after": params["created_after"],
                    "created_before": params["created_before"],
                },
            )
        else:
            if created_after:
                params["created_after"] = created_after
            if created_before:
                params["created_before"] = created_before

        if limit:
            params["limit"] = limit
        if page:
            params["page"] = page
        if cursor:
            params["after"] = cursor
        return params

    async def get_memberships(
        self,
        *,
        statuses: Sequence[str] | None = None,
        limit: int | None = DEFAULT_PAGE_SIZE,
        page: int | None = None,
        cursor: str | None = None,
        created_after: str | None = None,
        created_before: str | None = None,
        use_default_date_filter: bool = True,
    ) -> dict[str, Any]:
        """
        List memberships of the configured company.

        Without explicit created_after/created_before the window defaults to
        yesterday (UTC), unless use_default_date_filter is False.

        Returns:
            Response body with "data" (list) and pagination info
        """
        params = self._list_params(
            limit=limit,
            page=page,
            cursor=cursor,
            created_after=created_after,
            created_before=created_before,
            use_default_date_filter=use_default_date_filter,
        )
        if statuses:
            params["statuses[]"] = list(statuses)
        return await self.request("GET", "/memberships", params)

    async def get_payments(
        self,
        *,
        substatuses: str | Sequence[str] | None = None,
        billing_reasons: str | Sequence[str] | None = None,
        limit: int | None = DEFAULT_PAGE_SIZE,
        page: int | None = None,
        cursor: str | None = None,
        created_after: str | None = None,
        created_before: str | None = None,
        use_default_date_filter: bool = True,
    ) -> dict[str, Any]:
        """List payments of the configured company (same window rules as memberships)."""
        params = self._list_params(
            limit=limit,
            page=page,
            cursor=cursor,
            created_after=created_after,
            created_before=created_before,
            use_default_date_filter=use_default_date_filter,
        )
        if substatuses:
            params["substatuses"] = _join(substatuses)
        if billing_reasons:
            params["billing_reasons"] = _join(billing_reasons)
        return await self.request("GET", "/payments", params)

    # ==================== Single resources ====================

    async def get_membership(self, membership_id: str) -> dict[str, Any]:
        return await self.request("GET", f"/memberships/{membership_id}")

    async def get_member(self, member_id: str) -> dict[str, Any]:
        return await self.request("GET", f"/members/{member_id}")

    async def get_payment(self, payment_id: str) -> dict[str, Any]:
        return await self.request("GET", f"/payments/{payment_id}")

    async def get_plan(self, plan_id: str) -> dict[str, Any]:
        return await self.request("GET", f"/plans/{plan_id}")

    async def get_members(
        self,
        member_ids: Sequence[str],
        concurrency_limit: int = 5,
    ) -> dict[str, BatchOutcome[dict[str, Any]]]:
        """
        Fetch several members; one failure does not hide the others.

        Args:
            member_ids: Member IDs to fetch
            concurrency_limit: Maximum requests in flight (still paced by the limiter)

        Returns:
            dict mapping member ID to its settled outcome
        """
        outcomes = await batch_process_with_limit(
            list(member_ids),
            self.get_member,
            concurrency_limit=concurrency_limit,
        )

        failed = [o for o in outcomes if not o.ok]
        if failed:
            logger.warning(
                f"Failed to fetch {len(failed)}/{len(outcomes)} members",
                extra={"failed": len(failed), "total": len(outcomes)},
            )

        return {member_ids[o.index]: o for o in outcomes}
