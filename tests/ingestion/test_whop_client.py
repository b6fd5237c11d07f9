"""Tests for ingestion/sources/whop.py.

The aiohttp session is mocked; everything between the client and the
session (retry, limiter, breaker, dead letters) is real.
"""

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

# Add data-pipeline to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "data-pipeline"))

from ingestion.core.errors import (
    DataNotFoundError,
    MethodNotAllowedError,
    NetworkError,
    RateLimitError,
    TimeoutError,
    UpstreamHTTPError,
)
from ingestion.sources.whop import WhopClient, _query_items, yesterday_window


@pytest.fixture
def make_client(settings, registry, dead_letters):
    """Factory for clients bound to a mock session, with retry waits skipped."""

    def _make(session, **kwargs) -> WhopClient:
        client = WhopClient(
            settings, registry, dead_letters=dead_letters, session=session, **kwargs
        )
        client.retry.sleep = AsyncMock()
        return client

    return _make


def _sent_params(session, call_index: int = 0) -> list[tuple[str, str]]:
    return session.request.call_args_list[call_index].kwargs["params"]


# =============================================================================
# Helpers (Pure Functions)
# =============================================================================


class TestHelpers:
    """Tests for query flattening and the default window."""

    def test_yesterday_window(self):
        now = datetime(2024, 5, 1, 3, 15, tzinfo=timezone.utc)

        start, end = yesterday_window(now)

        assert start == "2024-04-30T00:00:00.000Z"
        assert end == "2024-04-30T23:59:59.999Z"

    def test_query_items_flattens_lists(self):
        items = _query_items({"statuses[]": ["active", "trialing"], "page": 2})
        assert items == [("statuses[]", "active"), ("statuses[]", "trialing"), ("page", "2")]

    def test_query_items_skips_none_and_formats_bools(self):
        assert _query_items({"after": None, "include": True}) == [("include", "true")]


# =============================================================================
# Requests
# =============================================================================


class TestRequest:
    """Tests for WhopClient.request()."""

    @pytest.mark.asyncio
    async def test_get_returns_parsed_body(
        self, make_client, make_session, make_response, sample_membership
    ):
        session = make_session(make_response(200, json.dumps(sample_membership)))
        client = make_client(session)

        result = await client.get_membership("mem_001")

        assert result == sample_membership
        args, kwargs = session.request.call_args
        assert args == ("GET", "https://api.whop.com/api/v1/memberships/mem_001")
        assert kwargs["headers"]["Authorization"] == "Bearer test_key"

    @pytest.mark.asyncio
    async def test_empty_body_is_none(self, make_client, make_session, make_response):
        client = make_client(make_session(make_response(204, "")))
        assert await client.get_plan("plan_1") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["POST", "put", "DELETE", "PATCH"])
    async def test_write_methods_rejected_before_dispatch(self, make_client, make_session, method):
        session = make_session()
        client = make_client(session)

        with pytest.raises(MethodNotAllowedError) as exc_info:
            await client.request(method, "/payments")

        assert exc_info.value.method == method.upper()
        session.request.assert_not_called()
        assert client.rate_limiter.snapshot()["dispatched"] == 0

    @pytest.mark.asyncio
    async def test_lowercase_get_allowed(self, make_client, make_session, make_response):
        session = make_session(make_response(200, "{}"))
        client = make_client(session)

        await client.request("get", "/plans/plan_1")

        assert session.request.call_args.args[0] == "GET"

    @pytest.mark.asyncio
    async def test_empty_endpoint_rejected(self, make_client, make_session):
        client = make_client(make_session())

        with pytest.raises(ValueError):
            await client.request("GET", "")

    @pytest.mark.asyncio
    async def test_close_closes_session(self, make_client, make_session):
        session = make_session()
        client = make_client(session)

        await client.close()

        session.close.assert_awaited_once()


# =============================================================================
# Error mapping
# =============================================================================


class TestErrorMapping:
    """Tests for HTTP status and transport error mapping."""

    @pytest.mark.asyncio
    async def test_429_retried_with_retry_after(self, make_client, make_session, make_response):
        on_rate_limit = MagicMock()
        session = make_session(
            make_response(429, '{"message": "Too many requests"}', {"Retry-After": "2"}),
            make_response(200, '{"data": []}'),
        )
        client = make_client(session, on_rate_limit=on_rate_limit)

        result = await client.get_payments(page=1, use_default_date_filter=False)

        assert result == {"data": []}
        assert session.request.call_count == 2
        # max(2s hint, 1s backoff) with +/- 30% jitter
        wait = client.retry.sleep.await_args.args[0]
        assert 1.4 <= wait <= 2.6
        on_rate_limit.assert_called_once_with(0)

    @pytest.mark.asyncio
    async def test_429_exhausted(self, make_client, make_session, make_response, dead_letters):
        session = make_session(*(make_response(429, "") for _ in range(4)))
        client = make_client(session)

        with pytest.raises(RateLimitError) as exc_info:
            await client.get_payment("pay_1")

        assert session.request.call_count == 4
        assert exc_info.value.attempt == 3
        assert dead_letters.get("GET /payments/pay_1").retry_count == 3

    @pytest.mark.asyncio
    async def test_404_maps_to_not_found(self, make_client, make_session, make_response):
        client = make_client(make_session(make_response(404, '{"message": "Not found"}')))

        with pytest.raises(DataNotFoundError) as exc_info:
            await client.get_member("mber_missing")

        assert "/members/mber_missing" in str(exc_info.value)
        assert exc_info.value.dependency == "whop-api"

    @pytest.mark.asyncio
    async def test_500_maps_to_upstream_error(self, make_client, make_session, make_response):
        body = {"error": {"message": "database unavailable"}}
        client = make_client(make_session(make_response(500, json.dumps(body))))

        with pytest.raises(UpstreamHTTPError) as exc_info:
            await client.get_plan("plan_1")

        assert exc_info.value.status_code == 500
        assert exc_info.value.is_retryable is True
        assert "database unavailable" in str(exc_info.value)
        assert exc_info.value.body == body

    @pytest.mark.asyncio
    async def test_401_message(self, make_client, make_session, make_response):
        client = make_client(make_session(make_response(401, "")))

        with pytest.raises(UpstreamHTTPError) as exc_info:
            await client.get_plan("plan_1")

        assert exc_info.value.status_code == 401
        assert "Unauthorized" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_client_error_maps_to_network_error(self, make_client):
        session = MagicMock()
        session.closed = False
        session.request = MagicMock(side_effect=aiohttp.ClientConnectionError("reset by peer"))
        client = make_client(session)

        with pytest.raises(NetworkError) as exc_info:
            await client.get_plan("plan_1")

        assert isinstance(exc_info.value.__cause__, aiohttp.ClientConnectionError)
        assert exc_info.value.elapsed is not None

    @pytest.mark.asyncio
    async def test_socket_timeout_maps_to_timeout_error(self, make_client, dead_letters):
        """aiohttp timeouts subclass ClientError; they are timeouts, not dead letters."""
        session = MagicMock()
        session.closed = False
        session.request = MagicMock(side_effect=aiohttp.ServerTimeoutError("read timed out"))
        client = make_client(session)

        with pytest.raises(TimeoutError) as exc_info:
            await client.get_payment("pay_1")

        assert exc_info.value.timeout_seconds == client.request_timeout
        assert exc_info.value.dependency == "whop-api"
        assert dead_letters.get_failed_events() == []

    @pytest.mark.asyncio
    async def test_failed_request_dead_lettered(
        self, make_client, make_session, make_response, dead_letters
    ):
        client = make_client(make_session(make_response(400, '{"message": "bad filter"}')))

        with pytest.raises(UpstreamHTTPError):
            await client.get_payments(page=3, use_default_date_filter=False)

        entry = dead_letters.get_failed_events()[0]
        assert entry.event_type == "payments"
        assert entry.id == "GET /payments?company_id=biz_test&limit=100&page=3"
        assert entry.payload["params"]["page"] == 3


# =============================================================================
# Collections
# =============================================================================


class TestCollections:
    """Tests for list endpoint parameters."""

    @pytest.mark.asyncio
    async def test_memberships_default_window(self, make_client, make_session, make_response):
        session = make_session(make_response(200, '{"data": []}'))
        client = make_client(session)

        await client.get_memberships(page=1)

        params = dict(_sent_params(session))
        assert params["company_id"] == "biz_test"
        assert params["limit"] == "100"
        assert params["page"] == "1"
        assert params["created_after"].endswith("T00:00:00.000Z")
        assert params["created_before"].endswith("T23:59:59.999Z")

    @pytest.mark.asyncio
    async def test_explicit_window_disables_default(
        self, make_client, make_session, make_response
    ):
        session = make_session(make_response(200, '{"data": []}'))
        client = make_client(session)

        await client.get_memberships(created_after="2024-01-01T00:00:00.000Z")

        params = dict(_sent_params(session))
        assert params["created_after"] == "2024-01-01T00:00:00.000Z"
        assert "created_before" not in params

    @pytest.mark.asyncio
    async def test_membership_statuses_repeat_key(self, make_client, make_session, make_response):
        session = make_session(make_response(200, '{"data": []}'))
        client = make_client(session)

        await client.get_memberships(
            statuses=["active", "canceled"],
            cursor="mem_99",
            use_default_date_filter=False,
        )

        sent = _sent_params(session)
        assert ("statuses[]", "active") in sent
        assert ("statuses[]", "canceled") in sent
        assert ("after", "mem_99") in sent
        assert not any(key == "created_after" for key, _ in sent)

    @pytest.mark.asyncio
    async def test_payment_filters_joined(self, make_client, make_session, make_response):
        session = make_session(make_response(200, '{"data": []}'))
        client = make_client(session)

        await client.get_payments(
            substatuses=["succeeded", "refunded"],
            billing_reasons="subscription_create",
            use_default_date_filter=False,
        )

        params = dict(_sent_params(session))
        assert params["substatuses"] == "succeeded,refunded"
        assert params["billing_reasons"] == "subscription_create"


class TestGetMembers:
    """Tests for get_members() settled fan-out."""

    @pytest.mark.asyncio
    async def test_one_failure_does_not_hide_others(self, make_client, make_response):
        responses = {
            "mber_1": make_response(200, '{"id": "mber_1"}'),
            "mber_2": make_response(404, ""),
            "mber_3": make_response(200, '{"id": "mber_3"}'),
        }
        session = MagicMock()
        session.closed = False
        session.request = MagicMock(
            side_effect=lambda method, url, **kwargs: responses[url.rsplit("/", 1)[-1]]
        )
        client = make_client(session)

        outcomes = await client.get_members(["mber_1", "mber_2", "mber_3"])

        assert outcomes["mber_1"].value == {"id": "mber_1"}
        assert outcomes["mber_3"].value == {"id": "mber_3"}
        assert not outcomes["mber_2"].ok
        assert isinstance(outcomes["mber_2"].error, DataNotFoundError)
