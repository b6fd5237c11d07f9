"""Tests for ingestion/resilience/circuit_breaker.py."""

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add data-pipeline to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "data-pipeline"))

from ingestion.core.errors import CircuitOpenError, RateLimitError, TimeoutError, UpstreamHTTPError
from ingestion.resilience.circuit_breaker import CircuitBreaker, CircuitState


def _breaker(**kwargs) -> CircuitBreaker:
    defaults = {
        "name": "whop-api",
        "timeout": 1.0,
        "error_threshold_percentage": 50,
        "reset_timeout": 0.05,
        "window_size": 10,
        "volume_threshold": 10,
    }
    defaults.update(kwargs)
    return CircuitBreaker(**defaults)


async def _fail(breaker: CircuitBreaker, times: int = 1) -> None:
    for _ in range(times):
        with pytest.raises(UpstreamHTTPError):
            await breaker.execute(AsyncMock(side_effect=UpstreamHTTPError(status_code=500)))


async def _succeed(breaker: CircuitBreaker, times: int = 1) -> None:
    for _ in range(times):
        await breaker.execute(AsyncMock(return_value="ok"))


# =============================================================================
# Closed state
# =============================================================================


class TestClosedState:
    """Tests for normal operation."""

    @pytest.mark.asyncio
    async def test_passes_result_through(self):
        """Successful calls return the wrapped result."""
        breaker = _breaker()
        func = AsyncMock(return_value={"data": []})

        result = await breaker.execute(func, "GET", "/payments")

        assert result == {"data": []}
        func.assert_awaited_once_with("GET", "/payments")
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_sync_function_supported(self):
        """Plain functions are called without awaiting."""
        breaker = _breaker()
        assert await breaker.execute(lambda x: x * 2, 21) == 42

    @pytest.mark.asyncio
    async def test_error_is_reraised_with_dependency(self):
        """Failures propagate unchanged, labeled with the breaker name."""
        breaker = _breaker()

        with pytest.raises(UpstreamHTTPError) as exc_info:
            await breaker.execute(AsyncMock(side_effect=UpstreamHTTPError(status_code=502)))

        assert exc_info.value.status_code == 502
        assert exc_info.value.dependency == "whop-api"
        assert exc_info.value.elapsed is not None

    @pytest.mark.asyncio
    async def test_stays_closed_below_volume_threshold(self):
        """Too few calls are never enough to trip, even at 100% failures."""
        breaker = _breaker()

        await _fail(breaker, 9)

        assert breaker.state == CircuitState.CLOSED


# =============================================================================
# Opening
# =============================================================================


class TestOpening:
    """Tests for the CLOSED -> OPEN transition."""

    @pytest.mark.asyncio
    async def test_six_failures_in_ten_calls_open(self):
        """60% failures over a full window exceeds the 50% threshold."""
        breaker = _breaker()

        await _succeed(breaker, 4)
        await _fail(breaker, 5)
        assert breaker.state == CircuitState.CLOSED

        await _fail(breaker, 1)
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_exactly_threshold_does_not_open(self):
        """The threshold must be exceeded, not merely reached."""
        breaker = _breaker()

        await _succeed(breaker, 5)
        await _fail(breaker, 5)

        assert breaker.error_percentage == 50.0
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_open_rejects_without_calling(self):
        """While open, calls fail fast and the function is never invoked."""
        breaker = _breaker(reset_timeout=30)
        await _fail(breaker, 10)
        func = AsyncMock()

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(func)

        func.assert_not_called()
        assert exc_info.value.dependency == "whop-api"
        assert 0 < exc_info.value.retry_after <= 30
        assert exc_info.value.reset_at is not None

    @pytest.mark.asyncio
    async def test_open_event_emitted_once(self):
        """Listeners see a single open event per trip."""
        breaker = _breaker(reset_timeout=30)
        listener = MagicMock()
        breaker.add_listener(listener)

        await _fail(breaker, 10)

        open_events = [c for c in listener.call_args_list if c.args[0] == "open"]
        assert len(open_events) == 1
        assert open_events[0].args[1] == "whop-api"

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_calls(self):
        """A listener that raises is logged and ignored."""
        breaker = _breaker()
        breaker.add_listener(MagicMock(side_effect=RuntimeError("boom")))

        await _fail(breaker, 1)
        await _succeed(breaker, 1)


# =============================================================================
# Half-open and recovery
# =============================================================================


class TestHalfOpen:
    """Tests for OPEN -> HALF_OPEN -> CLOSED/OPEN."""

    @pytest.mark.asyncio
    async def test_moves_to_half_open_after_reset_timeout(self):
        breaker = _breaker()
        await _fail(breaker, 10)
        assert breaker.state == CircuitState.OPEN

        await asyncio.sleep(0.06)

        assert breaker.state == CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_successful_trial_closes(self):
        """One successful trial closes the circuit with a fresh window."""
        breaker = _breaker()
        await _fail(breaker, 10)
        await asyncio.sleep(0.06)

        await _succeed(breaker, 1)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.error_percentage == 0.0

    @pytest.mark.asyncio
    async def test_failed_trial_reopens(self):
        breaker = _breaker()
        await _fail(breaker, 10)
        await asyncio.sleep(0.06)

        await _fail(breaker, 1)

        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_only_one_trial_at_a_time(self):
        """Concurrent callers are rejected while the trial is in flight."""
        breaker = _breaker()
        await _fail(breaker, 10)
        await asyncio.sleep(0.06)

        release = asyncio.Event()

        async def slow_trial():
            await release.wait()
            return "ok"

        trial = asyncio.create_task(breaker.execute(slow_trial))
        await asyncio.sleep(0)

        with pytest.raises(CircuitOpenError):
            await breaker.execute(AsyncMock(return_value="ok"))

        release.set()
        assert await trial == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_call_admitted_before_opening_does_not_decide_trial(self):
        """A slow call let in while CLOSED finishing mid-trial leaves the trial in charge."""
        breaker = _breaker(timeout=None, volume_threshold=5)
        release_slow = asyncio.Event()
        release_trial = asyncio.Event()

        async def slow_call():
            await release_slow.wait()
            return "late"

        async def trial_call():
            await release_trial.wait()
            raise UpstreamHTTPError(status_code=503)

        slow = asyncio.create_task(breaker.execute(slow_call))
        await asyncio.sleep(0)
        await _fail(breaker, 5)
        assert breaker.state == CircuitState.OPEN
        await asyncio.sleep(0.06)

        trial = asyncio.create_task(breaker.execute(trial_call))
        await asyncio.sleep(0)
        release_slow.set()
        assert await slow == "late"

        assert breaker.state == CircuitState.HALF_OPEN
        with pytest.raises(CircuitOpenError):
            await breaker.execute(AsyncMock(return_value="ok"))

        release_trial.set()
        with pytest.raises(UpstreamHTTPError):
            await trial
        assert breaker.state == CircuitState.OPEN


# =============================================================================
# Timeouts and exclusions
# =============================================================================


class TestTimeoutAndExclusions:
    """Tests for per-call timeout and excluded exceptions."""

    @pytest.mark.asyncio
    async def test_slow_call_times_out(self):
        """Calls over the deadline raise the typed TimeoutError and count as failures."""
        breaker = _breaker(timeout=0.01)

        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(TimeoutError) as exc_info:
            await breaker.execute(slow)

        assert exc_info.value.timeout_seconds == 0.01
        assert exc_info.value.is_retryable is True
        snapshot = breaker.snapshot()
        assert snapshot["stats"]["timeouts"] == 1
        assert snapshot["stats"]["failures"] == 1

    @pytest.mark.asyncio
    async def test_excluded_errors_do_not_count(self):
        """Rate-limit rejections neither trip nor heal the breaker."""
        breaker = _breaker(excluded_exceptions=(RateLimitError,))

        for _ in range(20):
            with pytest.raises(RateLimitError):
                await breaker.execute(AsyncMock(side_effect=RateLimitError(retry_after="1")))

        assert breaker.state == CircuitState.CLOSED
        assert breaker.error_percentage == 0.0
        assert breaker.snapshot()["stats"]["failures"] == 0


# =============================================================================
# Snapshot / reset
# =============================================================================


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_snapshot_counts(self):
        breaker = _breaker()
        await _succeed(breaker, 3)
        await _fail(breaker, 1)

        snapshot = breaker.snapshot()

        assert snapshot["state"] == "closed"
        assert snapshot["stats"]["fires"] == 4
        assert snapshot["stats"]["successes"] == 3
        assert snapshot["stats"]["failures"] == 1
        assert snapshot["stats"]["error_percentage"] == 25.0

    @pytest.mark.asyncio
    async def test_reset_closes(self):
        breaker = _breaker(reset_timeout=30)
        await _fail(breaker, 10)

        breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        await _succeed(breaker, 1)
