"""Tests for ingestion/degradation.py and health.py."""

import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

# Add data-pipeline to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "data-pipeline"))

from ingestion.core.errors import ServiceUnavailableError
from ingestion.core.types import DegradationLevel
from ingestion.degradation import DLQ_FULL, UPSTREAM_UNAVAILABLE, DegradationGate
from ingestion.health import HealthService
from ingestion.resilience.circuit_breaker import CircuitState


@pytest.fixture
def gate(registry, dead_letters) -> DegradationGate:
    return DegradationGate(registry, dead_letters)


def _set_breaker(registry, state: CircuitState) -> None:
    breaker = registry.circuit_breaker("whop-api")
    # Keep OPEN from decaying into HALF_OPEN during the test
    breaker.reset_timeout = 30
    breaker._transition(state)


def _fill(dead_letters, count: int) -> None:
    for n in range(count):
        dead_letters.add_failed_event(f"GET /payments/pay_{n}", "payments", None, "boom")


# =============================================================================
# Admission
# =============================================================================


class TestAnalysisAdmission:
    """Tests for can_process_analysis()."""

    def test_allowed_when_healthy(self, gate):
        decision = gate.can_process_analysis()

        assert decision.allowed is True
        assert decision.reason is None
        assert decision.retry_after_seconds is None

    def test_allowed_before_first_call(self, gate, registry):
        """No breaker yet means nothing is known to be down."""
        assert registry.breaker_state("whop-api") is None
        assert gate.can_process_analysis().allowed is True

    def test_rejected_while_breaker_open(self, gate, registry):
        _set_breaker(registry, CircuitState.OPEN)

        decision = gate.can_process_analysis()

        assert decision.allowed is False
        assert decision.reason == UPSTREAM_UNAVAILABLE
        assert decision.retry_after_seconds == 60

    def test_allowed_while_half_open(self, gate, registry):
        _set_breaker(registry, CircuitState.HALF_OPEN)
        assert gate.can_process_analysis().allowed is True

    def test_rejected_when_dlq_full(self, gate, dead_letters):
        _fill(dead_letters, 10)

        decision = gate.can_process_analysis()

        assert decision.allowed is False
        assert decision.reason == DLQ_FULL
        assert decision.retry_after_seconds == 300

    def test_breaker_checked_before_dlq(self, gate, registry, dead_letters):
        _fill(dead_letters, 10)
        _set_breaker(registry, CircuitState.OPEN)

        assert gate.can_process_analysis().retry_after_seconds == 60


class TestBackfillAdmission:
    """Tests for can_process_backfill()."""

    def test_rejected_without_retry_hint(self, gate, registry):
        _set_breaker(registry, CircuitState.OPEN)

        decision = gate.can_process_backfill()

        assert decision.allowed is False
        assert decision.reason == UPSTREAM_UNAVAILABLE
        assert decision.retry_after_seconds is None

    def test_full_dlq_does_not_block_backfill(self, gate, dead_letters):
        _fill(dead_letters, 10)
        assert gate.can_process_backfill().allowed is True


class TestEnsureCanProcess:
    """Tests for ensure_can_process()."""

    def test_passes_when_allowed(self, gate):
        gate.ensure_can_process("analysis")
        gate.ensure_can_process("backfill")

    def test_raises_with_retry_after(self, gate, registry):
        _set_breaker(registry, CircuitState.OPEN)

        with pytest.raises(ServiceUnavailableError) as exc_info:
            gate.ensure_can_process("analysis")

        assert str(exc_info.value) == UPSTREAM_UNAVAILABLE
        assert exc_info.value.retry_after == 60
        assert exc_info.value.dependency == "whop-api"

    def test_backfill_rejection_has_no_retry_after(self, gate, registry):
        _set_breaker(registry, CircuitState.OPEN)

        with pytest.raises(ServiceUnavailableError) as exc_info:
            gate.ensure_can_process("backfill")

        assert exc_info.value.retry_after is None


# =============================================================================
# Degradation level
# =============================================================================


class TestDegradationLevel:
    """Tests for get_degradation_level()."""

    def test_normal(self, gate):
        assert gate.get_degradation_level() == DegradationLevel.NORMAL

    def test_half_full_is_still_normal(self, gate, dead_letters):
        """Degraded needs strictly more than half of max_size."""
        _fill(dead_letters, 5)
        assert gate.get_degradation_level() == DegradationLevel.NORMAL

    def test_degraded_above_half(self, gate, dead_letters):
        _fill(dead_letters, 6)
        assert gate.get_degradation_level() == DegradationLevel.DEGRADED

    def test_degraded_while_half_open(self, gate, registry):
        _set_breaker(registry, CircuitState.HALF_OPEN)
        assert gate.get_degradation_level() == DegradationLevel.DEGRADED

    def test_critical_at_alert_threshold(self, gate, dead_letters):
        _fill(dead_letters, 8)
        assert gate.get_degradation_level() == DegradationLevel.CRITICAL

    def test_critical_while_open(self, gate, registry):
        _set_breaker(registry, CircuitState.OPEN)
        assert gate.get_degradation_level() == DegradationLevel.CRITICAL


# =============================================================================
# Health
# =============================================================================


class TestHealthService:
    """Tests for HealthService.check_all()."""

    @pytest.mark.asyncio
    async def test_all_up(self, registry, dead_letters, gate):
        health = HealthService(registry, dead_letters, gate)

        report = await health.check_all()

        assert report["status"] == "ok"
        assert report["degradation_level"] == "normal"
        assert set(report["checks"]) == {"whop-api", "dlq", "circuit-breakers"}
        assert report["checks"]["whop-api"]["message"] == "Circuit breaker not initialized"
        assert report["checks"]["dlq"]["message"] == "DLQ size OK"

    @pytest.mark.asyncio
    async def test_open_breaker_reports_down(self, registry, dead_letters, gate):
        _set_breaker(registry, CircuitState.OPEN)
        health = HealthService(registry, dead_letters, gate)

        report = await health.check_all()

        assert report["status"] == "error"
        assert report["checks"]["whop-api"]["status"] == "down"
        assert report["checks"]["whop-api"]["state"] == "open"
        assert report["checks"]["circuit-breakers"]["open"] == 1
        assert report["degradation_level"] == "critical"

    @pytest.mark.asyncio
    async def test_half_open_upstream_is_up(self, registry, dead_letters, gate):
        _set_breaker(registry, CircuitState.HALF_OPEN)
        health = HealthService(registry, dead_letters, gate)

        result = await health.check_upstream()

        assert result["status"] == "up"
        assert result["state"] == "half_open"

    @pytest.mark.asyncio
    async def test_dlq_at_threshold_reports_down(self, registry, dead_letters, gate):
        _fill(dead_letters, 8)
        health = HealthService(registry, dead_letters, gate)

        result = await health.check_dlq()

        assert result["status"] == "down"
        assert result["message"] == "DLQ size approaching limit"
        assert result["current_size"] == 8

    @pytest.mark.asyncio
    async def test_failing_check_does_not_hide_others(self, registry, dead_letters, gate):
        health = HealthService(registry, dead_letters, gate)
        health.check_dlq = AsyncMock(side_effect=RuntimeError("store unreachable"))

        report = await health.check_all()

        assert report["status"] == "error"
        assert report["checks"]["dlq"] == {"status": "down", "error": "store unreachable"}
        assert report["checks"]["whop-api"]["status"] == "up"
