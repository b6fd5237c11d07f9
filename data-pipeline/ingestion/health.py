"""Health checks for the upstream dependency, breakers and dead letters."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from ingestion.config.constants import WHOP_DEPENDENCY
from ingestion.core.batch import gather_settled
from ingestion.degradation import DegradationGate
from ingestion.observability.logger import get_logger
from ingestion.resilience.circuit_breaker import CircuitState
from ingestion.resilience.registry import ResilienceRegistry
from ingestion.state.dead_letter import DeadLetterStore

logger = get_logger(__name__)

STATUS_UP = "up"
STATUS_DOWN = "down"


def _status(healthy: bool, **details: Any) -> dict[str, Any]:
    return {"status": STATUS_UP if healthy else STATUS_DOWN, **details}


class HealthService:
    """Build the health report.

    Each check returns {"status": "up" | "down", ...details}. check_all runs
    them concurrently; a check that raises is reported as down without
    hiding the others.
    """

    def __init__(
        self,
        registry: ResilienceRegistry,
        dead_letters: DeadLetterStore,
        gate: DegradationGate,
        dependency: str = WHOP_DEPENDENCY,
    ) -> None:
        self.registry = registry
        self.dead_letters = dead_letters
        self.gate = gate
        self.dependency = dependency

    async def check_upstream(self) -> dict[str, Any]:
        """Upstream is healthy unless its breaker is open."""
        breaker = self.registry.all_breakers().get(self.dependency)
        if breaker is None:
            return _status(True, message="Circuit breaker not initialized")

        snapshot = breaker.snapshot()
        state = breaker.state
        return _status(
            state in (CircuitState.CLOSED, CircuitState.HALF_OPEN),
            state=state.value,
            failures=snapshot["stats"]["failures"],
            fires=snapshot["stats"]["fires"],
        )

    async def check_dlq(self) -> dict[str, Any]:
        snapshot = self.dead_letters.snapshot()
        healthy = snapshot["current_size"] < self.dead_letters.alert_threshold
        return _status(
            healthy,
            **snapshot,
            message="DLQ size OK" if healthy else "DLQ size approaching limit",
        )

    async def check_circuit_breakers(self) -> dict[str, Any]:
        breakers = self.registry.snapshot()
        open_breakers = [
            name for name, entry in breakers.items() if entry.get("state") == CircuitState.OPEN
        ]
        healthy = not open_breakers
        return _status(
            healthy,
            total=len(breakers),
            open=len(open_breakers),
            breakers=breakers,
            message=(
                "All circuit breakers closed"
                if healthy
                else f"{len(open_breakers)} circuit breaker(s) open"
            ),
        )

    async def check_all(self) -> dict[str, Any]:
        """Run every check concurrently and combine the results."""
        checks: dict[str, Callable[[], Awaitable[dict[str, Any]]]] = {
            self.dependency: self.check_upstream,
            "dlq": self.check_dlq,
            "circuit-breakers": self.check_circuit_breakers,
        }

        outcomes = await gather_settled(*(check() for check in checks.values()))

        results: dict[str, Any] = {}
        for name, outcome in zip(checks, outcomes):
            if outcome.ok:
                results[name] = outcome.value
            else:
                logger.error(
                    f"Health check '{name}' failed",
                    exc_info=outcome.error,
                )
                results[name] = _status(False, error=str(outcome.error))

        healthy = all(r["status"] == STATUS_UP for r in results.values())
        return {
            "status": "ok" if healthy else "error",
            "checks": results,
            "degradation_level": self.gate.get_degradation_level().value,
        }
