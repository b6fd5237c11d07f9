"""Admission control based on upstream and dead letter health.

Consulted before new work starts so that nothing is sent upstream while the
dependency is known to be down, and analysis is deferred while the dead
letter store is full.
"""

from __future__ import annotations

from typing import Literal

from ingestion.config.constants import (
    ANALYSIS_RETRY_AFTER_BREAKER_OPEN,
    ANALYSIS_RETRY_AFTER_DLQ_FULL,
    DEGRADED_DLQ_RATIO,
    WHOP_DEPENDENCY,
)
from ingestion.core.errors import ServiceUnavailableError
from ingestion.core.types import DegradationLevel, GateDecision
from ingestion.observability.logger import get_logger
from ingestion.resilience.circuit_breaker import CircuitState
from ingestion.resilience.registry import ResilienceRegistry
from ingestion.state.dead_letter import DeadLetterStore

logger = get_logger(__name__)

Operation = Literal["analysis", "backfill"]

UPSTREAM_UNAVAILABLE = "Whop API is unavailable (circuit breaker open)"
DLQ_FULL = "Dead letter queue is full"


class DegradationGate:
    """Decide whether analysis or backfill work may start.

    Usage:
        gate = DegradationGate(registry, dead_letters)

        decision = gate.can_process_backfill()
        if not decision.allowed:
            ...

        gate.ensure_can_process("analysis")  # raises ServiceUnavailableError
    """

    def __init__(
        self,
        registry: ResilienceRegistry,
        dead_letters: DeadLetterStore,
        dependency: str = WHOP_DEPENDENCY,
    ) -> None:
        self.registry = registry
        self.dead_letters = dead_letters
        self.dependency = dependency

    def _upstream_state(self) -> CircuitState | None:
        return self.registry.breaker_state(self.dependency)

    def can_process_analysis(self) -> GateDecision:
        if self._upstream_state() == CircuitState.OPEN:
            return GateDecision(
                allowed=False,
                reason=UPSTREAM_UNAVAILABLE,
                retry_after_seconds=ANALYSIS_RETRY_AFTER_BREAKER_OPEN,
            )

        if self.dead_letters.size >= self.dead_letters.max_size:
            return GateDecision(
                allowed=False,
                reason=DLQ_FULL,
                retry_after_seconds=ANALYSIS_RETRY_AFTER_DLQ_FULL,
            )

        return GateDecision(allowed=True)

    def can_process_backfill(self) -> GateDecision:
        # Backfill is resumable from its checkpoint; no retry hint
        if self._upstream_state() == CircuitState.OPEN:
            return GateDecision(allowed=False, reason=UPSTREAM_UNAVAILABLE)

        return GateDecision(allowed=True)

    def get_degradation_level(self) -> DegradationLevel:
        """Coarse health classification for reporting."""
        state = self._upstream_state()
        size = self.dead_letters.size

        if size >= self.dead_letters.alert_threshold or state == CircuitState.OPEN:
            return DegradationLevel.CRITICAL

        degraded_size = self.dead_letters.max_size * DEGRADED_DLQ_RATIO
        if size > degraded_size or state == CircuitState.HALF_OPEN:
            return DegradationLevel.DEGRADED

        return DegradationLevel.NORMAL

    def check(self, operation: Operation) -> GateDecision:
        if operation == "analysis":
            return self.can_process_analysis()
        return self.can_process_backfill()

    def ensure_can_process(self, operation: Operation) -> None:
        """Raise ServiceUnavailableError if the operation is not admitted."""
        decision = self.check(operation)
        if decision.allowed:
            return

        logger.warning(
            "Operation rejected by degradation gate",
            extra={"operation": operation, **decision.to_dict()},
        )
        raise ServiceUnavailableError(
            decision.reason or "Service unavailable",
            retry_after=decision.retry_after_seconds,
            dependency=self.dependency,
        )
