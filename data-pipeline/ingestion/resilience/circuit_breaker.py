"""Circuit Breaker pattern for upstream failure isolation.

State transitions:
CLOSED (normal) → [failure % over rolling window > threshold] → OPEN (blocked)
OPEN → [reset_timeout wait] → HALF_OPEN (one trial call)
HALF_OPEN → [trial succeeds] → CLOSED
HALF_OPEN → [trial fails] → OPEN
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from ingestion.config.constants import (
    DEFAULT_CALL_TIMEOUT,
    DEFAULT_ERROR_THRESHOLD_PERCENTAGE,
    DEFAULT_RESET_TIMEOUT,
    DEFAULT_VOLUME_THRESHOLD,
    DEFAULT_WINDOW_SIZE,
)
from ingestion.core.errors import CircuitOpenError, IngestionError, TimeoutError
from ingestion.observability.logger import get_logger

logger = get_logger(__name__)

# (event, breaker name, payload)
BreakerListener = Callable[[str, str, dict[str, Any]], None]


@dataclass(frozen=True)
class Admission:
    """Ticket for an admitted call: the state generation it was let in under."""

    generation: int
    is_trial: bool = False


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, rejecting calls
    HALF_OPEN = "half_open"  # Testing if recovered


@dataclass
class CircuitBreaker:
    """Rolling-window circuit breaker for one upstream dependency.

    Usage:
        breaker = CircuitBreaker(name="whop-api", timeout=10.0)

        result = await breaker.execute(fetch_page, page=1)
    """

    # Configuration
    name: str = "default"
    timeout: float | None = DEFAULT_CALL_TIMEOUT  # seconds per call
    error_threshold_percentage: float = DEFAULT_ERROR_THRESHOLD_PERCENTAGE
    reset_timeout: float = DEFAULT_RESET_TIMEOUT  # seconds
    window_size: int = DEFAULT_WINDOW_SIZE
    volume_threshold: int = DEFAULT_VOLUME_THRESHOLD
    # Errors that neither count as failures nor as successes
    excluded_exceptions: tuple[type[BaseException], ...] = ()

    # State
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _window: deque[bool] = field(default_factory=deque, init=False)  # True = failure
    _opened_at: float = field(default=0.0, init=False)
    _trial_in_flight: bool = field(default=False, init=False)
    # Bumped on every transition; outcomes from an older generation are stale
    _generation: int = field(default=0, init=False)
    _stats: dict[str, int] = field(default_factory=dict, init=False)
    _listeners: list[BreakerListener] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        self._window = deque(maxlen=self.window_size)
        self._stats = {"fires": 0, "successes": 0, "failures": 0, "rejects": 0, "timeouts": 0}

    @property
    def state(self) -> CircuitState:
        """Get current circuit state, moving OPEN to HALF_OPEN once reset_timeout has passed."""
        if (
            self._state == CircuitState.OPEN
            and time.monotonic() - self._opened_at >= self.reset_timeout
        ):
            self._transition(CircuitState.HALF_OPEN)
        return self._state

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def error_percentage(self) -> float:
        """Failure percentage over the rolling window."""
        if not self._window:
            return 0.0
        return sum(self._window) / len(self._window) * 100

    def add_listener(self, listener: BreakerListener) -> None:
        """Subscribe to open/half_open/close/failure/reject/timeout events."""
        self._listeners.append(listener)

    async def execute(
        self,
        func: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Execute function with circuit breaker protection.

        Args:
            func: Async or sync function to execute
            *args: Positional arguments
            **kwargs: Keyword arguments

        Returns:
            Function result

        Raises:
            CircuitOpenError: If circuit is open (or a half-open trial is running)
            TimeoutError: If the call exceeds `timeout`
            Original exception: If function fails
        """
        self._stats["fires"] += 1
        admission = self._admit()

        start = time.monotonic()
        try:
            result = func(*args, **kwargs)
            if asyncio.iscoroutine(result):
                if self.timeout is not None:
                    result = await asyncio.wait_for(result, self.timeout)
                else:
                    result = await result

        except self.excluded_exceptions as e:
            self._release_trial(admission)
            self._label(e, time.monotonic() - start)
            raise

        except asyncio.TimeoutError:
            elapsed = time.monotonic() - start
            self._stats["timeouts"] += 1
            self._emit("timeout", timeout=self.timeout, elapsed=round(elapsed, 3))
            self._record_failure(admission, f"timed out after {self.timeout}s")
            raise TimeoutError(
                f"{self.name} call timed out after {self.timeout}s",
                timeout_seconds=self.timeout,
                dependency=self.name,
                elapsed=elapsed,
            ) from None

        except asyncio.CancelledError:
            self._release_trial(admission)
            raise

        except Exception as e:
            self._record_failure(admission, str(e))
            self._label(e, time.monotonic() - start)
            raise

        self._record_success(admission)
        return result

    def _admit(self) -> Admission:
        """Allow or reject a call based on the current state."""
        state = self.state

        if state == CircuitState.CLOSED:
            return Admission(self._generation)

        if state == CircuitState.HALF_OPEN and not self._trial_in_flight:
            self._trial_in_flight = True
            return Admission(self._generation, is_trial=True)

        self._stats["rejects"] += 1
        if state == CircuitState.OPEN:
            remaining = max(0.0, self.reset_timeout - (time.monotonic() - self._opened_at))
            message = f"Circuit '{self.name}' is OPEN. Retry in {remaining:.0f}s"
        else:
            remaining = 0.0
            message = f"Circuit '{self.name}' is HALF_OPEN with a trial call in flight"

        self._emit("reject", state=state.value)
        raise CircuitOpenError(
            message,
            reset_at=datetime.now(timezone.utc) + timedelta(seconds=remaining),
            retry_after=remaining,
            dependency=self.name,
        )

    def _is_current(self, admission: Admission) -> bool:
        if admission.generation != self._generation:
            return False
        # Only the trial decides a HALF_OPEN breaker
        return self._state != CircuitState.HALF_OPEN or admission.is_trial

    def _record_success(self, admission: Admission) -> None:
        self._stats["successes"] += 1
        if not self._is_current(admission):
            return

        if self._state == CircuitState.HALF_OPEN:
            self._trial_in_flight = False
            self._transition(CircuitState.CLOSED)
        elif self._state == CircuitState.CLOSED:
            self._window.append(False)

    def _record_failure(self, admission: Admission, error: str) -> None:
        self._stats["failures"] += 1
        self._emit("failure", error=error)
        if not self._is_current(admission):
            return

        if self._state == CircuitState.HALF_OPEN:
            # Any failure in HALF_OPEN returns to OPEN
            self._trial_in_flight = False
            self._transition(CircuitState.OPEN)

        elif self._state == CircuitState.CLOSED:
            self._window.append(True)
            if (
                len(self._window) >= max(self.volume_threshold, 1)
                and self.error_percentage > self.error_threshold_percentage
            ):
                self._transition(CircuitState.OPEN)

    def _release_trial(self, admission: Admission) -> None:
        if admission.is_trial and self._is_current(admission):
            self._trial_in_flight = False

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        if new_state == old_state:
            return

        self._state = new_state
        self._generation += 1
        if new_state == CircuitState.OPEN:
            self._opened_at = time.monotonic()
            error_percentage = round(self.error_percentage, 1)
            self._window.clear()
            self._emit("open", previous=old_state.value, error_percentage=error_percentage)
        elif new_state == CircuitState.HALF_OPEN:
            self._trial_in_flight = False
            self._emit("half_open", previous=old_state.value)
        else:
            self._window.clear()
            self._emit("close", previous=old_state.value)

    def _emit(self, event: str, **payload: Any) -> None:
        extra = {"circuit_breaker": self.name, "event": event, **payload}
        if event == "open":
            logger.warning("Circuit breaker opened", extra=extra)
        elif event in ("half_open", "close"):
            logger.info(f"Circuit breaker {event.replace('_', '-')}", extra=extra)
        elif event == "failure":
            logger.error("Circuit breaker failure", extra=extra)
        else:
            logger.debug(f"Circuit breaker {event}", extra=extra)

        for listener in self._listeners:
            try:
                listener(event, self.name, payload)
            except Exception:
                logger.exception("Circuit breaker listener failed", extra=extra)

    def _label(self, error: BaseException, elapsed: float) -> None:
        if isinstance(error, IngestionError):
            error.label(dependency=self.name, elapsed=elapsed)
        else:
            error.add_note(f"{self.name}: failed after {elapsed:.3f}s")

    def snapshot(self) -> dict[str, Any]:
        """State and statistics for health output."""
        return {
            "state": self.state.value,
            "stats": {
                **self._stats,
                "error_percentage": round(self.error_percentage, 1),
                "window": len(self._window),
            },
        }

    def reset(self) -> None:
        """Reset circuit breaker to initial state."""
        self._state = CircuitState.CLOSED
        self._generation += 1
        self._window.clear()
        self._opened_at = 0.0
        self._trial_in_flight = False
        logger.info("Circuit breaker reset to CLOSED state", extra={"circuit_breaker": self.name})
