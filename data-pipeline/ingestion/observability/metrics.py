"""Metrics collection for the ingestion layer.

Tracks job run statistics and process-wide resilience counters.

Usage:
    from ingestion.observability import MetricsCollector

    metrics = MetricsCollector()

    with metrics.run("backfill-payments") as m:
        m.record_page(records=100)
        m.record_failure(error_type="TimeoutError")

    print(metrics.last.to_summary())
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generator


@dataclass
class JobMetrics:
    """Metrics for a single job run."""

    job_type: str
    started_at: datetime
    ended_at: datetime | None = None

    # Counts
    pages: int = 0
    records: int = 0
    failed: int = 0

    # Error breakdown by type
    errors_by_type: dict[str, int] = field(default_factory=dict)

    # Resilience events observed during the run
    rate_limit_hits: int = 0
    circuit_breaker_trips: int = 0

    @property
    def duration_seconds(self) -> float:
        """Total duration in seconds."""
        if self.ended_at is None:
            return (datetime.now() - self.started_at).total_seconds()
        return (self.ended_at - self.started_at).total_seconds()

    @property
    def records_per_second(self) -> float:
        if self.duration_seconds == 0:
            return 0.0
        return self.records / self.duration_seconds

    def record_page(self, records: int) -> None:
        """Record one processed page."""
        self.pages += 1
        self.records += records

    def record_failure(self, count: int = 1, error_type: str = "unknown") -> None:
        """Record failure(s) with error type."""
        self.failed += count
        self.errors_by_type[error_type] = self.errors_by_type.get(error_type, 0) + count

    def complete(self) -> None:
        """Mark run as complete."""
        self.ended_at = datetime.now()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "job_type": self.job_type,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_seconds": round(self.duration_seconds, 2),
            "pages": self.pages,
            "records": self.records,
            "failed": self.failed,
            "records_per_second": round(self.records_per_second, 2),
            "errors_by_type": self.errors_by_type,
            "rate_limit_hits": self.rate_limit_hits,
            "circuit_breaker_trips": self.circuit_breaker_trips,
        }

    def to_summary(self) -> str:
        """Generate human-readable summary."""
        lines = [
            f"Job Summary ({self.job_type})",
            "=" * 40,
            f"Duration: {self.duration_seconds:.1f}s",
            f"Pages: {self.pages}",
            f"Records: {self.records}",
            f"Failed: {self.failed}",
        ]

        if self.errors_by_type:
            lines.append("")
            lines.append("Errors by Type:")
            for error_type, count in sorted(self.errors_by_type.items(), key=lambda x: -x[1]):
                lines.append(f"  {error_type}: {count}")

        if self.rate_limit_hits > 0:
            lines.append(f"\nRate Limit Hits: {self.rate_limit_hits}")

        if self.circuit_breaker_trips > 0:
            lines.append(f"Circuit Breaker Trips: {self.circuit_breaker_trips}")

        return "\n".join(lines)


class MetricsCollector:
    """Collect job metrics and process-wide resilience counters.

    Resilience counters are recorded whether or not a job is running; when
    one is, the active run gets a copy of the event too.
    """

    def __init__(self) -> None:
        self._current: JobMetrics | None = None
        self._history: list[JobMetrics] = []
        self.rate_limit_hits = 0
        self.circuit_breaker_trips = 0

    @property
    def current(self) -> JobMetrics | None:
        """Get metrics for the running job."""
        return self._current

    @property
    def last(self) -> JobMetrics | None:
        """Most recently completed run."""
        return self._history[-1] if self._history else None

    @property
    def history(self) -> list[JobMetrics]:
        """Get history of completed runs."""
        return self._history.copy()

    @contextmanager
    def run(self, job_type: str) -> Generator[JobMetrics, None, None]:
        """Context manager for a job run.

        Args:
            job_type: Job identifier (e.g. "backfill-payments")

        Yields:
            JobMetrics instance for tracking
        """
        self._current = JobMetrics(job_type=job_type, started_at=datetime.now())

        try:
            yield self._current
        finally:
            self._current.complete()
            self._history.append(self._current)
            self._current = None

    def record_rate_limit(self, attempt: int = 0) -> None:
        """Record a rate limit signal from upstream."""
        self.rate_limit_hits += 1
        if self._current is not None:
            self._current.rate_limit_hits += 1

    def on_breaker_event(self, event: str, name: str, payload: dict[str, Any]) -> None:
        """Circuit breaker listener; counts transitions to open."""
        if event != "open":
            return
        self.circuit_breaker_trips += 1
        if self._current is not None:
            self._current.circuit_breaker_trips += 1

    def get_stats(self) -> dict[str, Any]:
        """Get aggregate statistics across all runs."""
        return {
            "total_runs": len(self._history),
            "total_records": sum(m.records for m in self._history),
            "total_pages": sum(m.pages for m in self._history),
            "rate_limit_hits": self.rate_limit_hits,
            "circuit_breaker_trips": self.circuit_breaker_trips,
        }
