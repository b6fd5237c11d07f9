"""Shared types for the ingestion layer.

These types are used across the resilience, state and job modules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    """Timezone-aware current time used for all stored timestamps."""
    return datetime.now(timezone.utc)


class JobKind(str, Enum):
    """Paginated upstream collections that can be backfilled."""

    MEMBERSHIPS = "memberships"
    PAYMENTS = "payments"

    @property
    def job_type(self) -> str:
        """Checkpoint key for this job."""
        return f"backfill-{self.value}"


class DegradationLevel(str, Enum):
    """Coarse health classification for reporting."""

    NORMAL = "normal"
    DEGRADED = "degraded"
    CRITICAL = "critical"


@dataclass
class Checkpoint:
    """Resumable progress marker for a long paginated job."""

    job_type: str
    last_processed_id: str
    processed_count: int
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_type": self.job_type,
            "last_processed_id": self.last_processed_id,
            "processed_count": self.processed_count,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class DeadLetterEntry:
    """A work item that failed permanently."""

    id: str
    event_type: str
    payload: Any
    error: str
    timestamp: datetime = field(default_factory=utc_now)
    retry_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "payload": self.payload,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
            "retry_count": self.retry_count,
        }


@dataclass(frozen=True)
class GateDecision:
    """Admit/reject decision from the degradation gate."""

    allowed: bool
    reason: str | None = None
    retry_after_seconds: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        d: dict[str, Any] = {"allowed": self.allowed}
        if self.reason is not None:
            d["reason"] = self.reason
        if self.retry_after_seconds is not None:
            d["retry_after"] = self.retry_after_seconds
        return d


@dataclass
class BackfillResult:
    """Outcome of one backfill run."""

    job_type: str
    processed: int = 0
    pages: int = 0
    message: str = ""
    completed: bool = False
    resumed_from: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_type": self.job_type,
            "processed": self.processed,
            "pages": self.pages,
            "message": self.message,
            "completed": self.completed,
            "resumed_from": self.resumed_from,
        }


@dataclass
class ReconciliationResult:
    """Outcome of one reconciliation pass over memberships and payments."""

    memberships_checked: int = 0
    payments_checked: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "memberships_checked": self.memberships_checked,
            "payments_checked": self.payments_checked,
            "errors": list(self.errors),
        }
