"""Response models for the ingestion API."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class BackfillResponse(BaseModel):
    """Result of a backfill run."""

    job_type: str
    processed: int = Field(ge=0)
    pages: int = Field(ge=0)
    message: str
    completed: bool
    resumed_from: int | None = None


class ReconciliationCounts(BaseModel):
    memberships_checked: int = Field(ge=0)
    payments_checked: int = Field(ge=0)
    errors: list[str] = Field(default_factory=list)


class ReconciliationResponse(BaseModel):
    """Result of a reconciliation pass."""

    message: str
    result: ReconciliationCounts


class DeadLetterItem(BaseModel):
    """A permanently failed request."""

    id: str
    event_type: str
    payload: Any = None
    error: str
    timestamp: datetime
    retry_count: int = 0


class DeadLetterListResponse(BaseModel):
    """Dead letters, newest first."""

    total: int
    items: list[DeadLetterItem]


class CheckpointItem(BaseModel):
    """Saved progress of a job."""

    job_type: str
    last_processed_id: str
    processed_count: int
    timestamp: datetime


class CheckpointListResponse(BaseModel):
    items: list[CheckpointItem]


class RemoveResponse(BaseModel):
    success: bool
    message: str


class HealthResponse(BaseModel):
    """Combined health report."""

    status: str
    checks: dict[str, dict[str, Any]]
    degradation_level: str
