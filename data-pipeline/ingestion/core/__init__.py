"""Core infrastructure for the ingestion layer."""

from .batch import BatchOutcome, batch_process_with_limit, gather_settled
from .errors import (
    CircuitOpenError,
    DataNotFoundError,
    IngestionError,
    MethodNotAllowedError,
    NetworkError,
    RateLimitError,
    ServiceUnavailableError,
    TimeoutError,
    UpstreamHTTPError,
)
from .types import (
    BackfillResult,
    Checkpoint,
    DeadLetterEntry,
    DegradationLevel,
    GateDecision,
    JobKind,
    ReconciliationResult,
    utc_now,
)

__all__ = [
    # Errors
    "IngestionError",
    "TimeoutError",
    "RateLimitError",
    "CircuitOpenError",
    "NetworkError",
    "UpstreamHTTPError",
    "DataNotFoundError",
    "MethodNotAllowedError",
    "ServiceUnavailableError",
    # Types
    "JobKind",
    "DegradationLevel",
    "Checkpoint",
    "DeadLetterEntry",
    "GateDecision",
    "BackfillResult",
    "ReconciliationResult",
    "utc_now",
    # Fan-out
    "BatchOutcome",
    "batch_process_with_limit",
    "gather_settled",
]
