"""Long-running ingestion jobs."""

from .backfill import BackfillJob
from .reconciliation import ReconciliationJob

__all__ = ["BackfillJob", "ReconciliationJob"]
