"""Checkpoint store for resumable paginated jobs."""

from __future__ import annotations

from typing import Protocol

from ingestion.core.types import Checkpoint, utc_now
from ingestion.observability.logger import get_logger

logger = get_logger(__name__)


class CheckpointRepository(Protocol):
    """Storage interface for job checkpoints."""

    def save(self, job_type: str, last_processed_id: str, processed_count: int) -> Checkpoint: ...

    def load(self, job_type: str) -> Checkpoint | None: ...

    def clear(self, job_type: str) -> None: ...


class CheckpointStore:
    """In-memory checkpoint store, one checkpoint per job type.

    Progress does not survive a process restart.

    Usage:
        store = CheckpointStore()
        store.save("backfill-payments", "page_3", processed_count=300)

        checkpoint = store.load("backfill-payments")
        if checkpoint:
            processed = checkpoint.processed_count
    """

    def __init__(self) -> None:
        self._checkpoints: dict[str, Checkpoint] = {}

    def save(self, job_type: str, last_processed_id: str, processed_count: int) -> Checkpoint:
        """Store or replace the checkpoint for a job type."""
        checkpoint = Checkpoint(
            job_type=job_type,
            last_processed_id=last_processed_id,
            processed_count=processed_count,
            timestamp=utc_now(),
        )
        self._checkpoints[job_type] = checkpoint
        logger.debug(
            "Checkpoint saved",
            extra={
                "job_type": job_type,
                "last_processed_id": last_processed_id,
                "processed_count": processed_count,
            },
        )
        return checkpoint

    def load(self, job_type: str) -> Checkpoint | None:
        """Latest checkpoint for a job type, if any."""
        checkpoint = self._checkpoints.get(job_type)
        if checkpoint is not None:
            logger.info(
                "Checkpoint loaded",
                extra={
                    "job_type": job_type,
                    "last_processed_id": checkpoint.last_processed_id,
                    "processed_count": checkpoint.processed_count,
                },
            )
        return checkpoint

    def clear(self, job_type: str) -> None:
        """Remove the checkpoint for a job type (no-op if absent)."""
        if self._checkpoints.pop(job_type, None) is not None:
            logger.info("Checkpoint cleared", extra={"job_type": job_type})

    def all(self) -> list[Checkpoint]:
        """All stored checkpoints, oldest first."""
        return sorted(self._checkpoints.values(), key=lambda c: c.timestamp)

    def __len__(self) -> int:
        return len(self._checkpoints)
