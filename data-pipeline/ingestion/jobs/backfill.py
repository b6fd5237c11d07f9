"""Checkpointed backfill of paginated Whop collections.

Flow per run:
1. Degradation gate (backfill policy)
2. Resume the running count from the last checkpoint, if any
3. Page through the collection until a cap, the deadline or an empty page
4. Checkpoint after every page; clear it only when the run completes
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

from ingestion.config.constants import DEFAULT_PAGE_SIZE
from ingestion.config.settings import ProcessingLimits
from ingestion.core.errors import IngestionError
from ingestion.core.types import BackfillResult, JobKind
from ingestion.degradation import DegradationGate
from ingestion.observability.logger import get_logger, log_context
from ingestion.observability.metrics import MetricsCollector
from ingestion.sources.whop import WhopClient
from ingestion.state.checkpoint import CheckpointRepository

logger = get_logger(__name__)

MESSAGE_COMPLETED = "Backfill completed"
MESSAGE_MAX_RECORDS = "Max records limit reached"
MESSAGE_MAX_PAGES = "Max pages limit reached"
MESSAGE_DEADLINE = "Processing time limit reached; progress checkpointed"


def page_records(response: Any) -> list[Any]:
    """Records of a list response; anything but {"data": [...]} counts as empty."""
    if not isinstance(response, dict):
        return []
    records = response.get("data")
    return records if isinstance(records, list) else []


def record_id(record: Any) -> str:
    if isinstance(record, dict) and record.get("id"):
        return str(record["id"])
    return "unknown"


async def fetch_page(
    client: WhopClient,
    kind: JobKind,
    page: int,
    *,
    limit: int = DEFAULT_PAGE_SIZE,
    created_after: str | None = None,
    created_before: str | None = None,
) -> Any:
    """Fetch one page of a collection."""
    fetch = client.get_memberships if kind == JobKind.MEMBERSHIPS else client.get_payments
    return await fetch(
        page=page,
        limit=limit,
        created_after=created_after,
        created_before=created_before,
    )


class BackfillJob:
    """Backfill runner for memberships and payments.

    Usage:
        job = BackfillJob(client, checkpoints, gate, settings.backfill_limits())
        result = await job.run(JobKind.PAYMENTS)
    """

    def __init__(
        self,
        client: WhopClient,
        checkpoints: CheckpointRepository,
        gate: DegradationGate,
        limits: ProcessingLimits | None = None,
        metrics: MetricsCollector | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.checkpoints = checkpoints
        self.gate = gate
        self.limits = limits or ProcessingLimits()
        self.metrics = metrics or MetricsCollector()
        self.page_size = page_size
        self._clock = clock

    async def run(
        self,
        kind: JobKind | str,
        *,
        created_after: str | None = None,
        created_before: str | None = None,
    ) -> BackfillResult:
        """
        Run one backfill pass.

        Args:
            kind: Collection to backfill ("memberships" or "payments")
            created_after: Window start (defaults to yesterday's window)
            created_before: Window end

        Returns:
            BackfillResult with the running count and stop reason

        Raises:
            ServiceUnavailableError: If the gate rejects the run (checkpoint untouched)
            IngestionError: If a page fails (checkpoint kept for the next run)
        """
        kind = JobKind(kind)
        job_type = kind.job_type

        self.gate.ensure_can_process("backfill")

        with log_context(job_type=job_type), self.metrics.run(job_type) as run_metrics:
            limits = self.limits
            start = self._clock()
            processed = 0
            page = 1
            resumed_from: int | None = None

            checkpoint = self.checkpoints.load(job_type)
            if checkpoint is not None:
                processed = checkpoint.processed_count
                resumed_from = processed
                logger.info("Resuming from checkpoint", extra=checkpoint.to_dict())

            completed = False
            try:
                while True:
                    if processed >= limits.max_records:
                        message, completed = MESSAGE_MAX_RECORDS, True
                        break
                    if page > limits.max_pages:
                        message, completed = MESSAGE_MAX_PAGES, True
                        break

                    elapsed = self._clock() - start
                    if elapsed >= limits.max_processing_time:
                        logger.warning(
                            "Backfill timeout reached",
                            extra={
                                "processed": processed,
                                "page": page,
                                "elapsed": round(elapsed, 3),
                                "max_time": limits.max_processing_time,
                            },
                        )
                        message = MESSAGE_DEADLINE
                        break

                    response = await fetch_page(
                        self.client,
                        kind,
                        page,
                        limit=self.page_size,
                        created_after=created_after,
                        created_before=created_before,
                    )
                    records = page_records(response)
                    if not records:
                        message, completed = MESSAGE_COMPLETED, True
                        break

                    processed += len(records)
                    run_metrics.record_page(len(records))

                    self.checkpoints.save(job_type, record_id(records[-1]), processed)
                    page += 1

            except IngestionError as e:
                run_metrics.record_failure(error_type=type(e).__name__)
                logger.error(
                    "Backfill failed",
                    extra={
                        "processed": processed,
                        "page": page,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                raise

            if completed:
                self.checkpoints.clear(job_type)

            result = BackfillResult(
                job_type=job_type,
                processed=processed,
                pages=page - 1,
                message=message,
                completed=completed,
                resumed_from=resumed_from,
            )
            logger.info(
                f"Backfill finished: {message}",
                extra={"processed": processed, "pages": result.pages, "completed": completed},
            )
            return result
