"""Reconciliation pass over Whop memberships and payments.

Pages through memberships, then payments, under the page cap and counts
what the upstream currently reports. A failing collection is recorded in
the result's errors and does not stop the other one.
"""

from __future__ import annotations

from typing import Any

from ingestion.config.constants import DEFAULT_PAGE_SIZE
from ingestion.config.settings import ProcessingLimits
from ingestion.core.errors import IngestionError
from ingestion.core.types import JobKind, ReconciliationResult
from ingestion.degradation import DegradationGate
from ingestion.observability.logger import get_logger, log_context
from ingestion.observability.metrics import JobMetrics, MetricsCollector
from ingestion.sources.whop import WhopClient

from .backfill import fetch_page, page_records

logger = get_logger(__name__)

JOB_TYPE = "reconciliation"


class ReconciliationJob:
    """Count memberships and payments through the resilient client.

    Usage:
        job = ReconciliationJob(client, gate, settings.backfill_limits())
        result = await job.run()
    """

    def __init__(
        self,
        client: WhopClient,
        gate: DegradationGate,
        limits: ProcessingLimits | None = None,
        metrics: MetricsCollector | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self.client = client
        self.gate = gate
        self.limits = limits or ProcessingLimits()
        self.metrics = metrics or MetricsCollector()
        self.page_size = page_size

    async def run(
        self,
        *,
        created_after: str | None = None,
        created_before: str | None = None,
    ) -> ReconciliationResult:
        """
        Run one reconciliation pass.

        Args:
            created_after: Window start (defaults to yesterday's window)
            created_before: Window end

        Returns:
            ReconciliationResult with per-collection counts and collected errors

        Raises:
            ServiceUnavailableError: If the gate rejects the run
        """
        self.gate.ensure_can_process("backfill")
        logger.info("Reconciliation started")

        result = ReconciliationResult()
        window: dict[str, Any] = {"created_after": created_after, "created_before": created_before}

        with log_context(job_type=JOB_TYPE), self.metrics.run(JOB_TYPE) as run_metrics:
            result.memberships_checked = await self._count(
                JobKind.MEMBERSHIPS, result.errors, run_metrics, **window
            )
            result.payments_checked = await self._count(
                JobKind.PAYMENTS, result.errors, run_metrics, **window
            )

        logger.info("Reconciliation completed", extra=result.to_dict())
        return result

    async def _count(
        self,
        kind: JobKind,
        errors: list[str],
        run_metrics: JobMetrics,
        created_after: str | None,
        created_before: str | None,
    ) -> int:
        checked = 0
        page = 1

        try:
            while page <= self.limits.max_pages:
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
                    break

                checked += len(records)
                run_metrics.record_page(len(records))
                page += 1

        except IngestionError as e:
            errors.append(f"{kind.value}: {e}")
            run_metrics.record_failure(error_type=type(e).__name__)
            logger.error(
                f"{kind.value.capitalize()} reconciliation failed",
                extra={"checked": checked, "page": page, "error": str(e)},
            )
            return checked

        logger.info(
            f"{kind.value.capitalize()} reconciliation completed",
            extra={"checked": checked, "pages": page - 1},
        )
        return checked
