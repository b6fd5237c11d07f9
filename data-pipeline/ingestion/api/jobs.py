"""Job control API routes."""

from fastapi import APIRouter, Depends

from ingestion.api.deps import get_container
from ingestion.api.models import BackfillResponse, ReconciliationResponse
from ingestion.container import Container
from ingestion.core.types import JobKind
from ingestion.observability.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/jobs/whop", tags=["jobs"])


@router.post("/backfill/{kind}", response_model=BackfillResponse)
async def run_backfill(
    kind: JobKind,
    created_after: str | None = None,
    created_before: str | None = None,
    container: Container = Depends(get_container),
):
    """Run a backfill for memberships or payments.

    Progress is checkpointed per page; a rejected or interrupted run resumes
    its count on the next call.
    """
    result = await container.backfill.run(
        kind,
        created_after=created_after,
        created_before=created_before,
    )
    return BackfillResponse(**result.to_dict())


@router.post("/reconciliation", response_model=ReconciliationResponse)
async def run_reconciliation(
    created_after: str | None = None,
    created_before: str | None = None,
    container: Container = Depends(get_container),
):
    """Count memberships and payments; per-collection failures land in `errors`."""
    logger.info("Manual reconciliation triggered via API")
    result = await container.reconciliation.run(
        created_after=created_after,
        created_before=created_before,
    )
    return ReconciliationResponse(message="Reconciliation completed", result=result.to_dict())
