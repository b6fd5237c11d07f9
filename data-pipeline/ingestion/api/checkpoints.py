"""Checkpoint API routes."""

from fastapi import APIRouter, Depends, HTTPException

from ingestion.api.deps import get_container
from ingestion.api.models import CheckpointItem, CheckpointListResponse, RemoveResponse
from ingestion.container import Container

router = APIRouter(prefix="/checkpoints", tags=["checkpoints"])


@router.get("", response_model=CheckpointListResponse)
async def list_checkpoints(container: Container = Depends(get_container)):
    """List saved job checkpoints."""
    items = [CheckpointItem(**c.to_dict()) for c in container.checkpoints.all()]
    return CheckpointListResponse(items=items)


@router.delete("/{job_type}", response_model=RemoveResponse)
async def clear_checkpoint(
    job_type: str,
    container: Container = Depends(get_container),
):
    """Discard a checkpoint so the next run starts from zero."""
    if container.checkpoints.load(job_type) is None:
        raise HTTPException(status_code=404, detail="Checkpoint not found")
    container.checkpoints.clear(job_type)
    return RemoveResponse(success=True, message="Checkpoint cleared")
