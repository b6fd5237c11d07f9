"""Dead letter API routes."""

from fastapi import APIRouter, Depends, HTTPException, Query

from ingestion.api.deps import get_container
from ingestion.api.models import DeadLetterItem, DeadLetterListResponse, RemoveResponse
from ingestion.container import Container

router = APIRouter(prefix="/dlq", tags=["dlq"])


@router.get("", response_model=DeadLetterListResponse)
async def list_dead_letters(
    limit: int | None = Query(None, ge=1, le=1000),
    container: Container = Depends(get_container),
):
    """List dead letters, newest first."""
    store = container.dead_letters
    items = [DeadLetterItem(**entry.to_dict()) for entry in store.get_failed_events(limit)]
    return DeadLetterListResponse(total=store.size, items=items)


@router.delete("/{event_id:path}", response_model=RemoveResponse)
async def remove_dead_letter(
    event_id: str,
    container: Container = Depends(get_container),
):
    """Remove a dead letter once it has been handled."""
    if not container.dead_letters.remove_event(event_id):
        raise HTTPException(status_code=404, detail="Event not found in DLQ")
    return RemoveResponse(success=True, message="Removed from DLQ")
