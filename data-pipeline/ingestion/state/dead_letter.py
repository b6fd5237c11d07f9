"""Dead letter store for permanently failed work items.

Bounded, idempotent by item id, with time-based retention:
- Re-adding an id updates the existing entry in place
- At capacity the oldest 20% are evicted before inserting
- A background sweep drops entries older than the retention period
"""

from __future__ import annotations

import asyncio
import math
from collections import OrderedDict
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Protocol

from ingestion.config.constants import (
    DLQ_ALERT_THRESHOLD,
    DLQ_EVICTION_RATIO,
    DLQ_RETENTION_DAYS,
    DLQ_SWEEP_INTERVAL,
    MAX_DLQ_SIZE,
)
from ingestion.core.types import DeadLetterEntry, utc_now
from ingestion.observability.logger import get_logger

logger = get_logger(__name__)


class DeadLetterRepository(Protocol):
    """Storage interface for dead letter entries."""

    def add_failed_event(
        self,
        event_id: str,
        event_type: str,
        payload: Any,
        error: BaseException | str,
        retry_count: int = 0,
    ) -> DeadLetterEntry: ...

    @property
    def size(self) -> int: ...

    def get_failed_events(self, limit: int | None = None) -> list[DeadLetterEntry]: ...

    def remove_event(self, event_id: str) -> bool: ...


class DeadLetterStore:
    """In-memory dead letter store.

    Usage:
        dlq = DeadLetterStore(max_size=10_000)
        dlq.add_failed_event("GET /payments/pay_1", "payments", payload, error)

        for entry in dlq.get_failed_events(limit=20):
            print(entry.id, entry.error)
    """

    def __init__(
        self,
        max_size: int = MAX_DLQ_SIZE,
        retention_days: int = DLQ_RETENTION_DAYS,
        alert_threshold: int = DLQ_ALERT_THRESHOLD,
        sweep_interval: float = DLQ_SWEEP_INTERVAL,
        on_alert: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.retention_days = retention_days
        self.alert_threshold = alert_threshold
        self.sweep_interval = sweep_interval
        self.on_alert = on_alert

        # Insertion order is age order; updates keep their position
        self._entries: OrderedDict[str, DeadLetterEntry] = OrderedDict()
        self._alerted = False
        self._sweep_task: asyncio.Task[None] | None = None

    @property
    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._entries

    def add_failed_event(
        self,
        event_id: str,
        event_type: str,
        payload: Any,
        error: BaseException | str,
        retry_count: int = 0,
    ) -> DeadLetterEntry:
        """Record a failed item, or refresh it if the id is already present.

        Args:
            event_id: Stable item identity
            event_type: Item category (e.g. "payments")
            payload: Data needed to replay the item
            error: Failure (exception or message)
            retry_count: Attempts made before giving up

        Returns:
            The stored entry
        """
        message = str(error)

        existing = self._entries.get(event_id)
        if existing is not None:
            existing.error = message
            existing.retry_count = retry_count
            existing.timestamp = utc_now()
            logger.warning(
                "Updated existing failed event in DLQ",
                extra={"event_id": event_id, "retry_count": retry_count},
            )
            return existing

        if len(self._entries) >= self.max_size:
            logger.error(
                "DLQ is full, evicting oldest events",
                extra={"dlq_size": len(self._entries), "max_size": self.max_size},
            )
            self._evict_oldest()

        entry = DeadLetterEntry(
            id=event_id,
            event_type=event_type,
            payload=payload,
            error=message,
            timestamp=utc_now(),
            retry_count=retry_count,
        )
        self._entries[event_id] = entry
        logger.warning(
            "Event added to DLQ",
            extra={"event_id": event_id, "event_type": event_type, "dlq_size": len(self._entries)},
        )

        self._check_threshold()
        return entry

    def get_failed_events(self, limit: int | None = None) -> list[DeadLetterEntry]:
        """Entries newest first, optionally truncated to `limit`."""
        events = list(reversed(self._entries.values()))
        return events[:limit] if limit else events

    def get(self, event_id: str) -> DeadLetterEntry | None:
        return self._entries.get(event_id)

    def remove_event(self, event_id: str) -> bool:
        """Delete an entry; returns False if the id is unknown."""
        if self._entries.pop(event_id, None) is None:
            return False
        logger.info("Event removed from DLQ", extra={"event_id": event_id})
        self._check_threshold()
        return True

    def purge_expired(self, now: datetime | None = None) -> int:
        """Drop entries older than the retention period.

        Returns:
            Number of entries removed
        """
        cutoff = (now or utc_now()) - timedelta(days=self.retention_days)
        expired = [
            event_id for event_id, entry in self._entries.items() if entry.timestamp <= cutoff
        ]
        for event_id in expired:
            del self._entries[event_id]

        if expired:
            logger.info(
                "Cleaned up old DLQ events",
                extra={"removed": len(expired), "remaining": len(self._entries)},
            )
            self._check_threshold()
        return len(expired)

    def _evict_oldest(self) -> None:
        count = max(1, math.floor(len(self._entries) * DLQ_EVICTION_RATIO))
        for _ in range(count):
            self._entries.popitem(last=False)
        logger.warning(
            "Evicted oldest DLQ events",
            extra={"evicted": count, "remaining": len(self._entries)},
        )

    def _check_threshold(self) -> None:
        size = len(self._entries)
        if size < self.alert_threshold:
            self._alerted = False
            return
        if self._alerted:
            return

        self._alerted = True
        alert = {
            "dlq_size": size,
            "max_size": self.max_size,
            "threshold": self.alert_threshold,
        }
        logger.error("DLQ Alert: approaching limit", extra=alert)
        if self.on_alert is not None:
            self.on_alert(alert)

    # === Background sweep ===

    def start(self) -> None:
        """Start the periodic retention sweep on the running loop."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())
        logger.debug("DLQ sweep started", extra={"interval": self.sweep_interval})

    async def stop(self) -> None:
        """Cancel the retention sweep and wait for it to finish."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @property
    def sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.purge_expired()
            except Exception:
                logger.exception("Error during DLQ cleanup")

    def snapshot(self) -> dict[str, Any]:
        """Size and fill level for health output."""
        size = len(self._entries)
        return {
            "current_size": size,
            "max_size": self.max_size,
            "threshold": self.alert_threshold,
            "percentage": round(size / self.max_size * 100, 2),
        }
