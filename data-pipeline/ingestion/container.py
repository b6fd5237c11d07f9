"""Application container.

Builds the shared resilience registry, stores, gate, client and jobs once and
hands the same instances to the API and the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass

import aiohttp

from ingestion.config.settings import Settings, get_settings
from ingestion.degradation import DegradationGate
from ingestion.health import HealthService
from ingestion.jobs.backfill import BackfillJob
from ingestion.jobs.reconciliation import ReconciliationJob
from ingestion.observability.logger import get_logger, setup_logging
from ingestion.observability.metrics import MetricsCollector
from ingestion.resilience.registry import ResilienceRegistry
from ingestion.sources.whop import WhopClient
from ingestion.state.checkpoint import CheckpointStore
from ingestion.state.dead_letter import DeadLetterStore

logger = get_logger(__name__)


@dataclass
class Container:
    """Process-wide services."""

    settings: Settings
    metrics: MetricsCollector
    registry: ResilienceRegistry
    checkpoints: CheckpointStore
    dead_letters: DeadLetterStore
    gate: DegradationGate
    client: WhopClient
    backfill: BackfillJob
    reconciliation: ReconciliationJob
    health: HealthService

    async def start(self) -> None:
        """Start background work (DLQ retention sweep)."""
        self.dead_letters.start()
        logger.info("Ingestion services started")

    async def aclose(self) -> None:
        """Stop background work and release the HTTP session."""
        await self.dead_letters.stop()
        await self.client.close()
        logger.info("Ingestion services stopped")


def build_container(
    settings: Settings | None = None,
    session: aiohttp.ClientSession | None = None,
    configure_logging: bool = True,
) -> Container:
    """Wire all services from settings.

    Args:
        settings: Settings to use (defaults to get_settings())
        session: Optional aiohttp session for the Whop client
        configure_logging: Apply LOG_LEVEL and LOG_JSON to the ingestion logger

    Returns:
        Container with shared instances
    """
    settings = settings or get_settings()
    if configure_logging:
        setup_logging(settings.log_level, settings.log_json, force=True)

    metrics = MetricsCollector()
    registry = ResilienceRegistry(settings)
    registry.add_listener(metrics.on_breaker_event)

    checkpoints = CheckpointStore()
    dead_letters = DeadLetterStore(
        max_size=settings.max_dlq_size,
        retention_days=settings.dlq_retention_days,
        alert_threshold=settings.dlq_alert_threshold,
    )
    gate = DegradationGate(registry, dead_letters)

    client = WhopClient(
        settings,
        registry,
        dead_letters=dead_letters,
        on_rate_limit=metrics.record_rate_limit,
        session=session,
    )
    backfill = BackfillJob(
        client,
        checkpoints,
        gate,
        limits=settings.backfill_limits(),
        metrics=metrics,
    )
    reconciliation = ReconciliationJob(
        client,
        gate,
        limits=settings.backfill_limits(),
        metrics=metrics,
    )
    health = HealthService(registry, dead_letters, gate)

    return Container(
        settings=settings,
        metrics=metrics,
        registry=registry,
        checkpoints=checkpoints,
        dead_letters=dead_letters,
        gate=gate,
        client=client,
        backfill=backfill,
        reconciliation=reconciliation,
        health=health,
    )
