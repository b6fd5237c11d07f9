"""FastAPI application factory."""

from __future__ import annotations

import math
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ingestion import __version__
from ingestion.api import checkpoints, dlq, jobs
from ingestion.api.models import HealthResponse
from ingestion.container import Container, build_container
from ingestion.core.errors import (
    CircuitOpenError,
    DataNotFoundError,
    IngestionError,
    RateLimitError,
    ServiceUnavailableError,
    TimeoutError,
)
from ingestion.observability.logger import get_logger
from ingestion.resilience.backoff import parse_retry_after

logger = get_logger(__name__)


def _retry_after_headers(retry_after: float | None) -> dict[str, str]:
    if not retry_after:
        return {}
    return {"Retry-After": str(math.ceil(retry_after))}


async def _service_unavailable_handler(request: Request, exc: ServiceUnavailableError):
    detail = str(exc)
    if exc.retry_after:
        detail = f"{detail}. Retry after {exc.retry_after} seconds"
    return JSONResponse(
        status_code=503,
        content={"detail": detail, "retry_after": exc.retry_after},
        headers=_retry_after_headers(exc.retry_after),
    )


async def _circuit_open_handler(request: Request, exc: CircuitOpenError):
    return JSONResponse(
        status_code=503,
        content={"detail": str(exc), "retry_after": exc.retry_after},
        headers=_retry_after_headers(exc.retry_after),
    )


async def _rate_limit_handler(request: Request, exc: RateLimitError):
    retry_after = parse_retry_after(exc.retry_after, str(exc))
    return JSONResponse(
        status_code=429,
        content={"detail": str(exc), "retry_after": retry_after},
        headers=_retry_after_headers(retry_after),
    )


async def _timeout_handler(request: Request, exc: TimeoutError):
    return JSONResponse(status_code=504, content={"detail": str(exc), **_error_info(exc)})


async def _ingestion_error_handler(request: Request, exc: IngestionError):
    status_code = 404 if isinstance(exc, DataNotFoundError) else 502
    return JSONResponse(status_code=status_code, content={"detail": str(exc), **_error_info(exc)})


def _error_info(exc: IngestionError) -> dict[str, object]:
    info = exc.to_dict()
    return {"error_type": info["error_type"], "dependency": info["dependency"]}


def create_app(container: Container | None = None) -> FastAPI:
    """Build the API around a container (built from settings if omitted)."""
    container = container or build_container()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        # Startup
        logger.info("Starting ingestion API...")
        await container.start()

        yield

        # Shutdown
        logger.info("Shutting down ingestion API...")
        await container.aclose()

    app = FastAPI(
        title="Whop Ingestion",
        description="Resilient ingestion of Whop memberships and payments",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_exception_handler(ServiceUnavailableError, _service_unavailable_handler)
    app.add_exception_handler(CircuitOpenError, _circuit_open_handler)
    app.add_exception_handler(RateLimitError, _rate_limit_handler)
    app.add_exception_handler(TimeoutError, _timeout_handler)
    app.add_exception_handler(IngestionError, _ingestion_error_handler)

    # Routers
    app.include_router(jobs.router)
    app.include_router(dlq.router)
    app.include_router(checkpoints.router)

    @app.get("/health", response_model=HealthResponse)
    async def health():
        """Health check endpoint."""
        report = await container.health.check_all()
        status_code = 200 if report["status"] == "ok" else 503
        return JSONResponse(status_code=status_code, content=report)

    return app
