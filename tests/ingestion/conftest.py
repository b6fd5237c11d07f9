"""Pytest fixtures for ingestion tests."""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add data-pipeline to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "data-pipeline"))

from ingestion.config.settings import Settings
from ingestion.resilience.registry import ResilienceRegistry
from ingestion.state.dead_letter import DeadLetterStore


@pytest.fixture
def settings() -> Settings:
    """Settings with credentials and fast, deterministic resilience knobs."""
    return Settings(
        _env_file=None,
        whop_api_key="test_key",
        whop_company_id="biz_test",
        whop_api_requests_per_second=1000.0,
        circuit_breaker_timeout=1.0,
        circuit_breaker_reset_timeout=0.05,
        max_dlq_size=10,
        dlq_alert_threshold=8,
    )


@pytest.fixture
def registry(settings) -> ResilienceRegistry:
    return ResilienceRegistry(settings)


@pytest.fixture
def dead_letters() -> DeadLetterStore:
    return DeadLetterStore(max_size=10, alert_threshold=8)


@pytest.fixture
def make_response():
    """Factory for mock aiohttp responses usable as async context managers."""

    def _make(status: int = 200, text: str = "", headers: dict | None = None) -> AsyncMock:
        mock_response = AsyncMock()
        mock_response.status = status
        mock_response.headers = headers or {}
        mock_response.text = AsyncMock(return_value=text)
        mock_response.__aenter__ = AsyncMock(return_value=mock_response)
        mock_response.__aexit__ = AsyncMock(return_value=None)
        return mock_response

    return _make


@pytest.fixture
def make_session():
    """Factory for mock aiohttp sessions returning responses in order."""

    def _make(*responses: AsyncMock) -> MagicMock:
        mock_session = MagicMock()
        mock_session.request = MagicMock(side_effect=list(responses))
        mock_session.closed = False
        mock_session.close = AsyncMock()
        return mock_session

    return _make
