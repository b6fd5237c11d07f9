"""Error hierarchy for the ingestion layer.

All ingestion errors inherit from IngestionError.
`is_retryable` tells the retry layer whether another attempt can help.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class IngestionError(Exception):
    """Base error for all ingestion errors.

    Attributes:
        message: Human-readable description
        dependency: Upstream dependency name (if applicable)
        attempt: Attempt number the error was raised on (0-based)
        elapsed: Seconds spent on the failing call
    """

    def __init__(
        self,
        message: str,
        *,
        dependency: str | None = None,
        attempt: int | None = None,
        elapsed: float | None = None,
    ) -> None:
        self.dependency = dependency
        self.attempt = attempt
        self.elapsed = elapsed
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """True if a later attempt may succeed."""
        return False

    def label(
        self,
        *,
        dependency: str | None = None,
        attempt: int | None = None,
        elapsed: float | None = None,
    ) -> IngestionError:
        """Attach call context without overwriting what is already set."""
        if dependency is not None and self.dependency is None:
            self.dependency = dependency
        if attempt is not None:
            self.attempt = attempt
        if elapsed is not None and self.elapsed is None:
            self.elapsed = elapsed
        return self

    def to_dict(self) -> dict[str, Any]:
        """Fields for structured log output and API error bodies."""
        return {
            "error_type": self.__class__.__name__,
            "message": str(self),
            "dependency": self.dependency,
            "attempt": self.attempt,
            "elapsed": round(self.elapsed, 3) if self.elapsed is not None else None,
            "is_retryable": self.is_retryable,
        }


class TimeoutError(IngestionError):
    """Upstream call exceeded its deadline.

    Retryable; a slow upstream may answer in time on the next attempt.
    """

    def __init__(
        self,
        message: str = "Request timed out",
        *,
        timeout_seconds: float | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.timeout_seconds = timeout_seconds

    @property
    def is_retryable(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["timeout_seconds"] = self.timeout_seconds
        return d


class RateLimitError(IngestionError):
    """Rate limit exceeded (HTTP 429).

    This is retryable after waiting for `retry_after`. The raw hint is kept
    as received (seconds or HTTP date); parsing happens in the retry layer.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: str | float | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after

    @property
    def is_retryable(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["retry_after"] = self.retry_after
        return d


class CircuitOpenError(IngestionError):
    """Call rejected by an open (or busy half-open) circuit breaker.

    Not retryable before `reset_at`; `retry_after` holds the remaining seconds.
    """

    def __init__(
        self,
        message: str = "Circuit breaker is open",
        *,
        reset_at: datetime | None = None,
        retry_after: float | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.reset_at = reset_at
        self.retry_after = retry_after

    @property
    def is_retryable(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["reset_at"] = self.reset_at.isoformat() if self.reset_at else None
        d["retry_after"] = self.retry_after
        return d


class NetworkError(IngestionError):
    """Transport failure before an HTTP status was received.

    Retryable; connection resets and DNS hiccups are usually transient.
    """

    def __init__(
        self,
        message: str = "Network error",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)

    @property
    def is_retryable(self) -> bool:
        return True


class UpstreamHTTPError(IngestionError):
    """Upstream answered with an error status other than 404/429."""

    def __init__(
        self,
        message: str = "Upstream request failed",
        *,
        status_code: int = 500,
        body: Any = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.body = body

    @property
    def is_retryable(self) -> bool:
        return self.status_code >= 500

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["status_code"] = self.status_code
        return d


class DataNotFoundError(IngestionError):
    """Requested resource does not exist upstream.

    Not retryable; repeating the request returns the same 404.
    """

    def __init__(
        self,
        message: str = "Data not found",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)


class MethodNotAllowedError(IngestionError):
    """Only read operations may be sent upstream."""

    def __init__(
        self,
        message: str = "Only GET requests are allowed",
        *,
        method: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.method = method

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["method"] = self.method
        return d


class ServiceUnavailableError(IngestionError):
    """Work rejected by the degradation gate before touching the network."""

    def __init__(
        self,
        message: str = "Service unavailable",
        *,
        retry_after: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["retry_after"] = self.retry_after
        return d

