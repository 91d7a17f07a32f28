"""Error taxonomy surfaced to gateway callers."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Machine-readable failure categories."""

    CONFIGURATION_ERROR = "configuration_error"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    UPSTREAM_RATE_LIMITED = "upstream_rate_limited"
    UPSTREAM_ERROR = "upstream_error"
    SERVICE_STOPPED = "service_stopped"


class GatewayError(Exception):
    """Base class for every error delivered to a waiter."""

    kind: ErrorKind = ErrorKind.UPSTREAM_ERROR
    retryable: bool = False

    def __init__(self, message: str, key: str | None = None) -> None:
        self.message = message
        self.key = key
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind.value, "message": self.message}


class ConfigurationError(GatewayError):
    """Missing or rejected credentials. Fatal until corrected."""

    kind = ErrorKind.CONFIGURATION_ERROR


class CapacityExceeded(GatewayError):
    """The queue is full; the request was not accepted."""

    kind = ErrorKind.CAPACITY_EXCEEDED
    retryable = True

    def __init__(self, capacity: int, key: str | None = None) -> None:
        self.capacity = capacity
        super().__init__(f"Queue capacity of {capacity} pending requests exceeded", key)


class NetworkError(GatewayError):
    """Transport-level failure talking to the provider."""

    kind = ErrorKind.NETWORK_ERROR
    retryable = True


class UpstreamTimeout(GatewayError):
    """The provider did not answer within the call timeout."""

    kind = ErrorKind.TIMEOUT
    retryable = True


class UpstreamRateLimited(GatewayError):
    """The provider throttled the call (HTTP 429)."""

    kind = ErrorKind.UPSTREAM_RATE_LIMITED
    retryable = True

    def __init__(
        self,
        message: str = "Rate limited by upstream provider",
        retry_after: float | None = None,
        key: str | None = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(message, key)


class UpstreamError(GatewayError):
    """Non-success provider response, carrying the provider's detail."""

    kind = ErrorKind.UPSTREAM_ERROR

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        key: str | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, key)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data


class ServiceStopped(GatewayError):
    """The gateway was stopped before the request could be dispatched."""

    kind = ErrorKind.SERVICE_STOPPED
