"""Tests for request/result models and the error taxonomy."""

from quotagate.errors import (
    CapacityExceeded,
    ConfigurationError,
    ErrorKind,
    NetworkError,
    ServiceStopped,
    UpstreamRateLimited,
)
from quotagate.models import FetchRequest, FetchResult


class TestFetchRequest:
    """Tests for FetchRequest."""

    def test_defaults(self) -> None:
        """Test a bare key gets default priority and no overrides."""
        request = FetchRequest(key="/v2/aggs/ticker/AAPL/prev")

        assert request.priority == 1
        assert request.ttl_override is None
        assert request.force_refresh is False
        assert request.timeout is None

    def test_from_dict(self) -> None:
        """Test construction from a plain mapping."""
        request = FetchRequest.from_dict(
            {"key": "/token/ohlcv?unit=abc", "priority": 4, "force_refresh": True}
        )

        assert request.key == "/token/ohlcv?unit=abc"
        assert request.priority == 4
        assert request.force_refresh is True


class TestFetchResult:
    """Tests for FetchResult."""

    def test_success(self) -> None:
        result = FetchResult.success("/quote", {"c": 1.0})

        assert result.ok is True
        assert result.to_dict() == {"payload": {"c": 1.0}}

    def test_failure(self) -> None:
        result = FetchResult.failure("/quote", NetworkError("connection reset"))

        assert result.ok is False
        assert result.error is ErrorKind.NETWORK_ERROR
        assert result.to_dict() == {"error": "network_error", "message": "connection reset"}


class TestErrors:
    """Tests for the error taxonomy."""

    def test_kinds_and_retryability(self) -> None:
        """Test each error carries its kind and retry hint."""
        assert ConfigurationError("no key").kind is ErrorKind.CONFIGURATION_ERROR
        assert ConfigurationError("no key").retryable is False
        assert CapacityExceeded(10).retryable is True
        assert ServiceStopped("stopped").kind is ErrorKind.SERVICE_STOPPED

    def test_capacity_message(self) -> None:
        error = CapacityExceeded(1000, key="/quote")

        assert error.capacity == 1000
        assert error.key == "/quote"
        assert "1000" in error.message

    def test_rate_limited_defaults(self) -> None:
        error = UpstreamRateLimited(retry_after=5.0)

        assert error.retry_after == 5.0
        assert error.to_dict() == {
            "error": "upstream_rate_limited",
            "message": "Rate limited by upstream provider",
        }
