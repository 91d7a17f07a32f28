"""Pytest configuration and fixtures."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from quotagate.errors import ConfigurationError
from quotagate.gateway import RequestGateway


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """
    Stand-in for UpstreamClient recording every fetch.

    ``responses`` maps a key to a payload, an exception to raise, or a list
    of those consumed one per call. Unlisted keys return a payload naming
    the key and call number. Setting ``gate`` holds every fetch until the
    event is set.
    """

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.calls: list[tuple[str, float]] = []
        self.responses: dict[str, Any] = {}
        self.gate: asyncio.Event | None = None
        self.api_key: str | None = "test-key"
        self.closed = False

    @property
    def keys(self) -> list[str]:
        return [key for key, _ in self.calls]

    def validate_configuration(self) -> None:
        if not self.api_key:
            raise ConfigurationError("Upstream API key is not configured")

    def update_credentials(self, api_key: str) -> None:
        self.api_key = api_key

    async def fetch(self, key: str) -> Any:
        self.calls.append((key, self.clock()))
        if self.gate is not None:
            await self.gate.wait()

        outcome = self.responses.get(key)
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if outcome else None
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is None:
            return {"key": key, "call": len(self.calls)}
        return outcome

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting at t=0."""
    return FakeClock()


@pytest.fixture
def upstream(clock: FakeClock) -> FakeUpstream:
    """Recording upstream stand-in."""
    return FakeUpstream(clock)


@pytest.fixture
def gateway(upstream: FakeUpstream, clock: FakeClock) -> RequestGateway:
    """Gateway with the provider's free-tier limits: 5 calls/min, 15 min TTL."""
    return RequestGateway(
        client=upstream,  # type: ignore[arg-type]
        quota=5,
        window_seconds=60.0,
        default_ttl_seconds=900.0,
        queue_capacity=100,
        clock=clock,
    )


@pytest.fixture
def settle() -> Callable[[], Awaitable[None]]:
    """Let every ready task run until it blocks."""

    async def _settle() -> None:
        for _ in range(10):
            await asyncio.sleep(0)

    return _settle
