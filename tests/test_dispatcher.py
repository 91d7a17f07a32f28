"""Tests for the dispatcher state machine."""

import asyncio

import pytest

from quotagate.errors import (
    ConfigurationError,
    NetworkError,
    UpstreamError,
    UpstreamRateLimited,
)
from quotagate.gateway import RequestGateway
from quotagate.queue.registry import RequestState


@pytest.fixture
def throttled_gateway(upstream, clock) -> RequestGateway:
    """Gateway allowing one call per minute with fast, bounded backoff."""
    return RequestGateway(
        client=upstream,
        quota=1,
        window_seconds=60.0,
        max_rate_limit_retries=2,
        backoff_base_seconds=1.0,
        backoff_max_seconds=30.0,
        clock=clock,
    )


class TestDispatcherWake:
    """Tests for budget-bounded draining."""

    @pytest.mark.asyncio
    async def test_wake_drains_up_to_budget(self, gateway, upstream) -> None:
        """Test one wake dispatches at most the available budget."""
        handles = [gateway.registry.enqueue(f"/key/{i}") for i in range(7)]

        dispatched = await gateway.dispatcher.wake()
        await gateway.dispatcher.join()

        assert dispatched == 5
        assert upstream.keys == [f"/key/{i}" for i in range(5)]
        assert gateway.registry.queued_count == 2
        assert all(h.future.done() for h in handles[:5])

    @pytest.mark.asyncio
    async def test_wake_without_budget_is_noop(self, gateway, upstream) -> None:
        """Test an exhausted window dispatches nothing."""
        for _ in range(5):
            gateway.governor.record_dispatch(0.0)
        gateway.registry.enqueue("/key")

        assert await gateway.dispatcher.wake() == 0
        assert upstream.calls == []

    @pytest.mark.asyncio
    async def test_budget_charged_at_dispatch(self, gateway, upstream, settle) -> None:
        """Test in-flight calls already count against the window."""
        upstream.gate = asyncio.Event()
        gateway.registry.enqueue("/a")
        gateway.registry.enqueue("/b")

        await gateway.dispatcher.wake()
        await settle()

        assert gateway.governor.available_budget() == 3
        assert gateway.registry.inflight_count == 2
        assert gateway.registry.get("/a").state is RequestState.DISPATCHED

        upstream.gate.set()
        await gateway.dispatcher.join()
        assert gateway.governor.available_budget() == 3
        assert len(gateway.registry) == 0

    @pytest.mark.asyncio
    async def test_priority_wins_single_slot(self, throttled_gateway, upstream) -> None:
        """Test the higher-priority request takes the only slot."""
        throttled_gateway.registry.enqueue("B", priority=1)
        throttled_gateway.registry.enqueue("A", priority=5)

        await throttled_gateway.dispatcher.wake()
        await throttled_gateway.dispatcher.join()

        assert upstream.keys == ["A"]
        assert "B" in throttled_gateway.registry

    @pytest.mark.asyncio
    async def test_success_writes_cache_with_ttl_override(self, gateway, clock) -> None:
        """Test resolved payloads are cached with the request's TTL."""
        gateway.registry.enqueue("/short", ttl_seconds=30)

        await gateway.dispatcher.wake()
        await gateway.dispatcher.join()

        entry = await gateway.cache.lookup("/short")
        assert entry is not None
        assert entry.ttl_seconds == 30

        clock.advance(30)
        assert await gateway.cache.lookup("/short") is None


class TestDispatcherFailures:
    """Tests for failure handling and isolation."""

    @pytest.mark.asyncio
    async def test_failure_not_cached_and_isolated(self, gateway, upstream) -> None:
        """Test one failing key neither poisons the cache nor affects others."""
        upstream.responses["/bad"] = NetworkError("connection reset")
        bad = gateway.registry.enqueue("/bad")
        good = gateway.registry.enqueue("/good")

        await gateway.dispatcher.wake()
        await gateway.dispatcher.join()

        with pytest.raises(NetworkError):
            await bad.wait()
        assert await good.wait() == {"key": "/good", "call": 2}
        assert await gateway.cache.lookup("/bad") is None
        assert gateway.dispatcher.stats()["failed"] == 1
        assert gateway.dispatcher.stats()["resolved"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_exception_wrapped(self, gateway, upstream) -> None:
        """Test unexpected client exceptions become UpstreamError."""
        upstream.responses["/boom"] = RuntimeError("parser exploded")
        handle = gateway.registry.enqueue("/boom")

        await gateway.dispatcher.wake()
        await gateway.dispatcher.join()

        with pytest.raises(UpstreamError) as exc_info:
            await handle.wait()
        assert "parser exploded" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_rate_limited_requeued_with_backoff(
        self, gateway, upstream, clock
    ) -> None:
        """Test throttled requests return to the queue and retry after backoff."""
        upstream.responses["/quote"] = [UpstreamRateLimited(), {"c": 1.5}]
        handle = gateway.registry.enqueue("/quote", priority=4)

        await gateway.dispatcher.wake()
        await gateway.dispatcher.join()

        request = gateway.registry.get("/quote")
        assert request.state is RequestState.QUEUED
        assert request.priority == 4
        assert request.not_before == 1.0
        assert not handle.future.done()

        assert await gateway.dispatcher.wake() == 0

        clock.advance(1)
        assert await gateway.dispatcher.wake() == 1
        await gateway.dispatcher.join()

        assert await handle.wait() == {"c": 1.5}
        assert len(upstream.calls) == 2
        assert gateway.governor.available_budget() == 3

    @pytest.mark.asyncio
    async def test_rate_limited_retries_exhausted(
        self, throttled_gateway, upstream, clock
    ) -> None:
        """Test throttling surfaces once the retry allowance is used up."""
        upstream.responses["/quote"] = [UpstreamRateLimited() for _ in range(3)]
        handle = throttled_gateway.registry.enqueue("/quote")

        for _ in range(3):
            await throttled_gateway.dispatcher.wake()
            await throttled_gateway.dispatcher.join()
            clock.advance(60)

        with pytest.raises(UpstreamRateLimited):
            await handle.wait()
        assert len(upstream.calls) == 3
        assert "/quote" not in throttled_gateway.registry

    @pytest.mark.asyncio
    async def test_configuration_error_halts(
        self, throttled_gateway, upstream, clock
    ) -> None:
        """Test a credential failure halts dispatching and fails queued requests."""
        upstream.responses["/first"] = ConfigurationError("Invalid API key")
        first = throttled_gateway.registry.enqueue("/first", priority=2)
        second = throttled_gateway.registry.enqueue("/second", priority=1)

        await throttled_gateway.dispatcher.wake()
        await throttled_gateway.dispatcher.join()

        for handle in (first, second):
            with pytest.raises(ConfigurationError):
                await handle.wait()
        assert throttled_gateway.dispatcher.halted is True
        with pytest.raises(ConfigurationError):
            throttled_gateway.dispatcher.raise_if_halted()

        throttled_gateway.registry.enqueue("/third")
        clock.advance(60)
        assert await throttled_gateway.dispatcher.wake() == 0

        throttled_gateway.dispatcher.resume()
        assert await throttled_gateway.dispatcher.wake() == 1
        await throttled_gateway.dispatcher.join()
        assert upstream.keys == ["/first", "/third"]


    @pytest.mark.asyncio
    async def test_throttled_after_halt_fails_with_configuration_error(
        self, gateway, upstream
    ) -> None:
        """Test a 429 landing after a credential failure is not re-queued."""
        upstream.gate = asyncio.Event()
        upstream.responses["/b"] = ConfigurationError("Invalid API key")
        upstream.responses["/a"] = UpstreamRateLimited()
        rejected = gateway.registry.enqueue("/b", priority=2)
        throttled = gateway.registry.enqueue("/a", priority=1)

        assert await gateway.dispatcher.wake() == 2
        upstream.gate.set()
        await gateway.dispatcher.join()

        assert gateway.dispatcher.halted is True
        for handle in (rejected, throttled):
            with pytest.raises(ConfigurationError):
                await handle.wait()
        assert gateway.registry.snapshot() == []
        assert gateway.dispatcher.stats()["requeued"] == 0


class TestBackoff:
    """Tests for the re-queue delay schedule."""

    def test_exponential_growth_capped(self, throttled_gateway) -> None:
        """Test delays double per attempt up to the cap."""
        dispatcher = throttled_gateway.dispatcher
        assert [dispatcher.backoff_delay(n) for n in range(1, 7)] == [1, 2, 4, 8, 16, 30]

    def test_retry_after_respected(self, throttled_gateway) -> None:
        """Test the provider's Retry-After wins when longer."""
        dispatcher = throttled_gateway.dispatcher
        assert dispatcher.backoff_delay(1, retry_after=12.0) == 12.0
        assert dispatcher.backoff_delay(3, retry_after=0.5) == 4.0
