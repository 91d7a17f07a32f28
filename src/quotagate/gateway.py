"""
Request gateway: the caller-facing entry point.

One explicitly constructed gateway owns the cache, pending registry, rate
governor, dispatcher and timers. Adapters receive it by reference and ask
for keys; the gateway answers from cache or queues the request and waits.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from quotagate.cache.base import CacheStore
from quotagate.cache.memory import InMemoryCache
from quotagate.config import Settings, get_settings
from quotagate.dispatcher import Dispatcher
from quotagate.errors import ConfigurationError, GatewayError, ServiceStopped, UpstreamTimeout
from quotagate.http.client import UpstreamClient
from quotagate.models import FetchRequest, FetchResult
from quotagate.queue.registry import PendingRegistry
from quotagate.quota.governor import RateGovernor
from quotagate.scheduler.service import SchedulerService

logger = logging.getLogger(__name__)

TICK_JOB_ID = "dispatcher_tick"
SWEEP_JOB_ID = "cache_sweep"


class RequestGateway:
    """
    Rate-limited, caching, coalescing front for an upstream provider.

    Lifecycle:
        gateway = RequestGateway.from_settings(settings)
        await gateway.start()
        payload = await gateway.get("/v2/aggs/ticker/AAPL/prev", priority=2)
        await gateway.stop()
    """

    def __init__(
        self,
        client: UpstreamClient,
        quota: int = 5,
        window_seconds: float = 60.0,
        default_ttl_seconds: float = 900.0,
        queue_capacity: int = 1000,
        max_rate_limit_retries: int = 3,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 60.0,
        tick_interval_seconds: float = 1.0,
        sweep_interval_seconds: float = 60.0,
        cache: CacheStore | None = None,
        cache_max_size: int | None = None,
        scheduler: SchedulerService | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the gateway.

        Args:
            client: Upstream client used for every dispatch
            quota: Maximum upstream calls per window
            window_seconds: Rolling window duration
            default_ttl_seconds: Cache TTL when a request has no override
            queue_capacity: Maximum queued (not yet dispatched) requests
            max_rate_limit_retries: Re-queues allowed after upstream throttling
            backoff_base_seconds: First re-queue delay after throttling
            backoff_max_seconds: Upper bound on re-queue delay
            tick_interval_seconds: Recurring dispatcher wake interval
            sweep_interval_seconds: Recurring expired-entry sweep interval
            cache: Cache store (in-memory if None)
            cache_max_size: Entry limit for the default in-memory cache
            scheduler: Timer service (created if None)
            clock: Monotonic time source in seconds
        """
        self._client = client
        self._clock = clock
        self._tick_interval = tick_interval_seconds
        self._sweep_interval = sweep_interval_seconds
        self._lock = asyncio.Lock()

        self._cache = cache or InMemoryCache(
            default_ttl_seconds=default_ttl_seconds,
            max_size=cache_max_size,
            clock=clock,
        )
        self._registry = PendingRegistry(capacity=queue_capacity, clock=clock)
        self._governor = RateGovernor(quota=quota, window_seconds=window_seconds, clock=clock)
        self._dispatcher = Dispatcher(
            cache=self._cache,
            registry=self._registry,
            governor=self._governor,
            client=client,
            default_ttl_seconds=default_ttl_seconds,
            max_rate_limit_retries=max_rate_limit_retries,
            backoff_base_seconds=backoff_base_seconds,
            backoff_max_seconds=backoff_max_seconds,
            clock=clock,
            lock=self._lock,
        )
        self._scheduler = scheduler or SchedulerService()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._running = False
        self._stopped = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        client: UpstreamClient | None = None,
        **kwargs: Any,
    ) -> RequestGateway:
        """
        Build a gateway and its upstream client from configuration.

        Args:
            settings: Settings to use (defaults to environment settings)
            client: Pre-built upstream client (built from settings if None)
            **kwargs: Extra constructor arguments (e.g. ``clock``)
        """
        settings = settings or get_settings()
        if client is None:
            client = UpstreamClient(
                base_url=settings.upstream_base_url,
                url_template=settings.upstream_url_template,
                method=settings.upstream_method,
                api_key=settings.upstream_api_key,
                auth_header=settings.upstream_auth_header,
                auth_scheme=settings.upstream_auth_scheme,
                auth_query_param=settings.upstream_auth_query_param,
                timeout_seconds=settings.call_timeout_seconds,
            )

        return cls(
            client=client,
            quota=settings.quota,
            window_seconds=settings.window_seconds,
            default_ttl_seconds=settings.default_ttl_seconds,
            queue_capacity=settings.queue_capacity,
            max_rate_limit_retries=settings.max_rate_limit_retries,
            backoff_base_seconds=settings.backoff_base_seconds,
            backoff_max_seconds=settings.backoff_max_seconds,
            tick_interval_seconds=settings.tick_interval_seconds,
            sweep_interval_seconds=settings.sweep_interval_seconds,
            cache_max_size=settings.cache_max_size,
            **kwargs,
        )

    @property
    def cache(self) -> CacheStore:
        return self._cache

    @property
    def registry(self) -> PendingRegistry:
        return self._registry

    @property
    def governor(self) -> RateGovernor:
        return self._governor

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """
        Validate configuration and start the recurring timers.

        Raises:
            ConfigurationError: The upstream client cannot authenticate
        """
        if self._running:
            logger.warning("Gateway is already running")
            return

        try:
            self._client.validate_configuration()
        except ConfigurationError as e:
            logger.error(f"Refusing to start gateway: {e.message}")
            raise

        self._loop = asyncio.get_running_loop()
        self._scheduler.add_job(TICK_JOB_ID, self._dispatcher.wake, self._tick_interval)
        self._scheduler.add_job(SWEEP_JOB_ID, self._cache.sweep, self._sweep_interval)
        self._dispatcher.reopen()
        self._scheduler.start()
        self._running = True
        self._stopped = False

        logger.info(
            f"Gateway started: {self._governor.quota} calls per "
            f"{self._governor.window_seconds:g}s, queue capacity {self._registry.capacity}"
        )

    async def stop(self) -> None:
        """
        Stop timers, fail queued requests and wait for in-flight calls.

        In-flight dispatches run to completion and populate the cache.
        """
        self._scheduler.shutdown()
        self._stopped = True

        async with self._lock:
            failed = self._dispatcher.close(ServiceStopped("Gateway stopped"))
        if failed:
            logger.info(f"Failed {failed} queued request(s) on shutdown")

        await self._dispatcher.join()
        await self._client.close()
        self._running = False
        self._loop = None
        logger.info("Gateway stopped")

    async def get(
        self,
        key: str,
        priority: int = 1,
        ttl: float | None = None,
        force_refresh: bool = False,
        timeout: float | None = None,
    ) -> Any:
        """
        Get the payload for a key.

        Cache hits return without waiting. Misses join or create the
        pending request for the key and wait for it to resolve.

        Args:
            key: Opaque request key
            priority: Higher = dispatched sooner
            ttl: Cache TTL override for this key
            force_refresh: Skip the cache lookup
            timeout: Seconds to wait before withdrawing (None = wait)

        Raises:
            GatewayError: Typed failure for this key
            asyncio.TimeoutError: ``timeout`` elapsed before resolution
        """
        if self._stopped:
            raise ServiceStopped("Gateway stopped", key=key)
        self._dispatcher.raise_if_halted()

        if not force_refresh:
            entry = await self._cache.lookup(key)
            if entry is not None:
                logger.debug(f"Cache hit for {key}")
                return entry.value

        async with self._lock:
            if not force_refresh:
                # A dispatch may have resolved the key while we waited for the lock
                entry = await self._cache.lookup(key)
                if entry is not None:
                    return entry.value

            handle = self._registry.enqueue(key, priority, ttl_seconds=ttl)

        if handle.created:
            await self._dispatcher.wake()

        return await handle.wait(timeout)

    async def submit(self, request: FetchRequest) -> FetchResult:
        """
        Serve a logical request, reporting failures in the result.

        Returns:
            FetchResult with either the payload or the error kind and message
        """
        try:
            payload = await self.get(
                request.key,
                priority=request.priority,
                ttl=request.ttl_override,
                force_refresh=request.force_refresh,
                timeout=request.timeout,
            )
        except GatewayError as e:
            return FetchResult.failure(request.key, e)
        except asyncio.TimeoutError:
            error = UpstreamTimeout(
                f"Timed out after {request.timeout}s waiting for {request.key}",
                key=request.key,
            )
            return FetchResult.failure(request.key, error)
        return FetchResult.success(request.key, payload)

    def get_threadsafe(
        self,
        key: str,
        priority: int = 1,
        ttl: float | None = None,
        force_refresh: bool = False,
        timeout: float | None = None,
    ) -> Any:
        """
        Blocking ``get`` for callers on threads other than the gateway loop.

        Raises:
            ServiceStopped: The gateway is not running
        """
        if self._loop is None or not self._running:
            raise ServiceStopped("Gateway is not running", key=key)

        future = asyncio.run_coroutine_threadsafe(
            self.get(key, priority, ttl, force_refresh, timeout),
            self._loop,
        )
        return future.result()

    async def update_credentials(self, api_key: str) -> None:
        """Replace the upstream credential and resume a halted dispatcher."""
        self._client.update_credentials(api_key)
        self._dispatcher.resume()
        await self._dispatcher.wake()

    async def invalidate(self, key: str) -> bool:
        """Drop a cached payload so the next request fetches it again."""
        return await self._cache.delete(key)

    def stats(self) -> dict[str, Any]:
        """Get gateway statistics for health reporting."""
        return {
            "running": self._running,
            "cache": self._cache.stats(),
            "queue": {
                "queued": self._registry.queued_count,
                "inflight": self._registry.inflight_count,
                "capacity": self._registry.capacity,
            },
            "rate": self._governor.status().to_dict(),
            "dispatcher": self._dispatcher.stats(),
        }

    async def __aenter__(self) -> RequestGateway:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()
