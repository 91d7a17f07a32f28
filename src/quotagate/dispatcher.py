"""
Dispatcher: drains pending requests under the rate governor's budget.

Each wake asks the governor how many calls may be made, picks that many
ready requests in priority-then-age order, charges the governor and starts
one upstream call per request. Completions write the cache and resolve
every waiter on the key. Throttled calls go back in the queue with
exponential backoff; a configuration failure halts dispatching until new
credentials arrive. Once halted or closed, a throttled request fails
instead of going back in the queue, since nothing would dispatch it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from quotagate.cache.base import CacheStore
from quotagate.errors import (
    ConfigurationError,
    GatewayError,
    ServiceStopped,
    UpstreamError,
    UpstreamRateLimited,
)
from quotagate.http.client import UpstreamClient
from quotagate.queue.registry import PendingRegistry, PendingRequest
from quotagate.quota.governor import RateGovernor

logger = logging.getLogger(__name__)


class Dispatcher:
    """Control loop moving requests from queued to resolved or failed."""

    def __init__(
        self,
        cache: CacheStore,
        registry: PendingRegistry,
        governor: RateGovernor,
        client: UpstreamClient,
        default_ttl_seconds: float = 900.0,
        max_rate_limit_retries: int = 3,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        lock: asyncio.Lock | None = None,
    ) -> None:
        """
        Initialize the dispatcher.

        Args:
            cache: Store written on successful dispatch
            registry: Pending requests to drain
            governor: Rolling-window budget
            client: Upstream client, one call per dispatch
            default_ttl_seconds: TTL when a request carries no override
            max_rate_limit_retries: Re-queues allowed after upstream throttling
            backoff_base_seconds: First re-queue delay, doubled per attempt
            backoff_max_seconds: Upper bound on re-queue delay
            clock: Monotonic time source in seconds
            lock: Lock shared with the gateway guarding registry and governor
        """
        self._cache = cache
        self._registry = registry
        self._governor = governor
        self._client = client
        self._default_ttl = default_ttl_seconds
        self._max_rate_limit_retries = max_rate_limit_retries
        self._backoff_base = backoff_base_seconds
        self._backoff_max = backoff_max_seconds
        self._clock = clock
        self._lock = lock or asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._halt_error: ConfigurationError | None = None
        self._closed_error: ServiceStopped | None = None
        self._stats = {
            "wakes": 0,
            "dispatched": 0,
            "resolved": 0,
            "failed": 0,
            "requeued": 0,
        }

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def halted(self) -> bool:
        return self._halt_error is not None

    @property
    def inflight(self) -> int:
        return len(self._tasks)

    def raise_if_halted(self) -> None:
        """
        Raises:
            ConfigurationError: Dispatching is halted by a configuration fault
        """
        if self._halt_error is not None:
            raise ConfigurationError(self._halt_error.message)

    def halt(self, error: ConfigurationError) -> int:
        """
        Stop dispatching and fail every queued request with ``error``.

        Returns:
            Number of queued requests failed
        """
        if self._halt_error is None:
            logger.error(f"Dispatching halted: {error.message}")
        self._halt_error = error
        return self._registry.fail_queued(error)

    def resume(self) -> None:
        """Allow dispatching again after the configuration was corrected."""
        if self._halt_error is not None:
            logger.info("Dispatching resumed")
        self._halt_error = None

    def close(self, error: ServiceStopped) -> int:
        """
        Stop accepting work: fail queued requests, and fail throttled
        in-flight requests with ``error`` instead of re-queuing them.

        Caller must hold the lock.

        Returns:
            Number of queued requests failed
        """
        self._closed_error = error
        return self._registry.fail_queued(error)

    def reopen(self) -> None:
        """Accept work again after a restart."""
        self._closed_error = None

    def backoff_delay(self, attempt: int, retry_after: float | None = None) -> float:
        """Exponential delay before re-queuing a throttled request."""
        delay = min(self._backoff_max, self._backoff_base * (2 ** max(0, attempt - 1)))
        if retry_after is not None:
            delay = max(delay, retry_after)
        return delay

    async def wake(self) -> int:
        """
        Dispatch as many ready requests as the budget allows.

        Returns:
            Number of requests dispatched
        """
        async with self._lock:
            self._stats["wakes"] += 1
            if self._halt_error is not None or self._closed_error is not None:
                return 0

            now = self._clock()
            budget = self._governor.available_budget(now)
            if budget == 0:
                return 0

            ready = self._registry.peek_ready(budget, now)
            for request in ready:
                self._registry.mark_dispatched(request.key)
                self._governor.record_dispatch(now)
                self._stats["dispatched"] += 1
                task = asyncio.create_task(
                    self._dispatch(request), name=f"dispatch:{request.key}"
                )
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

            if ready:
                logger.debug(
                    f"Dispatched {len(ready)} request(s), "
                    f"{self._registry.queued_count} still queued"
                )
            return len(ready)

    async def _dispatch(self, request: PendingRequest) -> None:
        """Run one upstream call and settle the request."""
        key = request.key
        try:
            payload = await self._client.fetch(key)
        except UpstreamRateLimited as e:
            await self._handle_rate_limited(request, e)
        except ConfigurationError as e:
            async with self._lock:
                self._registry.complete(key, error=e)
                self._stats["failed"] += 1
                self.halt(e)
        except GatewayError as e:
            logger.warning(f"Request for {key} failed: {e.message}")
            await self._fail(key, e)
        except Exception as e:
            logger.exception(f"Unexpected error fetching {key}")
            await self._fail(key, UpstreamError(f"Unexpected error: {e}", key=key))
        else:
            await self._resolve(request, payload)

    async def _resolve(self, request: PendingRequest, payload: Any) -> None:
        ttl = request.ttl_seconds if request.ttl_seconds is not None else self._default_ttl
        async with self._lock:
            await self._cache.set(request.key, payload, ttl)
            waiters = self._registry.complete(request.key, result=payload)
            self._stats["resolved"] += 1
        logger.debug(f"Resolved {request.key} for {waiters} waiter(s)")

    async def _fail(self, key: str, error: GatewayError) -> None:
        async with self._lock:
            self._registry.complete(key, error=error)
            self._stats["failed"] += 1

    async def _handle_rate_limited(
        self,
        request: PendingRequest,
        error: UpstreamRateLimited,
    ) -> None:
        retries_used = request.attempts - 1
        if retries_used >= self._max_rate_limit_retries:
            logger.warning(
                f"Giving up on {request.key} after {request.attempts} throttled attempts"
            )
            await self._fail(request.key, error)
            return

        delay = self.backoff_delay(request.attempts, error.retry_after)
        async with self._lock:
            # Queued requests were already flushed; nothing would wake this one
            terminal = self._closed_error or self._halt_error
            if terminal is not None:
                self._registry.complete(request.key, error=terminal)
                self._stats["failed"] += 1
                return
            self._registry.requeue(request.key, not_before=self._clock() + delay)
            self._stats["requeued"] += 1
        logger.warning(
            f"Upstream throttled {request.key}, re-queued in {delay:.1f}s "
            f"(attempt {request.attempts}/{self._max_rate_limit_retries + 1})"
        )

    async def join(self) -> None:
        """Wait until no dispatch is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def stats(self) -> dict[str, Any]:
        """Get dispatcher statistics."""
        return {
            **self._stats,
            "inflight": self.inflight,
            "halted": self.halted,
        }
