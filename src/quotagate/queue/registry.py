"""
Pending request registry.

Tracks every key that has been requested but not yet resolved, coalescing
concurrent callers for the same key onto one outstanding request.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from quotagate.errors import CapacityExceeded

logger = logging.getLogger(__name__)


class RequestState(str, Enum):
    """Lifecycle states of a pending request."""

    QUEUED = "queued"
    DISPATCHED = "dispatched"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass
class PendingRequest:
    """One outstanding upstream request and everyone waiting on it."""

    key: str
    priority: int
    enqueued_at: float
    sequence: int
    ttl_seconds: float | None = None
    waiters: list[asyncio.Future] = field(default_factory=list)
    state: RequestState = RequestState.QUEUED
    attempts: int = 0
    not_before: float = 0.0

    @property
    def sort_key(self) -> tuple[int, float, int]:
        """Higher priority first, then older, then first enqueued."""
        return (-self.priority, self.enqueued_at, self.sequence)

    @property
    def active_waiters(self) -> int:
        return sum(1 for waiter in self.waiters if not waiter.done())

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "priority": self.priority,
            "enqueued_at": self.enqueued_at,
            "state": self.state.value,
            "attempts": self.attempts,
            "waiters": self.active_waiters,
        }


@dataclass
class WaiterHandle:
    """A caller's claim on the outcome of a pending request."""

    key: str
    future: asyncio.Future
    created: bool
    """True if this enqueue created the pending request."""

    async def wait(self, timeout: float | None = None) -> Any:
        """
        Wait for the request to resolve.

        A timeout or cancellation withdraws this waiter only; the dispatch
        and any other waiters are unaffected.

        Raises:
            GatewayError: The failure the request resolved with
            asyncio.TimeoutError: The timeout elapsed first
        """
        if timeout is None:
            return await self.future
        return await asyncio.wait_for(self.future, timeout)

    def withdraw(self) -> bool:
        """Stop waiting without affecting the dispatch."""
        return self.future.cancel()


class PendingRegistry:
    """
    Registry of queued and in-flight requests, one per key.

    Not thread-safe: callers serialize access on the event loop.
    """

    def __init__(
        self,
        capacity: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the registry.

        Args:
            capacity: Maximum number of queued (not yet dispatched) requests
            clock: Monotonic time source in seconds
        """
        if capacity <= 0:
            raise ValueError("capacity must be positive")

        self._capacity = capacity
        self._clock = clock
        self._entries: dict[str, PendingRequest] = {}
        self._sequence = itertools.count()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def queued_count(self) -> int:
        return sum(1 for r in self._entries.values() if r.state is RequestState.QUEUED)

    @property
    def inflight_count(self) -> int:
        return sum(1 for r in self._entries.values() if r.state is RequestState.DISPATCHED)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str) -> PendingRequest | None:
        return self._entries.get(key)

    def enqueue(
        self,
        key: str,
        priority: int = 1,
        ttl_seconds: float | None = None,
    ) -> WaiterHandle:
        """
        Register interest in a key.

        Joins the existing request for the key if there is one, otherwise
        queues a new request.

        Raises:
            CapacityExceeded: A new request would exceed queue capacity
        """
        future = asyncio.get_running_loop().create_future()

        existing = self._entries.get(key)
        if existing is not None:
            existing.waiters.append(future)
            logger.debug(
                f"Coalesced request for {key} "
                f"({len(existing.waiters)} waiters, {existing.state.value})"
            )
            return WaiterHandle(key=key, future=future, created=False)

        if self.queued_count >= self._capacity:
            logger.warning(f"Rejected {key}: queue at capacity ({self._capacity})")
            raise CapacityExceeded(self._capacity, key=key)

        self._entries[key] = PendingRequest(
            key=key,
            priority=priority,
            enqueued_at=self._clock(),
            sequence=next(self._sequence),
            ttl_seconds=ttl_seconds,
            waiters=[future],
        )
        logger.debug(f"Queued {key} with priority {priority}")
        return WaiterHandle(key=key, future=future, created=True)

    def peek_ready(self, limit: int, now: float | None = None) -> list[PendingRequest]:
        """
        Get up to ``limit`` queued requests in dispatch order.

        Requests still inside a backoff gate are skipped.
        """
        if limit <= 0:
            return []

        now = self._clock() if now is None else now
        ready = (
            r for r in self._entries.values()
            if r.state is RequestState.QUEUED and r.not_before <= now
        )
        return heapq.nsmallest(limit, ready, key=lambda r: r.sort_key)

    def mark_dispatched(self, key: str) -> PendingRequest:
        """Move a queued request to the dispatched state."""
        request = self._entries[key]
        request.state = RequestState.DISPATCHED
        request.attempts += 1
        return request

    def requeue(self, key: str, not_before: float) -> PendingRequest:
        """
        Return a dispatched request to the queue.

        Priority and original age are kept; the request becomes ready again
        at ``not_before``.
        """
        request = self._entries[key]
        request.state = RequestState.QUEUED
        request.not_before = not_before
        return request

    def complete(
        self,
        key: str,
        result: Any = None,
        error: BaseException | None = None,
    ) -> int:
        """
        Remove a request and resolve all of its waiters.

        Waiters are resolved in the order they joined, each exactly once.
        Waiters that already withdrew are skipped.

        Returns:
            Number of waiters resolved
        """
        request = self._entries.pop(key, None)
        if request is None:
            return 0

        request.state = RequestState.FAILED if error is not None else RequestState.RESOLVED
        resolved = 0
        for waiter in request.waiters:
            if waiter.done():
                continue
            if error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(result)
            resolved += 1
        return resolved

    def fail_queued(self, error: BaseException) -> int:
        """
        Fail every request that has not been dispatched yet.

        Returns:
            Number of requests failed
        """
        keys = [k for k, r in self._entries.items() if r.state is RequestState.QUEUED]
        for key in keys:
            self.complete(key, error=error)
        return len(keys)

    def snapshot(self) -> list[dict[str, Any]]:
        """Get all pending requests in dispatch order."""
        ordered = sorted(self._entries.values(), key=lambda r: r.sort_key)
        return [r.to_dict() for r in ordered]
