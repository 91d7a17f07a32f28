"""
Rolling-window rate governor.

Counts upstream dispatches in a sliding time window and reports how many
more may be made right now. The governor only keeps books; the dispatcher
is responsible for asking before it dispatches and charging when it does.
"""

from __future__ import annotations

import bisect
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass
class RateWindowStatus:
    """Snapshot of the rate window."""

    remaining: int
    """Dispatches still allowed in the current window."""

    limit: int
    """Maximum dispatches per window."""

    window_seconds: float
    """Window duration."""

    used: int
    """Dispatches counted in the current window."""

    retry_after: float | None = None
    """Seconds until a slot frees (if exhausted)."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "remaining": self.remaining,
            "limit": self.limit,
            "window_seconds": self.window_seconds,
            "used": self.used,
            "retry_after": self.retry_after,
        }


class RateGovernor:
    """
    Sliding window dispatch counter.

    The window is half-open: a dispatch recorded at ``t`` counts against
    budget while ``now - t < window_seconds``.
    """

    def __init__(
        self,
        quota: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the governor.

        Args:
            quota: Maximum dispatches per window
            window_seconds: Window size in seconds
            clock: Monotonic time source in seconds
        """
        if quota <= 0:
            raise ValueError("quota must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self._quota = quota
        self._window_seconds = window_seconds
        self._clock = clock
        self._timestamps: list[float] = []

    @property
    def quota(self) -> int:
        return self._quota

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def _prune(self, now: float) -> None:
        """Drop timestamps that fell out of the window."""
        cutoff = now - self._window_seconds
        index = bisect.bisect_right(self._timestamps, cutoff)
        if index:
            del self._timestamps[:index]

    def _count(self, now: float) -> int:
        cutoff = now - self._window_seconds
        lower = bisect.bisect_right(self._timestamps, cutoff)
        upper = bisect.bisect_right(self._timestamps, now)
        return upper - lower

    def available_budget(self, now: float | None = None) -> int:
        """Dispatches that may be made at ``now`` without exceeding quota."""
        now = self._clock() if now is None else now
        self._prune(now)
        return max(0, self._quota - self._count(now))

    def record_dispatch(self, timestamp: float | None = None) -> None:
        """Charge one dispatch at ``timestamp``."""
        timestamp = self._clock() if timestamp is None else timestamp
        bisect.insort(self._timestamps, timestamp)
        self._prune(timestamp)

    def next_available_in(self, now: float | None = None) -> float:
        """Seconds until at least one slot is free (0 if one is free now)."""
        now = self._clock() if now is None else now
        if self.available_budget(now) > 0:
            return 0.0

        cutoff = now - self._window_seconds
        lower = bisect.bisect_right(self._timestamps, cutoff)
        # A slot frees once enough of the oldest in-window dispatches age out
        blocking = self._timestamps[lower + self._count(now) - self._quota]
        return max(0.0, blocking + self._window_seconds - now)

    def status(self, now: float | None = None) -> RateWindowStatus:
        """Get a serializable snapshot of the window."""
        now = self._clock() if now is None else now
        remaining = self.available_budget(now)
        return RateWindowStatus(
            remaining=remaining,
            limit=self._quota,
            window_seconds=self._window_seconds,
            used=self._count(now),
            retry_after=None if remaining else self.next_available_in(now),
        )

    def reset(self) -> None:
        """Forget all recorded dispatches."""
        self._timestamps.clear()
        logger.info("Rate window reset")
