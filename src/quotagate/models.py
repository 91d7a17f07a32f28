"""Logical request and response shapes exchanged with adapters."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from quotagate.errors import ErrorKind, GatewayError


@dataclass
class FetchRequest:
    """A request for one upstream key."""

    key: str
    """Opaque identifier encoding endpoint and parameters."""

    priority: int = 1
    """Higher = more urgent."""

    ttl_override: float | None = None
    """Cache TTL for this key instead of the gateway default."""

    force_refresh: bool = False
    """Skip the cache lookup (still coalesces with pending requests)."""

    timeout: float | None = None
    """How long the caller is willing to wait, in seconds."""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FetchRequest:
        return cls(
            key=data["key"],
            priority=data.get("priority", 1),
            ttl_override=data.get("ttl_override"),
            force_refresh=data.get("force_refresh", False),
            timeout=data.get("timeout"),
        )


@dataclass
class FetchResult:
    """Outcome of a request: a payload or a typed error."""

    key: str
    payload: Any = None
    error: ErrorKind | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, key: str, payload: Any) -> FetchResult:
        return cls(key=key, payload=payload)

    @classmethod
    def failure(cls, key: str, error: GatewayError) -> FetchResult:
        return cls(key=key, error=error.kind, message=error.message)

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            return {"payload": self.payload}
        return {"error": self.error.value, "message": self.message}
