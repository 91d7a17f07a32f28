"""
Queue module for pending upstream requests.

Coalesces duplicate callers and orders requests for dispatch.
"""

from quotagate.queue.registry import (
    PendingRegistry,
    PendingRequest,
    RequestState,
    WaiterHandle,
)

__all__ = [
    "PendingRegistry",
    "PendingRequest",
    "RequestState",
    "WaiterHandle",
]
