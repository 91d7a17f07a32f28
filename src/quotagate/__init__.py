"""
quotagate: rate-limited, caching request scheduler for quota-limited
upstream market-data providers.
"""

from quotagate.cache import CacheEntry, CacheStore, InMemoryCache
from quotagate.config import Settings, configure_logging, get_settings
from quotagate.dispatcher import Dispatcher
from quotagate.errors import (
    CapacityExceeded,
    ConfigurationError,
    ErrorKind,
    GatewayError,
    NetworkError,
    ServiceStopped,
    UpstreamError,
    UpstreamRateLimited,
    UpstreamTimeout,
)
from quotagate.gateway import RequestGateway
from quotagate.http import UpstreamClient
from quotagate.models import FetchRequest, FetchResult
from quotagate.queue import PendingRegistry, PendingRequest, RequestState, WaiterHandle
from quotagate.quota import RateGovernor, RateWindowStatus

__version__ = "0.1.0"

__all__ = [
    "CacheEntry",
    "CacheStore",
    "CapacityExceeded",
    "ConfigurationError",
    "Dispatcher",
    "ErrorKind",
    "FetchRequest",
    "FetchResult",
    "GatewayError",
    "InMemoryCache",
    "NetworkError",
    "PendingRegistry",
    "PendingRequest",
    "RateGovernor",
    "RateWindowStatus",
    "RequestGateway",
    "RequestState",
    "ServiceStopped",
    "Settings",
    "UpstreamClient",
    "UpstreamError",
    "UpstreamRateLimited",
    "UpstreamTimeout",
    "WaiterHandle",
    "configure_logging",
    "get_settings",
]
