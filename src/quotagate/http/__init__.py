"""HTTP access to the upstream provider."""

from quotagate.http.client import UpstreamClient

__all__ = ["UpstreamClient"]
