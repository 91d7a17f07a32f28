"""Upstream HTTP client: one provider call per dispatched key."""

import logging
from typing import Any

import httpx

from quotagate.errors import (
    ConfigurationError,
    NetworkError,
    UpstreamError,
    UpstreamRateLimited,
    UpstreamTimeout,
)

logger = logging.getLogger(__name__)


class UpstreamClient:
    """
    HTTP client for the quota-limited provider.

    Uses httpx for async requests. Each ``fetch`` makes exactly one call
    and translates failures into gateway errors; retrying is left to the
    dispatcher.
    """

    def __init__(
        self,
        base_url: str,
        url_template: str = "{key}",
        method: str = "GET",
        api_key: str | None = None,
        auth_header: str | None = "x-api-key",
        auth_scheme: str | None = None,
        auth_query_param: str | None = None,
        timeout_seconds: float = 30.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the upstream client.

        Args:
            base_url: Provider base URL
            url_template: Path template, ``{key}`` is replaced by the request key
            method: HTTP method for every call
            api_key: Provider credential
            auth_header: Header carrying the credential
            auth_scheme: Optional scheme prefix for the header (e.g. "Bearer")
            auth_query_param: Query parameter carrying the credential instead
                of a header
            timeout_seconds: Whole-call timeout
            headers: Extra default headers
            transport: Optional httpx transport (for testing)
        """
        self._base_url = base_url.rstrip("/")
        self._url_template = url_template
        self._method = method.upper()
        self._api_key = api_key
        self._auth_header = auth_header
        self._auth_scheme = auth_scheme
        self._auth_query_param = auth_query_param
        self._timeout = httpx.Timeout(timeout_seconds)
        self._default_headers = {"Accept": "application/json", **(headers or {})}
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers=self._default_headers,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def validate_configuration(self) -> None:
        """
        Check that the client can authenticate.

        Raises:
            ConfigurationError: Base URL or credentials are missing
        """
        if not self._base_url:
            raise ConfigurationError("Upstream base URL is not configured")
        if not self._api_key:
            raise ConfigurationError("Upstream API key is not configured")
        if not self._auth_header and not self._auth_query_param:
            raise ConfigurationError(
                "No credential placement configured (auth header or query parameter)"
            )

    def update_credentials(self, api_key: str) -> None:
        """Replace the provider credential."""
        self._api_key = api_key
        logger.info("Upstream credentials updated")

    def build_url(self, key: str) -> str:
        """Translate a request key into the provider URL."""
        path = self._url_template.format(key=key)
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self._base_url}{path}"

    def _auth(self) -> tuple[dict[str, str], dict[str, str]]:
        """Credential headers and query parameters for one call."""
        headers: dict[str, str] = {}
        params: dict[str, str] = {}
        if self._auth_query_param:
            params[self._auth_query_param] = self._api_key or ""
        elif self._auth_header:
            value = self._api_key or ""
            if self._auth_scheme:
                value = f"{self._auth_scheme} {value}"
            headers[self._auth_header] = value
        return headers, params

    @staticmethod
    def _parse_retry_after(response: httpx.Response) -> float | None:
        """Read a Retry-After header given in seconds."""
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return max(0.0, float(retry_after))
            except ValueError:
                pass
        return None

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        """Extract the provider's error message from a response."""
        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict):
            for field in ("error", "message", "detail"):
                value = body.get(field)
                if value:
                    return value if isinstance(value, str) else str(value)

        text = response.text.strip()
        return text[:500] if text else response.reason_phrase

    async def fetch(self, key: str) -> Any:
        """
        Make one provider call for ``key``.

        Returns:
            Decoded JSON payload

        Raises:
            ConfigurationError: Credentials missing or rejected (401/403)
            UpstreamTimeout: The call exceeded the timeout
            NetworkError: Connection-level failure
            UpstreamRateLimited: The provider returned 429
            UpstreamError: Any other non-2xx status or an undecodable body
        """
        self.validate_configuration()

        url = self.build_url(key)
        headers, params = self._auth()
        client = self._get_client()

        logger.debug(f"Fetching {self._method} {url}")
        try:
            response = await client.request(self._method, url, headers=headers, params=params)
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(f"Timed out fetching {key}: {e}", key=key) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Network error fetching {key}: {e}", key=key) from e

        status = response.status_code
        if status in (401, 403):
            raise ConfigurationError(
                f"Upstream rejected credentials ({status}): {self._error_detail(response)}",
                key=key,
            )

        if status == 429:
            retry_after = self._parse_retry_after(response)
            raise UpstreamRateLimited(
                f"Upstream rate limited {key}: {self._error_detail(response)}",
                retry_after=retry_after,
                key=key,
            )

        if not response.is_success:
            detail = self._error_detail(response)
            logger.warning(f"Upstream error {status} for {key}: {detail}")
            raise UpstreamError(
                f"Upstream error {status}: {detail}",
                status_code=status,
                key=key,
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Upstream returned invalid JSON for {key}",
                status_code=status,
                key=key,
            ) from e

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
            logger.info("Upstream client closed")

    async def __aenter__(self) -> "UpstreamClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
