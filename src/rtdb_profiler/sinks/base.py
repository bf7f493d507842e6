"""Base async HTTP client for result sinks.

Both sinks (Cloud Storage, Cloud Logging) share:
- One pooled httpx.AsyncClient, opened once at service start
- Bearer-token auth headers from the resolved Credential
- Retries with exponential backoff on transient failures
- SinkError for everything that still fails

Usage:
    class MySink(BaseSinkClient):
        sink_name = "my-sink"

        async def push(self, body: dict) -> dict:
            return await self._request("POST", "/v1/push", json_data=body)

    async with MySink(base_url="https://api.example.com", credential=cred) as sink:
        await sink.push({"a": 1})
"""

import asyncio
import logging
from typing import Any

import httpx

from rtdb_profiler.credentials import Credential
from rtdb_profiler.errors import SinkError

logger = logging.getLogger(__name__)

# Retry configuration
_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_MAX_RETRIES = 3
_BASE_BACKOFF = 1.0  # seconds


class BaseSinkClient:
    """Async HTTP client base for sinks.

    Args:
        base_url: Base URL for all API requests
        credential: Credential providing the bearer token
        timeout: Request timeout in seconds (default: 30)
        max_retries: Retries after the first attempt (default: 3)
        backoff: Base backoff in seconds, doubled per attempt (default: 1.0)
    """

    sink_name = "sink"

    def __init__(
        self,
        base_url: str,
        credential: Credential | None = None,
        timeout: float = 30.0,
        max_retries: int = _MAX_RETRIES,
        backoff: float = _BASE_BACKOFF,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = credential.headers if credential else {}
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "BaseSinkClient":
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=self.timeout,
            limits=httpx.Limits(max_keepalive_connections=2, max_connections=4),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _error(self, message: str, response: httpx.Response | None = None) -> SinkError:
        return SinkError(
            message=f"{self.sink_name}: {message}",
            sink=self.sink_name,
            status_code=response.status_code if response is not None else None,
            response_body=response.text[:500] if response is not None else None,
        )

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_data: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Make an HTTP request with retries and error handling.

        Retries on transient failures (429, 5xx gateway errors, timeouts,
        network errors) with exponential backoff. Other errors raise
        immediately.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint path (relative to base_url)
            params: Query parameters
            json_data: JSON body
            content: Raw body (used instead of json_data)
            headers: Extra per-request headers

        Returns:
            Parsed JSON response (empty dict for an empty body)

        Raises:
            SinkError: If the request fails after all retries
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use async with context manager.")

        if not endpoint.startswith("/"):
            endpoint = f"/{endpoint}"

        last_error: SinkError | None = None

        for attempt in range(self.max_retries + 1):
            logger.debug(
                "%s %s%s (attempt %d/%d)",
                method, self.base_url, endpoint, attempt + 1, self.max_retries + 1,
            )
            backoff = self.backoff * (2 ** attempt)

            try:
                response = await self._client.request(
                    method=method,
                    url=endpoint,
                    params=params,
                    json=json_data if content is None else None,
                    content=content,
                    headers=headers,
                )
            except httpx.TimeoutException as e:
                last_error = self._error(f"Request timeout: {e}")
            except httpx.NetworkError as e:
                last_error = self._error(f"Network error: {e}")
            else:
                if response.status_code < 400:
                    if not response.content:
                        return {}
                    try:
                        return response.json()
                    except ValueError as e:
                        raise self._error(f"Invalid JSON response: {e}", response) from e

                error = self._error(f"Request failed: {response.status_code}", response)
                if response.status_code not in _RETRYABLE_STATUS_CODES:
                    logger.error(
                        "%s error: %d %s - %s",
                        self.sink_name, response.status_code, endpoint, error.response_body,
                    )
                    raise error
                last_error = error

            if attempt < self.max_retries:
                logger.warning(
                    "%s: %s, retrying in %.1fs (attempt %d/%d)",
                    self.sink_name, last_error, backoff, attempt + 1, self.max_retries + 1,
                )
                await asyncio.sleep(backoff)

        logger.error("%s: giving up on %s after %d attempts", self.sink_name, endpoint, self.max_retries + 1)
        raise last_error or self._error("Request failed after retries")
