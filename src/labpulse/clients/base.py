"""Base async HTTP client with rate limiting and connection pooling.

FHIR clients inherit from this base to share:
- One pooled httpx.AsyncClient per `async with` block
- Request rate limiting
- Optional retries with exponential backoff on transient failures
- Mapping of HTTP and transport failures onto a caller-chosen error type

Usage:
    class MyFHIRClient(BaseAsyncClient):
        async def read_patient(self, patient_id: str) -> dict:
            response = await self._send(
                "GET", f"/Patient/{patient_id}", error_cls=LabPulseError
            )
            return response.json()
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, AsyncIterator

import httpx

from labpulse.errors import LabPulseError


logger = logging.getLogger(__name__)

# Retry configuration
RETRYABLE_STATUS_CODES = {429, 502, 503, 504}
_BASE_BACKOFF = 1.0  # seconds


def parse_retry_after(value: str | None) -> float | None:
    """Retry-After as seconds; accepts delta-seconds or an HTTP date."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class RateLimiter:
    """Token bucket limiter shared by every request of one client.

    Args:
        rate: Maximum requests per second
    """

    def __init__(self, rate: int) -> None:
        self.rate = rate
        self.tokens: float = rate
        self.updated_at: float | None = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Take one token, sleeping until the bucket refills if empty."""
        async with self._lock:
            loop = asyncio.get_running_loop()
            if self.updated_at is None:
                self.updated_at = loop.time()

            while self.tokens < 1:
                now = loop.time()
                self.tokens = min(self.rate, self.tokens + (now - self.updated_at) * self.rate)
                self.updated_at = now
                if self.tokens < 1:
                    await asyncio.sleep((1 - self.tokens) / self.rate)

            self.tokens -= 1
            self.updated_at = loop.time()


class BaseAsyncClient:
    """Base async HTTP client for FHIR endpoints.

    Args:
        base_url: Base URL; absolute request URLs bypass it
        headers: Default headers for all requests
        rate_limit: Maximum requests per second (default: 10)
        timeout: Request timeout in seconds (default: 30)
        max_retries: Retries for transient failures when a call opts in
    """

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        rate_limit: int = 10,
        timeout: float = 30.0,
        max_retries: int = 2,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = headers or {}
        self.timeout = timeout
        self.max_retries = max_retries
        self._rate_limiter = RateLimiter(rate=rate_limit)
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "BaseAsyncClient":
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=self.timeout,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("Client not initialized. Use async with context manager.")
        return self._client

    async def _send(
        self,
        method: str,
        url: str,
        *,
        error_cls: type[LabPulseError] = LabPulseError,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        retry: bool = False,
    ) -> httpx.Response:
        """Send a request and return the response for any status below 400.

        With retry=True, transient failures (429, 502, 503, 504, timeouts,
        network errors) are retried up to max_retries with exponential
        backoff. Everything else raises immediately.

        Args:
            method: HTTP method
            url: Path relative to base_url, or an absolute URL
            error_cls: Exception type raised on failure
            params: Query parameters
            data: Form-encoded body
            headers: Per-request headers
            retry: Whether transient failures are retried

        Returns:
            The httpx.Response (status < 400)

        Raises:
            error_cls: On error status or transport failure
        """
        client = self._require_client()
        attempts = (self.max_retries if retry else 0) + 1

        for attempt in range(attempts):
            await self._rate_limiter.acquire()
            last_attempt = attempt == attempts - 1
            backoff = _BASE_BACKOFF * (2 ** attempt)

            logger.debug("%s %s (attempt %d/%d)", method, url, attempt + 1, attempts)

            try:
                response = await client.request(
                    method, url, params=params, data=data, headers=headers
                )
            except httpx.TimeoutException as e:
                if not last_attempt:
                    logger.warning(
                        "Timeout for %s, retrying in %.1fs (attempt %d/%d)",
                        url, backoff, attempt + 1, attempts,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise error_cls(f"Request timeout: {e}") from e
            except httpx.HTTPError as e:
                if not last_attempt:
                    logger.warning(
                        "Network error for %s, retrying in %.1fs (attempt %d/%d)",
                        url, backoff, attempt + 1, attempts,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise error_cls(f"Network error: {e}") from e

            logger.debug("Response: %d for %s", response.status_code, url)

            if response.status_code < 400:
                return response

            if response.status_code in RETRYABLE_STATUS_CODES and not last_attempt:
                logger.warning(
                    "Retryable %d for %s, retrying in %.1fs (attempt %d/%d)",
                    response.status_code, url, backoff, attempt + 1, attempts,
                )
                await asyncio.sleep(backoff)
                continue

            raise error_cls(
                f"{method} {url} failed: {response.status_code}",
                status_code=response.status_code,
                response_body=response.text[:500],
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )

        raise error_cls(f"{method} {url} failed after retries")

    @asynccontextmanager
    async def _stream(
        self,
        method: str,
        url: str,
        *,
        error_cls: type[LabPulseError] = LabPulseError,
        headers: dict[str, str] | None = None,
    ) -> AsyncIterator[httpx.Response]:
        """Open a streaming response; the body is read lazily by the caller.

        Raises:
            error_cls: On error status or failure to connect
        """
        client = self._require_client()
        await self._rate_limiter.acquire()

        try:
            async with client.stream(method, url, headers=headers) as response:
                if response.status_code >= 400:
                    body = (await response.aread())[:500].decode("utf-8", errors="replace")
                    raise error_cls(
                        f"{method} {url} failed: {response.status_code}",
                        status_code=response.status_code,
                        response_body=body,
                    )
                yield response
        except httpx.TimeoutException as e:
            raise error_cls(f"Stream timeout: {e}") from e
        except httpx.HTTPError as e:
            raise error_cls(f"Stream error: {e}") from e
