"""
Async HTTP client wrapper for upstream requests.
Includes retry logic, timeout management, request budget and metrics collection.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import httpx

from shared.config import get_settings
from shared.utils.logging import get_logger
from shared.utils.metrics import UPSTREAM_LATENCY, UPSTREAM_REQUESTS
from shared.utils.rate_limiter import TokenBucket

logger = get_logger(__name__)

RETRY_AFTER_CAP_S = 10.0


class ProviderHTTPClient:
    """
    Async HTTP client tailored for the federation REST API.
    Handles timeouts, retries, the per-minute request budget, and records metrics per request.
    """

    def __init__(
        self,
        provider_name: str,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        max_retries: int | None = None,
        rate_limiter: TokenBucket | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._provider = provider_name
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s or settings.upstream_timeout_s
        self._max_retries = max(1, max_retries if max_retries is not None else settings.upstream_max_retries)
        self._default_headers = headers or {}
        self._rate_limiter = rate_limiter
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._default_headers,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        endpoint: str = "unknown",
        max_retries: int | None = None,
    ) -> httpx.Response:
        return await self.request("GET", path, params=params, endpoint=endpoint, max_retries=max_retries)

    async def post(
        self,
        path: str,
        json_body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        endpoint: str = "unknown",
        max_retries: int | None = None,
    ) -> httpx.Response:
        return await self.request(
            "POST", path, params=params, json_body=json_body, endpoint=endpoint, max_retries=max_retries
        )

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        endpoint: str = "unknown",
        max_retries: int | None = None,
    ) -> httpx.Response:
        """
        Perform a request with retry, request budget, metrics, and structured logging.

        Args:
            method: HTTP method.
            path: API path relative to base_url.
            params: Query parameters.
            json_body: JSON request body (POST).
            endpoint: Endpoint label for metrics.
            max_retries: Override the client's attempt count for this call.

        Returns:
            httpx.Response

        Raises:
            httpx.HTTPStatusError: On non-retryable HTTP errors or exhausted retries.
            httpx.TimeoutException: If all retries time out.
        """
        if not self._client:
            raise RuntimeError("ProviderHTTPClient not started. Call start() first.")

        attempts = max(1, max_retries if max_retries is not None else self._max_retries)
        last_exc: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            if self._rate_limiter is not None:
                await self._rate_limiter.wait_until_available(timeout_s=60.0)

            start_time = time.perf_counter()
            status = "unknown"

            try:
                resp = await self._client.request(method, path, params=params, json=json_body)
                status = str(resp.status_code)

                if resp.status_code == 429:
                    logger.warning(
                        "upstream_rate_limited",
                        provider=self._provider,
                        path=path,
                        attempt=attempt,
                    )
                    if attempt < attempts:
                        retry_after = _parse_retry_after(resp.headers.get("Retry-After"))
                        await asyncio.sleep(min(retry_after, RETRY_AFTER_CAP_S))
                        continue
                    resp.raise_for_status()

                if resp.status_code >= 500 and attempt < attempts:
                    logger.warning(
                        "upstream_server_error",
                        provider=self._provider,
                        path=path,
                        status=resp.status_code,
                        attempt=attempt,
                    )
                    await asyncio.sleep(1.0 * attempt)
                    continue

                resp.raise_for_status()

                logger.debug(
                    "upstream_request_success",
                    provider=self._provider,
                    path=path,
                    status=resp.status_code,
                    latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
                )
                return resp

            except httpx.TimeoutException as exc:
                status = "timeout"
                last_exc = exc
                logger.warning(
                    "upstream_timeout",
                    provider=self._provider,
                    path=path,
                    attempt=attempt,
                )
                if attempt < attempts:
                    await asyncio.sleep(1.0 * attempt)
                    continue

            except httpx.HTTPStatusError as exc:
                status = str(exc.response.status_code)
                last_exc = exc
                logger.error(
                    "upstream_http_error",
                    provider=self._provider,
                    path=path,
                    status=exc.response.status_code,
                    attempt=attempt,
                )
                # Don't retry client errors (4xx except 429)
                if 400 <= exc.response.status_code < 500 and exc.response.status_code != 429:
                    raise

            except httpx.TransportError as exc:
                status = "error"
                last_exc = exc
                logger.error(
                    "upstream_request_error",
                    provider=self._provider,
                    path=path,
                    error=str(exc),
                    attempt=attempt,
                )
                if attempt < attempts:
                    await asyncio.sleep(1.0 * attempt)
                    continue

            finally:
                UPSTREAM_REQUESTS.labels(endpoint=endpoint, status=status).inc()
                UPSTREAM_LATENCY.labels(endpoint=endpoint).observe(time.perf_counter() - start_time)

        # All retries exhausted
        if last_exc:
            raise last_exc
        raise RuntimeError(f"Upstream request failed after {attempts} attempts")


def _parse_retry_after(value: str | None) -> float:
    try:
        return float(value) if value else 2.0
    except ValueError:
        return 2.0
