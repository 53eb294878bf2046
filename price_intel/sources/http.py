"""
HTTP observation source for a JSON competitor price API.

The API is expected to answer ``GET {base_url}/prices`` with query
parameters ``product_id`` and ``competitor`` and a body such as::

    {"price": 94.99, "currency": "USD", "available": true,
     "timestamp": "2024-05-01T12:00:00Z", "confidence": 0.9}

Features:
    - Shared httpx.AsyncClient with bounded connection pool
    - Token bucket rate limiting
    - tenacity retry on transport errors
    - Failures mapped to ``FetchResult`` kinds instead of exceptions

Example:
    >>> async with HttpObservationSource(settings) as source:
    ...     result = await source.fetch("sku-1", "acme")
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Any, Optional

import httpx
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from price_intel.config.settings import Settings, get_settings
from price_intel.models.schemas import FetchErrorKind, FetchResult, Observation, utc_now
from price_intel.sources.base import ObservationSource
from price_intel.utils.logger import get_logger
from price_intel.utils.retry import InvalidInputError

logger = get_logger(__name__)


# =============================================================================
# Rate Limiter
# =============================================================================

class RateLimiter:
    """Token bucket rate limiter for API requests."""

    def __init__(self, requests_per_second: float = 2.0):
        self.rate = requests_per_second
        self.tokens = requests_per_second
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> float:
        """
        Acquire permission to make a request.

        Returns wait time in seconds (0 if immediate).
        """
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self.last_update
            self.tokens = min(self.rate, self.tokens + elapsed * self.rate)
            self.last_update = now

            if self.tokens >= 1:
                self.tokens -= 1
                return 0.0

            wait_time = (1 - self.tokens) / self.rate
            await asyncio.sleep(wait_time)
            self.tokens = 0
            self.last_update = time.monotonic()
            return wait_time


# =============================================================================
# HTTP Source
# =============================================================================

class HttpObservationSource(ObservationSource):
    """
    Competitor price source backed by a JSON HTTP API.

    Transport errors are retried with exponential backoff; HTTP error
    statuses and malformed payloads are reported as ``unavailable``,
    exhausted timeouts as ``timeout``.
    """

    PRICES_PATH = "/prices"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        rate_limiter: Optional[RateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self.settings = settings or get_settings()
        if not self.settings.has_price_api():
            raise InvalidInputError("PRICE_API_BASE_URL is not configured")
        self.base_url = self.settings.price_api_base_url
        self.rate_limiter = rate_limiter or RateLimiter(
            self.settings.price_api_requests_per_second
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def name(self) -> str:
        return "http"

    def _get_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.settings.price_api_key:
            headers["Authorization"] = f"Bearer {self.settings.price_api_key.get_secret_value()}"
        return headers

    async def connect(self) -> None:
        """Initialize HTTP client."""
        if self._client is None:
            timeout = self.settings.fetch_timeout_seconds
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._get_headers(),
                timeout=httpx.Timeout(
                    connect=min(10.0, timeout),
                    read=timeout,
                    write=10.0,
                    pool=5.0,
                ),
                limits=httpx.Limits(
                    max_keepalive_connections=5,
                    max_connections=10,
                ),
                transport=self._transport,
            )

    async def disconnect(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @retry(
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        reraise=True,
    )
    async def _request(self, product_id: str, competitor: str) -> httpx.Response:
        wait = await self.rate_limiter.acquire()
        if wait > 0:
            logger.debug("Rate limit applied", source=self.name, wait_seconds=f"{wait:.2f}")
        return await self._client.get(
            self.PRICES_PATH,
            params={"product_id": product_id, "competitor": competitor},
        )

    async def fetch(self, product_id: str, competitor: str) -> FetchResult:
        if not self._client:
            await self.connect()

        try:
            response = await self._request(product_id, competitor)
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as e:
            logger.warning(
                "Price API timed out", product_id=product_id, competitor=competitor, error=str(e)
            )
            return self._record(
                FetchResult.failure(product_id, competitor, FetchErrorKind.TIMEOUT, str(e))
            )
        except httpx.HTTPStatusError as e:
            error_msg = f"HTTP {e.response.status_code}: {e.response.text[:200]}"
            logger.warning(
                "Price API request failed",
                product_id=product_id,
                competitor=competitor,
                error=error_msg,
            )
            return self._record(
                FetchResult.failure(product_id, competitor, FetchErrorKind.UNAVAILABLE, error_msg)
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                "Price API unreachable", product_id=product_id, competitor=competitor, error=str(e)
            )
            return self._record(
                FetchResult.failure(product_id, competitor, FetchErrorKind.UNAVAILABLE, str(e))
            )

        observation = self._parse_observation(product_id, competitor, payload)
        if observation is None:
            return self._record(
                FetchResult.failure(
                    product_id, competitor, FetchErrorKind.UNAVAILABLE, "malformed price payload"
                )
            )
        return self._record(FetchResult.success(observation))

    @staticmethod
    def _parse_observation(
        product_id: str, competitor: str, payload: Any
    ) -> Optional[Observation]:
        """Build an Observation from an API payload, or None if unusable."""
        if not isinstance(payload, dict) or payload.get("price") is None:
            return None

        timestamp = payload.get("timestamp")
        try:
            return Observation(
                product_id=product_id,
                competitor=competitor,
                price=payload["price"],
                currency=payload.get("currency") or "USD",
                available=payload.get("available", True),
                timestamp=datetime.fromisoformat(timestamp) if timestamp else utc_now(),
                source_confidence=payload.get("confidence", 1.0),
            )
        except (ValidationError, ValueError, TypeError) as e:
            logger.warning(
                "Discarding malformed price payload",
                product_id=product_id,
                competitor=competitor,
                error=str(e),
            )
            return None


__all__ = ["HttpObservationSource", "RateLimiter"]
