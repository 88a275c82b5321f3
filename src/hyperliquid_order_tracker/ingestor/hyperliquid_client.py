"""Async client for the Hyperliquid info API with rate limiting and retry logic."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, ParamSpec, TypeVar

import aiohttp

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# Constants
DEFAULT_INFO_URL = "https://api.hyperliquid.xyz/info"
DEFAULT_TIMEOUT_SECONDS = 10.0
MAX_REQUESTS_PER_SECOND = 5

DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_BASE_DELAY = 0.5
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


class RateLimiter:
    """Minimum-interval rate limiter for API requests."""

    def __init__(self, max_requests_per_second: float = MAX_REQUESTS_PER_SECOND) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests_per_second: Maximum requests allowed per second.
        """
        self._min_interval = 1.0 / max_requests_per_second
        self._last_request_time: float = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


class HyperliquidClientError(Exception):
    """Base exception for HyperliquidClient errors."""


class HyperliquidClientTransientError(HyperliquidClientError):
    """Raised for retryable errors (429/5xx, network issues, timeouts)."""


class RetryError(HyperliquidClientError):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception | None = None) -> None:
        super().__init__(message)
        self.last_exception = last_exception


def with_retry(
    max_retries: int | None = None,
    base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    retry_on: tuple[type[Exception], ...] = (HyperliquidClientTransientError,),
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator adding exponential-backoff retries to async client methods.

    Args:
        max_retries: Maximum retry attempts. When None, the bound client's
            ``max_retries`` attribute is used.
        base_delay: Base delay in seconds (doubles with each retry).
        retry_on: Tuple of exception types to retry on.

    Returns:
        Decorated coroutine function with retry logic.
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            retries = max_retries
            if retries is None:
                retries = getattr(args[0], "max_retries", DEFAULT_MAX_RETRIES) if args else 0
            last_exception: Exception | None = None

            for attempt in range(retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    last_exception = e
                    if attempt == retries:
                        break

                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                        attempt + 1,
                        retries + 1,
                        str(e),
                        delay,
                    )
                    await asyncio.sleep(delay)

            raise RetryError(
                f"All {retries + 1} attempts failed for {func.__name__}",
                last_exception=last_exception,
            )

        return wrapper

    return decorator


class HyperliquidClient:
    """Read-only client for the Hyperliquid ``/info`` endpoint.

    Every query is a JSON POST with a ``type`` discriminator. The client
    owns an aiohttp session unless one is injected, rate limits requests,
    and retries transient failures with exponential backoff.

    Example:
        >>> async with HyperliquidClient() as client:
        ...     orders = await client.get_open_orders("0xabc...")
        ...     mids = await client.get_all_mids()
    """

    def __init__(
        self,
        *,
        info_url: str = DEFAULT_INFO_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        requests_per_second: float = MAX_REQUESTS_PER_SECOND,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the info client.

        Args:
            info_url: Hyperliquid info endpoint URL.
            timeout_seconds: Total timeout applied to each request.
            max_retries: Maximum retry attempts for transient failures.
            requests_per_second: Rate limit for API requests.
            session: Optional externally managed aiohttp session.
        """
        self._info_url = info_url
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.max_retries = max_retries
        self._rate_limiter = RateLimiter(requests_per_second)
        self._session = session
        self._owns_session = session is None

        logger.info(
            "Initialized HyperliquidClient with info_url=%s, rate_limit=%.1f req/s",
            info_url,
            requests_per_second,
        )

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the underlying session if this client created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> HyperliquidClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _post_info(self, payload: dict[str, Any]) -> Any:
        """POST a query to the info endpoint and decode the JSON body."""
        await self._rate_limiter.acquire()
        session = self._get_session()
        query_type = payload.get("type", "?")
        try:
            async with session.post(self._info_url, json=payload, timeout=self._timeout) as resp:
                if resp.status in RETRY_STATUS_CODES:
                    raise HyperliquidClientTransientError(
                        f"{query_type} request returned HTTP {resp.status}"
                    )
                if resp.status >= 400:
                    body = await resp.text()
                    raise HyperliquidClientError(
                        f"{query_type} request returned HTTP {resp.status}: {body[:200]}"
                    )
                try:
                    return await resp.json(content_type=None)
                except ValueError as e:
                    raise HyperliquidClientError(f"{query_type} response is not valid JSON") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise HyperliquidClientTransientError(f"{query_type} request failed: {e}") from e

    @with_retry()
    async def get_open_orders(self, address: str) -> list[dict[str, Any]]:
        """Fetch open orders for an account.

        Args:
            address: Account address to query.

        Returns:
            List of raw order payloads.

        Raises:
            HyperliquidClientError: If the response is not a list.
            RetryError: If transient failures persist.
        """
        data = await self._post_info({"type": "openOrders", "user": address})
        if not isinstance(data, list):
            raise HyperliquidClientError(
                f"Unexpected openOrders response shape: {type(data).__name__}"
            )
        logger.debug("Fetched %d open orders for %s", len(data), address)
        return data

    @with_retry()
    async def get_all_mids(self) -> dict[str, str]:
        """Fetch current mid prices for every instrument.

        Returns:
            Mapping of instrument id to mid price string.
        """
        data = await self._post_info({"type": "allMids"})
        if not isinstance(data, dict):
            raise HyperliquidClientError(
                f"Unexpected allMids response shape: {type(data).__name__}"
            )
        return {str(k): str(v) for k, v in data.items()}

    @with_retry()
    async def get_meta(self) -> dict[str, Any]:
        """Fetch exchange metadata (perpetuals universe)."""
        data = await self._post_info({"type": "meta"})
        if not isinstance(data, dict):
            raise HyperliquidClientError(f"Unexpected meta response shape: {type(data).__name__}")
        return data
