"""JSON GET with exponential backoff, shared by the market data providers."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

import httpx

from tracker.core.metrics import MARKET_DATA_LATENCY, MARKET_DATA_REQUESTS
from tracker.integrations.market.base import ProviderError, ProviderRateLimitError

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


async def fetch_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    provider: str,
    operation: str,
    params: dict | None = None,
    headers: dict | None = None,
    attempts: int = 3,
    base_delay: float = 1.0,
    timeout: float = 10.0,
    sleep: Sleep = asyncio.sleep,
) -> Any:
    """GET ``url`` and decode JSON, retrying transient failures.

    Transport errors, timeouts and 5xx responses are retried with a delay of
    ``base_delay * 2 ** (attempt - 1)`` seconds. 4xx responses are permanent
    and raised on the first attempt; 429 is reported as a rate limit.
    """
    last_error: Exception | None = None

    for attempt in range(1, attempts + 1):
        start = time.monotonic()
        try:
            resp = await client.get(url, params=params, headers=headers, timeout=timeout)
            resp.raise_for_status()
            data = resp.json()
            MARKET_DATA_REQUESTS.labels(provider=provider, operation=operation, status="ok").inc()
            MARKET_DATA_LATENCY.labels(provider=provider, operation=operation).observe(
                time.monotonic() - start
            )
            return data
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            MARKET_DATA_REQUESTS.labels(
                provider=provider, operation=operation, status=str(status_code)
            ).inc()
            if status_code == 429:
                raise ProviderRateLimitError(
                    provider, f"{provider} rate limit exceeded (HTTP 429)"
                ) from e
            if 400 <= status_code < 500:
                raise ProviderError(
                    provider, f"{provider} rejected request with HTTP {status_code}"
                ) from e
            last_error = e
        except httpx.TransportError as e:
            MARKET_DATA_REQUESTS.labels(provider=provider, operation=operation, status="error").inc()
            last_error = e
        except ValueError as e:
            # Body was not JSON; another attempt will not change that
            MARKET_DATA_REQUESTS.labels(provider=provider, operation=operation, status="bad_payload").inc()
            raise ProviderError(provider, f"{provider} returned a non-JSON response") from e

        logger.warning(
            "%s %s attempt %d/%d failed: %s", provider, operation, attempt, attempts, last_error
        )
        if attempt < attempts:
            await sleep(base_delay * 2 ** (attempt - 1))

    raise ProviderError(
        provider, f"{provider} request failed after {attempts} attempts: {last_error}"
    ) from last_error
