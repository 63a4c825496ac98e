"""Two-provider market data gateway with failover.

Every operation goes to the primary provider first. Hard provider errors
(explicit error or rate-limit payloads) propagate unchanged; anything else
falls over to the secondary provider. Retries happen inside each provider
call before failover is considered.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from tracker.core.metrics import MARKET_DATA_FAILOVERS
from tracker.integrations.market.base import (
    HistoricalPoint,
    MarketDataProvider,
    ProviderHardError,
    Quote,
)
from tracker.integrations.market.http import Sleep

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BothProvidersFailedError(Exception):
    """Raised when the primary and the secondary provider both failed."""

    def __init__(self, operation: str, symbol: str, primary_error: Exception, secondary_error: Exception):
        self.operation = operation
        self.symbol = symbol
        self.primary_error = primary_error
        self.secondary_error = secondary_error
        super().__init__(
            f"Unable to fetch {operation} data for {symbol}. Both providers failed "
            f"(primary: {primary_error}; secondary: {secondary_error})"
        )


def normalize_symbol(symbol: str) -> str:
    return symbol.upper().strip()


class MarketDataGateway:
    """Quote, lookup and history access across a primary and a secondary provider."""

    def __init__(
        self,
        primary: MarketDataProvider,
        secondary: MarketDataProvider,
        quote_batch_size: int = 5,
        quote_batch_delay: float = 0.2,
        sleep: Sleep = asyncio.sleep,
    ):
        self.primary = primary
        self.secondary = secondary
        self.quote_batch_size = max(1, quote_batch_size)
        self.quote_batch_delay = quote_batch_delay
        self._sleep = sleep

    async def _with_failover(
        self,
        operation: str,
        symbol: str,
        call: Callable[[MarketDataProvider], Awaitable[T]],
    ) -> T:
        try:
            return await call(self.primary)
        except ProviderHardError:
            raise
        except Exception as primary_error:
            logger.warning(
                "%s %s failed for %s, falling back to %s: %s",
                self.primary.name, operation, symbol, self.secondary.name, primary_error,
            )
            MARKET_DATA_FAILOVERS.labels(operation=operation).inc()
            try:
                return await call(self.secondary)
            except Exception as secondary_error:
                logger.error(
                    "Both providers failed %s for %s: primary=%s secondary=%s",
                    operation, symbol, primary_error, secondary_error,
                )
                raise BothProvidersFailedError(
                    operation, symbol, primary_error, secondary_error
                ) from secondary_error

    async def get_quote(self, symbol: str) -> Quote:
        normalized = normalize_symbol(symbol)
        return await self._with_failover("price", normalized, lambda p: p.get_quote(normalized))

    async def get_quotes(self, symbols: list[str]) -> list[Quote]:
        """Fetch quotes for many symbols, tolerating per-symbol failures.

        Symbols are de-duplicated and fetched concurrently in sub-batches of
        ``quote_batch_size`` with a short pause between sub-batches. The result
        holds only the symbols that succeeded, in first-seen order.
        """
        unique = list(dict.fromkeys(normalize_symbol(s) for s in symbols if s and s.strip()))
        results: list[Quote] = []
        errors: list[str] = []

        async def _fetch(sym: str) -> Quote | None:
            try:
                return await self.get_quote(sym)
            except Exception as e:
                errors.append(f"{sym}: {e}")
                return None

        for i in range(0, len(unique), self.quote_batch_size):
            batch = unique[i:i + self.quote_batch_size]
            batch_results = await asyncio.gather(*(_fetch(sym) for sym in batch))
            results.extend(q for q in batch_results if q is not None)

            if i + self.quote_batch_size < len(unique):
                await self._sleep(self.quote_batch_delay)

        if errors:
            logger.warning("Batch quote fetch errors (%d/%d): %s", len(errors), len(unique), errors)

        return results

    async def validate_symbol(self, symbol: str) -> bool:
        """Check that a symbol exists. Never raises; returns False if both providers fail."""
        normalized = normalize_symbol(symbol)
        if not normalized:
            return False

        try:
            return await self.primary.has_symbol(normalized)
        except Exception as primary_error:
            logger.warning(
                "%s symbol validation failed for %s: %s", self.primary.name, normalized, primary_error
            )

        try:
            return await self.secondary.has_symbol(normalized)
        except Exception as secondary_error:
            logger.error(
                "Both providers failed to validate %s: %s", normalized, secondary_error
            )
            return False

    async def get_history(self, symbol: str, period: str = "1mo") -> list[HistoricalPoint]:
        normalized = normalize_symbol(symbol)
        return await self._with_failover(
            "historical", normalized, lambda p: p.get_history(normalized, period)
        )

    async def aclose(self) -> None:
        await self.primary.aclose()
        await self.secondary.aclose()
