"""Yahoo Finance data provider via the yfapi.net REST API (secondary)."""

import asyncio
import logging
from datetime import datetime, timezone

import httpx

from tracker.integrations.market.base import HistoricalPoint, MarketDataProvider, ProviderError, Quote
from tracker.integrations.market.http import Sleep, fetch_json

logger = logging.getLogger(__name__)

BASE_URL = "https://yfapi.net"

# Supported history periods; anything else falls back to one month
_PERIOD_TO_RANGE = {
    "1d": "1d",
    "5d": "5d",
    "1mo": "1mo",
    "3mo": "3mo",
    "6mo": "6mo",
    "1y": "1y",
    "2y": "2y",
    "5y": "5y",
    "10y": "10y",
    "ytd": "ytd",
    "max": "max",
}


def period_to_range(period: str) -> str:
    """Map a history period to a Yahoo chart range."""
    return _PERIOD_TO_RANGE.get(period, "1mo")


class YahooFinanceProvider(MarketDataProvider):
    """Yahoo Finance REST provider (API key sent as X-API-KEY)."""

    def __init__(
        self,
        api_key: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        sleep: Sleep = asyncio.sleep,
    ):
        if not api_key:
            logger.warning("YAHOO_FINANCE_API_KEY not set; Yahoo Finance requests will fail")
        self.api_key = api_key
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._client = client
        self._owns_client = client is None

    async def _get(self, operation: str, path: str, params: dict) -> dict:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        data = await fetch_json(
            self._client,
            f"{BASE_URL}{path}",
            provider=self.name,
            operation=operation,
            params=params,
            headers={"X-API-KEY": self.api_key},
            attempts=self.retry_attempts,
            base_delay=self.retry_delay,
            timeout=self.timeout,
            sleep=self._sleep,
        )
        if not isinstance(data, dict):
            raise ProviderError(self.name, f"Unexpected {operation} payload from {self.name}")
        return data

    async def _quote_results(self, operation: str, symbol: str) -> list[dict]:
        data = await self._get(operation, "/v6/finance/quote", {"symbols": symbol})
        return (data.get("quoteResponse") or {}).get("result") or []

    async def get_quote(self, symbol: str) -> Quote:
        results = await self._quote_results("quote", symbol)
        if not results:
            raise ProviderError(self.name, f"No price data found for symbol {symbol} from Yahoo Finance")

        quote = results[0]
        volume = quote.get("regularMarketVolume")
        return Quote(
            symbol=symbol,
            price=float(quote.get("regularMarketPrice") or 0),
            change=float(quote.get("regularMarketChange") or 0),
            change_percent=float(quote.get("regularMarketChangePercent") or 0),
            volume=int(volume) if volume else None,
        )

    async def has_symbol(self, symbol: str) -> bool:
        # No search endpoint on this API; a priced quote means the symbol exists
        results = await self._quote_results("search", symbol)
        if not results:
            return False
        return float(results[0].get("regularMarketPrice") or 0) > 0

    async def get_history(self, symbol: str, period: str = "1mo") -> list[HistoricalPoint]:
        data = await self._get(
            "history",
            f"/v8/finance/chart/{symbol}",
            {"range": period_to_range(period), "interval": "1d"},
        )

        results = (data.get("chart") or {}).get("result") or []
        if not results:
            raise ProviderError(self.name, f"No historical data found for symbol {symbol} from Yahoo Finance")

        result = results[0]
        timestamps = result.get("timestamp") or []
        try:
            quotes = result["indicators"]["quote"][0]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(self.name, f"Malformed chart payload for {symbol}") from e

        def _at(series: str, i: int) -> float:
            values = quotes.get(series) or []
            return values[i] if i < len(values) and values[i] is not None else 0

        points = [
            HistoricalPoint(
                date=datetime.fromtimestamp(ts, tz=timezone.utc),
                open=float(_at("open", i)),
                high=float(_at("high", i)),
                low=float(_at("low", i)),
                close=float(_at("close", i)),
                volume=int(_at("volume", i)),
            )
            for i, ts in enumerate(timestamps)
        ]
        points.sort(key=lambda p: p.date, reverse=True)
        return points

    @property
    def name(self) -> str:
        return "yahoo"

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
