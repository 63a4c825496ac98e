"""Alpha Vantage data provider (primary)."""

import asyncio
import logging
from datetime import datetime, timezone

import httpx

from tracker.integrations.market.base import (
    HistoricalPoint,
    MarketDataProvider,
    ProviderError,
    ProviderHardError,
    ProviderRateLimitError,
    Quote,
)
from tracker.integrations.market.http import Sleep, fetch_json

logger = logging.getLogger(__name__)

BASE_URL = "https://www.alphavantage.co/query"


class AlphaVantageProvider(MarketDataProvider):
    """Alpha Vantage REST API (API key required)."""

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
            logger.warning("ALPHA_VANTAGE_API_KEY not set; Alpha Vantage requests will fail")
        self.api_key = api_key
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._client = client
        self._owns_client = client is None

    async def _query(self, operation: str, params: dict) -> dict:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        data = await fetch_json(
            self._client,
            BASE_URL,
            provider=self.name,
            operation=operation,
            params={**params, "apikey": self.api_key},
            attempts=self.retry_attempts,
            base_delay=self.retry_delay,
            timeout=self.timeout,
            sleep=self._sleep,
        )
        if not isinstance(data, dict):
            raise ProviderError(self.name, f"Unexpected {operation} payload from {self.name}")

        # Alpha Vantage reports errors and throttling in a 200 body
        if data.get("Error Message"):
            raise ProviderHardError(self.name, f"Alpha Vantage error: {data['Error Message']}")
        if data.get("Note") or data.get("Information"):
            raise ProviderRateLimitError(self.name, "Alpha Vantage API rate limit exceeded")
        return data

    async def get_quote(self, symbol: str) -> Quote:
        data = await self._query("quote", {"function": "GLOBAL_QUOTE", "symbol": symbol})

        quote = data.get("Global Quote") or {}
        if not quote.get("05. price"):
            raise ProviderError(self.name, f"No price data found for symbol {symbol}")

        try:
            price = float(quote["05. price"])
            change = float(quote.get("09. change") or 0)
            change_percent = float(str(quote.get("10. change percent") or "0").rstrip("%"))
        except ValueError as e:
            raise ProviderError(self.name, f"Malformed quote for {symbol}: {e}") from e

        volume = quote.get("06. volume")
        return Quote(
            symbol=symbol,
            price=price,
            change=change,
            change_percent=change_percent,
            volume=int(volume) if volume and volume.isdigit() else None,
        )

    async def has_symbol(self, symbol: str) -> bool:
        data = await self._query("search", {"function": "SYMBOL_SEARCH", "keywords": symbol})
        matches = data.get("bestMatches") or []
        return any(
            (match.get("1. symbol") or "").upper() == symbol.upper()
            for match in matches
        )

    async def get_history(self, symbol: str, period: str = "1mo") -> list[HistoricalPoint]:
        # Day-based periods use the daily series, everything else the monthly one
        if "d" in period:
            function, series_key = "TIME_SERIES_DAILY", "Time Series (Daily)"
        else:
            function, series_key = "TIME_SERIES_MONTHLY", "Monthly Time Series"

        data = await self._query("history", {"function": function, "symbol": symbol})
        series = data.get(series_key)
        if not series:
            raise ProviderError(self.name, f"No historical data found for symbol {symbol}")

        points = []
        try:
            for day, values in series.items():
                points.append(HistoricalPoint(
                    date=datetime.strptime(day, "%Y-%m-%d").replace(tzinfo=timezone.utc),
                    open=float(values["1. open"]),
                    high=float(values["2. high"]),
                    low=float(values["3. low"]),
                    close=float(values["4. close"]),
                    volume=int(values["5. volume"]),
                ))
        except (KeyError, ValueError) as e:
            raise ProviderError(self.name, f"Malformed history for {symbol}: {e}") from e

        points.sort(key=lambda p: p.date, reverse=True)
        return points

    @property
    def name(self) -> str:
        return "alpha_vantage"

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
