"""Abstract base class and shared types for market data providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass
class Quote:
    symbol: str
    price: float
    change: float
    change_percent: float
    volume: int | None = None
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class HistoricalPoint:
    date: datetime
    open: float
    high: float
    low: float
    close: float
    volume: int


class ProviderError(Exception):
    """Soft provider failure (network, timeout, unexpected payload shape).

    Safe to retry against a different provider.
    """

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(message)


class ProviderHardError(ProviderError):
    """Explicit failure signal from a provider (error payload).

    Another provider would not fix it, so the gateway does not fail over.
    """


class ProviderRateLimitError(ProviderHardError):
    """Provider reported that its rate limit is exhausted."""


class MarketDataProvider(ABC):
    """Unified async interface for quote, lookup and history retrieval.

    Implementations raise ``ProviderError`` (or a subclass) on failure and
    never return placeholder data.
    """

    @abstractmethod
    async def get_quote(self, symbol: str) -> Quote:
        """Fetch the latest quote for an already-normalized symbol."""
        ...

    @abstractmethod
    async def has_symbol(self, symbol: str) -> bool:
        """Return True when the provider knows the exact symbol.

        Raises ``ProviderError`` when the lookup itself fails.
        """
        ...

    @abstractmethod
    async def get_history(self, symbol: str, period: str = "1mo") -> list[HistoricalPoint]:
        """Fetch daily/monthly OHLCV points, most recent first."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name identifier."""
        ...

    @property
    def requires_credentials(self) -> bool:
        """Whether this provider requires an API key."""
        return True

    async def aclose(self) -> None:
        """Release HTTP resources held by the provider."""
        return None
