"""Market data provider factory."""

from tracker.config import Settings
from tracker.integrations.market.base import MarketDataProvider
from tracker.integrations.market.gateway import MarketDataGateway


def get_market_data_provider(
    source: str = "alpha_vantage",
    api_key: str = "",
    timeout: float = 10.0,
    retry_attempts: int = 3,
    retry_delay: float = 1.0,
) -> MarketDataProvider:
    """Create a market data provider instance.

    Args:
        source: Provider name ("alpha_vantage" or "yahoo")
        api_key: API key for the provider
        timeout: Per-request timeout in seconds
        retry_attempts: Tries per request before giving up
        retry_delay: Base backoff delay in seconds

    Returns:
        MarketDataProvider instance
    """
    if source == "alpha_vantage":
        from tracker.integrations.market.alpha_vantage import AlphaVantageProvider
        return AlphaVantageProvider(
            api_key=api_key, timeout=timeout, retry_attempts=retry_attempts, retry_delay=retry_delay,
        )
    elif source == "yahoo":
        from tracker.integrations.market.yahoo_provider import YahooFinanceProvider
        return YahooFinanceProvider(
            api_key=api_key, timeout=timeout, retry_attempts=retry_attempts, retry_delay=retry_delay,
        )
    else:
        raise ValueError(f"Unknown data source: {source}. Supported: 'alpha_vantage', 'yahoo'")


def build_gateway(settings: Settings) -> MarketDataGateway:
    """Alpha Vantage as primary, Yahoo Finance as fallback."""
    common = {
        "timeout": settings.market_data_timeout_seconds,
        "retry_attempts": settings.market_data_retry_attempts,
        "retry_delay": settings.market_data_retry_delay_ms / 1000,
    }
    return MarketDataGateway(
        primary=get_market_data_provider("alpha_vantage", api_key=settings.alpha_vantage_api_key, **common),
        secondary=get_market_data_provider("yahoo", api_key=settings.yahoo_finance_api_key, **common),
        quote_batch_size=settings.quote_batch_size,
        quote_batch_delay=settings.quote_batch_delay_ms / 1000,
    )
