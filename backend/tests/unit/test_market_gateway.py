"""Tests for MarketDataGateway: failover, batch quotes, symbol validation."""

import pytest

from tracker.integrations.market.base import (
    HistoricalPoint,
    MarketDataProvider,
    ProviderError,
    ProviderHardError,
    ProviderRateLimitError,
    Quote,
)
from tracker.integrations.market.gateway import BothProvidersFailedError, MarketDataGateway, normalize_symbol


class FakeProvider(MarketDataProvider):
    """Scripted provider: prices per symbol, or an exception to raise."""

    def __init__(self, name: str, prices: dict | None = None, error: Exception | None = None,
                 symbol_errors: dict | None = None, known: set | None = None):
        self._name = name
        self.prices = prices or {}
        self.error = error
        self.symbol_errors = symbol_errors or {}
        self.known = known or set()
        self.quote_calls: list[str] = []
        self.lookup_calls: list[str] = []
        self.closed = False

    async def get_quote(self, symbol: str) -> Quote:
        self.quote_calls.append(symbol)
        if self.error:
            raise self.error
        if symbol in self.symbol_errors:
            raise self.symbol_errors[symbol]
        if symbol not in self.prices:
            raise ProviderError(self._name, f"No price data found for symbol {symbol}")
        return Quote(symbol=symbol, price=self.prices[symbol], change=0.0, change_percent=0.0)

    async def has_symbol(self, symbol: str) -> bool:
        self.lookup_calls.append(symbol)
        if self.error:
            raise self.error
        return symbol in self.known

    async def get_history(self, symbol: str, period: str = "1mo") -> list[HistoricalPoint]:
        if self.error:
            raise self.error
        return []

    @property
    def name(self) -> str:
        return self._name

    async def aclose(self) -> None:
        self.closed = True


def _gateway(primary, secondary, sleep, batch_size=5):
    return MarketDataGateway(primary, secondary, quote_batch_size=batch_size, quote_batch_delay=0.2, sleep=sleep)


class TestNormalizeSymbol:
    def test_upper_and_strip(self):
        assert normalize_symbol("  aapl ") == "AAPL"


class TestGetQuoteFailover:
    @pytest.mark.asyncio
    async def test_primary_success_skips_secondary(self, fast_sleep):
        primary = FakeProvider("primary", prices={"AAPL": 190.0})
        secondary = FakeProvider("secondary", prices={"AAPL": 1.0})
        gateway = _gateway(primary, secondary, fast_sleep)

        quote = await gateway.get_quote(" aapl")

        assert quote.price == 190.0
        assert primary.quote_calls == ["AAPL"]
        assert secondary.quote_calls == []

    @pytest.mark.asyncio
    async def test_soft_error_fails_over(self, fast_sleep):
        primary = FakeProvider("primary", error=ProviderError("primary", "request failed after 3 attempts"))
        secondary = FakeProvider("secondary", prices={"AAPL": 189.5})
        gateway = _gateway(primary, secondary, fast_sleep)

        quote = await gateway.get_quote("AAPL")

        assert quote.price == 189.5
        assert secondary.quote_calls == ["AAPL"]

    @pytest.mark.asyncio
    async def test_unexpected_exception_fails_over(self, fast_sleep):
        primary = FakeProvider("primary", error=KeyError("05. price"))
        secondary = FakeProvider("secondary", prices={"AAPL": 189.5})
        gateway = _gateway(primary, secondary, fast_sleep)

        assert (await gateway.get_quote("AAPL")).price == 189.5

    @pytest.mark.asyncio
    async def test_hard_error_does_not_fail_over(self, fast_sleep):
        primary = FakeProvider("primary", error=ProviderHardError("primary", "Alpha Vantage error: Invalid API call"))
        secondary = FakeProvider("secondary", prices={"AAPL": 189.5})
        gateway = _gateway(primary, secondary, fast_sleep)

        with pytest.raises(ProviderHardError, match="Invalid API call"):
            await gateway.get_quote("AAPL")
        assert secondary.quote_calls == []

    @pytest.mark.asyncio
    async def test_rate_limit_does_not_fail_over(self, fast_sleep):
        primary = FakeProvider("primary", error=ProviderRateLimitError("primary", "rate limit exceeded"))
        secondary = FakeProvider("secondary", prices={"AAPL": 189.5})
        gateway = _gateway(primary, secondary, fast_sleep)

        with pytest.raises(ProviderRateLimitError):
            await gateway.get_quote("AAPL")
        assert secondary.quote_calls == []

    @pytest.mark.asyncio
    async def test_both_failed_names_both_causes(self, fast_sleep):
        primary = FakeProvider("primary", error=ProviderError("primary", "primary timeout"))
        secondary = FakeProvider("secondary", error=ProviderError("secondary", "secondary 503"))
        gateway = _gateway(primary, secondary, fast_sleep)

        with pytest.raises(BothProvidersFailedError) as exc_info:
            await gateway.get_quote("AAPL")

        err = exc_info.value
        assert "primary timeout" in str(err)
        assert "secondary 503" in str(err)
        assert err.symbol == "AAPL"
        assert err.operation == "price"

    @pytest.mark.asyncio
    async def test_history_fails_over(self, fast_sleep):
        primary = FakeProvider("primary", error=ProviderError("primary", "down"))
        secondary = FakeProvider("secondary")
        gateway = _gateway(primary, secondary, fast_sleep)

        assert await gateway.get_history("aapl", "5d") == []


class TestGetQuotes:
    @pytest.mark.asyncio
    async def test_partial_batch_keeps_successes_in_order(self, fast_sleep):
        primary = FakeProvider("primary", prices={"AAPL": 190.0, "MSFT": 410.0})
        secondary = FakeProvider("secondary", prices={})
        gateway = _gateway(primary, secondary, fast_sleep)

        quotes = await gateway.get_quotes(["AAPL", "BAD", "MSFT"])

        assert [q.symbol for q in quotes] == ["AAPL", "MSFT"]

    @pytest.mark.asyncio
    async def test_deduplicates_symbols(self, fast_sleep):
        primary = FakeProvider("primary", prices={"AAPL": 190.0, "MSFT": 410.0})
        secondary = FakeProvider("secondary")
        gateway = _gateway(primary, secondary, fast_sleep)

        quotes = await gateway.get_quotes(["aapl", "AAPL ", "msft", "AAPL"])

        assert [q.symbol for q in quotes] == ["AAPL", "MSFT"]
        assert primary.quote_calls.count("AAPL") == 1

    @pytest.mark.asyncio
    async def test_sub_batches_pause_between(self, fast_sleep):
        symbols = [f"S{i}" for i in range(12)]
        primary = FakeProvider("primary", prices={s: 1.0 for s in symbols})
        secondary = FakeProvider("secondary")
        gateway = _gateway(primary, secondary, fast_sleep, batch_size=5)

        quotes = await gateway.get_quotes(symbols)

        assert len(quotes) == 12
        # 3 sub-batches -> 2 pauses
        assert fast_sleep.delays == [0.2, 0.2]

    @pytest.mark.asyncio
    async def test_hard_error_on_one_symbol_is_dropped(self, fast_sleep):
        primary = FakeProvider(
            "primary",
            prices={"AAPL": 190.0},
            symbol_errors={"XYZ": ProviderHardError("primary", "Alpha Vantage error: bad symbol")},
        )
        secondary = FakeProvider("secondary")
        gateway = _gateway(primary, secondary, fast_sleep)

        quotes = await gateway.get_quotes(["XYZ", "AAPL"])

        assert [q.symbol for q in quotes] == ["AAPL"]

    @pytest.mark.asyncio
    async def test_empty_input(self, fast_sleep):
        gateway = _gateway(FakeProvider("p"), FakeProvider("s"), fast_sleep)
        assert await gateway.get_quotes([]) == []
        assert fast_sleep.delays == []


class TestValidateSymbol:
    @pytest.mark.asyncio
    async def test_primary_answers(self, fast_sleep):
        primary = FakeProvider("primary", known={"AAPL"})
        secondary = FakeProvider("secondary", known=set())
        gateway = _gateway(primary, secondary, fast_sleep)

        assert await gateway.validate_symbol("aapl") is True
        assert await gateway.validate_symbol("nope") is False
        assert secondary.lookup_calls == []

    @pytest.mark.asyncio
    async def test_falls_back_on_primary_failure(self, fast_sleep):
        primary = FakeProvider("primary", error=ProviderRateLimitError("primary", "rate limit"))
        secondary = FakeProvider("secondary", known={"MSFT"})
        gateway = _gateway(primary, secondary, fast_sleep)

        assert await gateway.validate_symbol("MSFT") is True
        assert secondary.lookup_calls == ["MSFT"]

    @pytest.mark.asyncio
    async def test_never_raises_when_both_fail(self, fast_sleep):
        primary = FakeProvider("primary", error=ProviderError("primary", "down"))
        secondary = FakeProvider("secondary", error=RuntimeError("also down"))
        gateway = _gateway(primary, secondary, fast_sleep)

        assert await gateway.validate_symbol("AAPL") is False

    @pytest.mark.asyncio
    async def test_blank_symbol(self, fast_sleep):
        primary = FakeProvider("primary", known={"AAPL"})
        gateway = _gateway(primary, FakeProvider("secondary"), fast_sleep)

        assert await gateway.validate_symbol("   ") is False
        assert primary.lookup_calls == []


class TestClose:
    @pytest.mark.asyncio
    async def test_aclose_closes_both(self, fast_sleep):
        primary, secondary = FakeProvider("p"), FakeProvider("s")
        await _gateway(primary, secondary, fast_sleep).aclose()
        assert primary.closed and secondary.closed
