"""Daily portfolio report generation.

Values a user's positions with live quotes from the market data gateway,
picks out significant movers, aggregates per-sector performance and
persists the result as an unsent daily report.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import date

import pandas as pd

from tracker.integrations.market.gateway import MarketDataGateway
from tracker.services.repository import DailyReportRecord, PortfolioRepository, PositionSnapshot

logger = logging.getLogger(__name__)


class MarketDataUnavailableError(Exception):
    """No quote could be fetched for any of a user's positions."""


class ReportGenerationError(Exception):
    pass


@dataclass
class SignificantMover:
    symbol: str
    quantity: float
    purchase_price: float
    current_price: float
    price_change: float
    price_change_percent: float
    is_positive: bool


@dataclass
class SectorPerformance:
    sector: str
    value: float
    change: float
    change_percent: float
    weight: float


@dataclass
class DailyReportData:
    user_id: str
    report_date: date
    portfolio_value: float
    daily_change: float
    daily_change_percent: float
    significant_movers: list[SignificantMover] = field(default_factory=list)
    sector_performance: list[SectorPerformance] = field(default_factory=list)
    market_summary: str = ""

    def to_record(self) -> DailyReportRecord:
        return DailyReportRecord(
            user_id=self.user_id,
            report_date=self.report_date,
            portfolio_value=self.portfolio_value,
            daily_change=self.daily_change,
            daily_change_percent=self.daily_change_percent,
            significant_movers=[asdict(m) for m in self.significant_movers],
            sector_performance=[asdict(s) for s in self.sector_performance],
            market_summary=self.market_summary,
        )


def detect_significant_movers(
    positions: list[PositionSnapshot],
    prices: dict[str, float],
    threshold: float,
) -> list[SignificantMover]:
    """Positions whose price moved at least ``threshold`` percent from cost.

    Sorted by absolute move, largest first. Positions without a live price
    are ignored.
    """
    movers = []
    for pos in positions:
        price = prices.get(pos.symbol.upper())
        if price is None or not pos.purchase_price:
            continue
        change = price - pos.purchase_price
        change_pct = change / pos.purchase_price * 100
        if abs(change_pct) >= threshold:
            movers.append(SignificantMover(
                symbol=pos.symbol,
                quantity=pos.quantity,
                purchase_price=pos.purchase_price,
                current_price=price,
                price_change=round(change, 4),
                price_change_percent=round(change_pct, 4),
                is_positive=change_pct > 0,
            ))
    movers.sort(key=lambda m: abs(m.price_change_percent), reverse=True)
    return movers


def sector_performance(positions: list[PositionSnapshot], prices: dict[str, float]) -> list[SectorPerformance]:
    """Value, change and weight per sector, largest sector first."""
    if not positions:
        return []

    df = pd.DataFrame([
        {
            "sector": p.sector or "Unknown",
            "value": p.quantity * _price_for(p, prices),
            "cost": p.quantity * p.purchase_price,
        }
        for p in positions
    ])
    grouped = df.groupby("sector", as_index=False)[["value", "cost"]].sum()
    total_value = grouped["value"].sum()
    grouped["change"] = grouped["value"] - grouped["cost"]
    grouped["change_percent"] = (grouped["change"] / grouped["cost"].where(grouped["cost"] != 0) * 100).fillna(0.0)
    grouped["weight"] = (grouped["value"] / total_value * 100) if total_value else 0.0
    grouped = grouped.sort_values("value", ascending=False)

    return [
        SectorPerformance(
            sector=row.sector,
            value=round(float(row.value), 2),
            change=round(float(row.change), 2),
            change_percent=round(float(row.change_percent), 4),
            weight=round(float(row.weight), 4),
        )
        for row in grouped.itertuples(index=False)
    ]


def _price_for(position: PositionSnapshot, prices: dict[str, float]) -> float:
    # Live quote, then last stored price, then cost
    live = prices.get(position.symbol.upper())
    if live is not None:
        return live
    if position.current_price is not None:
        return position.current_price
    return position.purchase_price


def build_market_summary(
    positions: list[PositionSnapshot],
    portfolio_value: float,
    movers: list[SignificantMover],
    sectors: list[SectorPerformance],
) -> str:
    count = len(positions)
    summary = (
        f"Portfolio contains {count} position{'s' if count != 1 else ''} "
        f"with a total value of ${portfolio_value:,.2f}."
    )
    if movers:
        summary += (
            f" {len(movers)} position{'s' if len(movers) != 1 else ''} "
            "had significant price movements today."
        )
    else:
        summary += " No significant price movements detected today."

    if sectors:
        best = max(sectors, key=lambda s: s.change_percent)
        summary += f" Best performing sector: {best.sector} ({best.change_percent:+.2f}%)."
    return summary


class DailyReportGenerator:
    """Builds and persists a user's daily report."""

    def __init__(self, repository: PortfolioRepository, gateway: MarketDataGateway):
        self.repository = repository
        self.gateway = gateway

    async def generate_daily_report(self, user_id: str, report_date: date | None = None) -> DailyReportData:
        report_date = report_date or date.today()
        try:
            report = await self._build(user_id, report_date)
        except (MarketDataUnavailableError, LookupError):
            raise
        except Exception as e:
            logger.error("Failed to generate daily report for user %s: %s", user_id, e)
            raise ReportGenerationError(f"Unable to generate daily report: {e}") from e

        await self.repository.save_daily_report(report.to_record())
        return report

    async def _build(self, user_id: str, report_date: date) -> DailyReportData:
        positions = await self.repository.get_positions(user_id)
        if not positions:
            return DailyReportData(
                user_id=user_id,
                report_date=report_date,
                portfolio_value=0.0,
                daily_change=0.0,
                daily_change_percent=0.0,
                market_summary="No positions in portfolio",
            )

        settings = await self.repository.get_notification_settings(user_id)

        quotes = await self.gateway.get_quotes([p.symbol for p in positions])
        if not quotes:
            raise MarketDataUnavailableError(
                f"No market data available for any of {len(positions)} positions of user {user_id}"
            )
        prices = {q.symbol: q.price for q in quotes}

        current_value = sum(p.quantity * _price_for(p, prices) for p in positions)
        cost_basis = sum(p.quantity * p.purchase_price for p in positions)
        # Measured against cost basis, not the previous close
        daily_change = current_value - cost_basis
        daily_change_percent = daily_change / current_value * 100 if current_value > 0 else 0.0

        movers = detect_significant_movers(positions, prices, settings.alert_threshold)
        sectors = sector_performance(positions, prices)

        return DailyReportData(
            user_id=user_id,
            report_date=report_date,
            portfolio_value=round(current_value, 2),
            daily_change=round(daily_change, 2),
            daily_change_percent=round(daily_change_percent, 4),
            significant_movers=movers,
            sector_performance=sectors,
            market_summary=build_market_summary(positions, current_value, movers, sectors),
        )
