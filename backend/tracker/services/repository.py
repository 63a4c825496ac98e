"""Persistence boundary for the daily update pipeline.

``PortfolioRepository`` is the interface the scheduler, report generator and
delivery channel depend on; ``SqlPortfolioRepository`` implements it over the
SQLAlchemy models. Reads return plain dataclass snapshots so callers never
hold live ORM objects across suspension points.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import exists, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tracker.models.daily_report import DailyReport
from tracker.models.notification import NotificationSettings
from tracker.models.position import StockPosition
from tracker.models.user import User

logger = logging.getLogger(__name__)

DEFAULT_ALERT_THRESHOLD = 5.0
# A claim older than this is treated as abandoned by a crashed worker
CLAIM_TIMEOUT = timedelta(minutes=30)
REPORT_KEY_CONSTRAINT = "uq_daily_report_user_date"


class ReportAlreadyExistsError(Exception):
    """A daily report for (user_id, report_date) already exists."""

    def __init__(self, user_id: str, report_date: date):
        self.user_id = user_id
        self.report_date = report_date
        super().__init__(f"Daily report already exists for user {user_id} on {report_date.isoformat()}")


@dataclass
class EligibleUser:
    user_id: str
    email: str
    email_enabled: bool = True
    daily_update_enabled: bool = True
    weekends_enabled: bool = False
    alert_threshold: float = DEFAULT_ALERT_THRESHOLD


@dataclass
class NotificationPreferences:
    email_enabled: bool = True
    daily_update_enabled: bool = True
    update_time: str = "09:00"
    alert_threshold: float = DEFAULT_ALERT_THRESHOLD
    weekends_enabled: bool = False


@dataclass
class UserContact:
    user_id: str
    email: str
    first_name: str | None = None


@dataclass
class PositionSnapshot:
    symbol: str
    quantity: float
    purchase_price: float
    current_price: float | None = None
    sector: str | None = None


@dataclass
class DailyReportRecord:
    user_id: str
    report_date: date
    portfolio_value: float
    daily_change: float
    daily_change_percent: float
    significant_movers: list = field(default_factory=list)
    sector_performance: list = field(default_factory=list)
    market_summary: str | None = None
    email_sent: bool = False
    email_sent_at: datetime | None = None
    claimed_at: datetime | None = None


class PortfolioRepository(ABC):
    """Reads and writes the daily update pipeline needs."""

    @abstractmethod
    async def find_eligible_users(self, is_weekend: bool) -> list[EligibleUser]:
        """Users with email and daily updates on and at least one position.

        On weekends only users who opted into weekend updates are returned.
        """
        ...

    @abstractmethod
    async def get_user(self, user_id: str) -> UserContact | None:
        ...

    @abstractmethod
    async def get_positions(self, user_id: str) -> list[PositionSnapshot]:
        ...

    @abstractmethod
    async def get_notification_settings(self, user_id: str) -> NotificationPreferences:
        """Live preferences; missing rows are created with defaults."""
        ...

    @abstractmethod
    async def find_daily_report(self, user_id: str, report_date: date) -> DailyReportRecord | None:
        ...

    @abstractmethod
    async def create_daily_report(self, record: DailyReportRecord) -> None:
        """Insert a new report. Raises ReportAlreadyExistsError on a duplicate key."""
        ...

    @abstractmethod
    async def save_daily_report(self, record: DailyReportRecord) -> None:
        """Insert, or refresh the figures of the existing row for the same key.

        Never touches ``email_sent`` on an existing row.
        """
        ...

    @abstractmethod
    async def claim_daily_report(self, user_id: str, report_date: date) -> bool:
        """Atomically take the (user_id, report_date) key for one update.

        Returns False when the report was already sent or another update holds
        a live claim. A placeholder row is inserted if none exists yet.
        """
        ...

    @abstractmethod
    async def release_daily_report(self, user_id: str, report_date: date) -> None:
        """Drop the claim so a retry or a later run can take the key again."""
        ...

    @abstractmethod
    async def mark_report_sent(self, user_id: str, report_date: date) -> None:
        ...


def _to_uuid(user_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(user_id))
    except ValueError as e:
        raise LookupError(f"User {user_id} not found") from e


def _to_record(row: DailyReport) -> DailyReportRecord:
    return DailyReportRecord(
        user_id=str(row.user_id),
        report_date=row.report_date,
        portfolio_value=row.portfolio_value,
        daily_change=row.daily_change,
        daily_change_percent=row.daily_change_percent,
        significant_movers=list(row.significant_movers or []),
        sector_performance=list(row.sector_performance or []),
        market_summary=row.market_summary,
        email_sent=row.email_sent,
        email_sent_at=row.email_sent_at,
        claimed_at=row.claimed_at,
    )


def _is_report_key_violation(error: IntegrityError) -> bool:
    # Postgres names the constraint; SQLite lists the key columns instead
    message = str(error.orig)
    return (
        REPORT_KEY_CONSTRAINT in message
        or "daily_reports.user_id, daily_reports.report_date" in message
    )


class SqlPortfolioRepository(PortfolioRepository):
    """SQLAlchemy async implementation; one short session per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_eligible_users(self, is_weekend: bool) -> list[EligibleUser]:
        has_position = exists().where(StockPosition.user_id == User.id)
        query = (
            select(User, NotificationSettings)
            .join(NotificationSettings, NotificationSettings.user_id == User.id)
            .where(
                NotificationSettings.email_enabled.is_(True),
                NotificationSettings.daily_update_enabled.is_(True),
                has_position,
            )
            .order_by(User.created_at, User.id)
        )
        if is_weekend:
            query = query.where(NotificationSettings.weekends_enabled.is_(True))

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [
                EligibleUser(
                    user_id=str(user.id),
                    email=user.email,
                    email_enabled=prefs.email_enabled,
                    daily_update_enabled=prefs.daily_update_enabled,
                    weekends_enabled=prefs.weekends_enabled,
                    alert_threshold=prefs.alert_threshold,
                )
                for user, prefs in result.all()
            ]

    async def get_user(self, user_id: str) -> UserContact | None:
        try:
            uid = _to_uuid(user_id)
        except LookupError:
            return None
        async with self._session_factory() as session:
            user = await session.get(User, uid)
            if user is None:
                return None
            return UserContact(user_id=str(user.id), email=user.email, first_name=user.first_name)

    async def get_positions(self, user_id: str) -> list[PositionSnapshot]:
        uid = _to_uuid(user_id)
        async with self._session_factory() as session:
            result = await session.execute(
                select(StockPosition)
                .where(StockPosition.user_id == uid)
                .order_by(StockPosition.symbol)
            )
            return [
                PositionSnapshot(
                    symbol=p.symbol,
                    quantity=p.quantity,
                    purchase_price=p.purchase_price,
                    current_price=p.current_price,
                    sector=p.sector,
                )
                for p in result.scalars().all()
            ]

    async def get_notification_settings(self, user_id: str) -> NotificationPreferences:
        uid = _to_uuid(user_id)
        async with self._session_factory() as session:
            prefs = await session.scalar(
                select(NotificationSettings).where(NotificationSettings.user_id == uid)
            )
            if prefs is None:
                if await session.get(User, uid) is None:
                    raise LookupError(f"User {user_id} not found")
                prefs = NotificationSettings(
                    user_id=uid,
                    email_enabled=True,
                    daily_update_enabled=True,
                    update_time="09:00",
                    alert_threshold=DEFAULT_ALERT_THRESHOLD,
                    weekends_enabled=False,
                )
                session.add(prefs)
                try:
                    await session.commit()
                except IntegrityError:
                    # Created concurrently; read the winner
                    await session.rollback()
                    prefs = await session.scalar(
                        select(NotificationSettings).where(NotificationSettings.user_id == uid)
                    )

            return NotificationPreferences(
                email_enabled=prefs.email_enabled,
                daily_update_enabled=prefs.daily_update_enabled,
                update_time=prefs.update_time,
                alert_threshold=prefs.alert_threshold,
                weekends_enabled=prefs.weekends_enabled,
            )

    async def find_daily_report(self, user_id: str, report_date: date) -> DailyReportRecord | None:
        uid = _to_uuid(user_id)
        async with self._session_factory() as session:
            row = await session.scalar(
                select(DailyReport).where(
                    DailyReport.user_id == uid,
                    DailyReport.report_date == report_date,
                )
            )
            return _to_record(row) if row is not None else None

    async def create_daily_report(self, record: DailyReportRecord) -> None:
        async with self._session_factory() as session:
            session.add(DailyReport(
                user_id=_to_uuid(record.user_id),
                report_date=record.report_date,
                portfolio_value=record.portfolio_value,
                daily_change=record.daily_change,
                daily_change_percent=record.daily_change_percent,
                significant_movers=record.significant_movers,
                sector_performance=record.sector_performance,
                market_summary=record.market_summary,
                email_sent=record.email_sent,
                email_sent_at=record.email_sent_at,
                claimed_at=record.claimed_at,
            ))
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                if not _is_report_key_violation(e):
                    raise
                raise ReportAlreadyExistsError(record.user_id, record.report_date) from e

    async def save_daily_report(self, record: DailyReportRecord) -> None:
        try:
            await self.create_daily_report(record)
            return
        except ReportAlreadyExistsError:
            logger.debug(
                "Report for user %s on %s exists, refreshing figures",
                record.user_id, record.report_date,
            )

        async with self._session_factory() as session:
            await session.execute(
                update(DailyReport)
                .where(
                    DailyReport.user_id == _to_uuid(record.user_id),
                    DailyReport.report_date == record.report_date,
                )
                .values(
                    portfolio_value=record.portfolio_value,
                    daily_change=record.daily_change,
                    daily_change_percent=record.daily_change_percent,
                    significant_movers=record.significant_movers,
                    sector_performance=record.sector_performance,
                    market_summary=record.market_summary,
                )
            )
            await session.commit()

    async def claim_daily_report(self, user_id: str, report_date: date) -> bool:
        now = datetime.now(timezone.utc)
        try:
            await self.create_daily_report(DailyReportRecord(
                user_id=user_id,
                report_date=report_date,
                portfolio_value=0.0,
                daily_change=0.0,
                daily_change_percent=0.0,
                claimed_at=now,
            ))
            return True
        except ReportAlreadyExistsError:
            pass

        async with self._session_factory() as session:
            result = await session.execute(
                update(DailyReport)
                .where(
                    DailyReport.user_id == _to_uuid(user_id),
                    DailyReport.report_date == report_date,
                    DailyReport.email_sent.is_(False),
                    or_(
                        DailyReport.claimed_at.is_(None),
                        DailyReport.claimed_at < now - CLAIM_TIMEOUT,
                    ),
                )
                .values(claimed_at=now)
            )
            await session.commit()
            return result.rowcount == 1

    async def release_daily_report(self, user_id: str, report_date: date) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(DailyReport)
                .where(
                    DailyReport.user_id == _to_uuid(user_id),
                    DailyReport.report_date == report_date,
                    DailyReport.email_sent.is_(False),
                )
                .values(claimed_at=None)
            )
            await session.commit()

    async def mark_report_sent(self, user_id: str, report_date: date) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(DailyReport)
                .where(
                    DailyReport.user_id == _to_uuid(user_id),
                    DailyReport.report_date == report_date,
                )
                .values(email_sent=True, email_sent_at=datetime.now(timezone.utc), claimed_at=None)
            )
            await session.commit()
