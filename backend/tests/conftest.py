import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from dataclasses import replace
from datetime import date, datetime, timezone

import pytest

from tracker.services.repository import (
    CLAIM_TIMEOUT,
    DailyReportRecord,
    EligibleUser,
    NotificationPreferences,
    PortfolioRepository,
    PositionSnapshot,
    ReportAlreadyExistsError,
    UserContact,
)


class InMemoryRepository(PortfolioRepository):
    """Dict-backed repository used by service tests."""

    def __init__(self):
        self.users: dict[str, UserContact] = {}
        self.prefs: dict[str, NotificationPreferences] = {}
        self.positions: dict[str, list[PositionSnapshot]] = {}
        self.reports: dict[tuple[str, date], DailyReportRecord] = {}
        self.calls: list[str] = []

    def add_user(
        self,
        user_id: str,
        email: str | None = None,
        first_name: str | None = "Test",
        positions: list[PositionSnapshot] | None = None,
        **prefs,
    ) -> None:
        self.users[user_id] = UserContact(user_id=user_id, email=email or f"{user_id}@example.com", first_name=first_name)
        self.prefs[user_id] = NotificationPreferences(**prefs)
        self.positions[user_id] = positions if positions is not None else [
            PositionSnapshot(symbol="AAPL", quantity=10, purchase_price=100.0, sector="Technology"),
        ]

    async def find_eligible_users(self, is_weekend: bool) -> list[EligibleUser]:
        self.calls.append("find_eligible_users")
        result = []
        for user_id, user in self.users.items():
            p = self.prefs[user_id]
            if not (p.email_enabled and p.daily_update_enabled and self.positions.get(user_id)):
                continue
            if is_weekend and not p.weekends_enabled:
                continue
            result.append(EligibleUser(
                user_id=user_id,
                email=user.email,
                email_enabled=p.email_enabled,
                daily_update_enabled=p.daily_update_enabled,
                weekends_enabled=p.weekends_enabled,
                alert_threshold=p.alert_threshold,
            ))
        return result

    async def get_user(self, user_id: str) -> UserContact | None:
        return self.users.get(user_id)

    async def get_positions(self, user_id: str) -> list[PositionSnapshot]:
        return list(self.positions.get(user_id, []))

    async def get_notification_settings(self, user_id: str) -> NotificationPreferences:
        if user_id not in self.users:
            raise LookupError(f"User {user_id} not found")
        return self.prefs.setdefault(user_id, NotificationPreferences())

    async def find_daily_report(self, user_id: str, report_date: date) -> DailyReportRecord | None:
        self.calls.append("find_daily_report")
        return self.reports.get((user_id, report_date))

    async def create_daily_report(self, record: DailyReportRecord) -> None:
        key = (record.user_id, record.report_date)
        if key in self.reports:
            raise ReportAlreadyExistsError(record.user_id, record.report_date)
        self.reports[key] = replace(record)

    async def save_daily_report(self, record: DailyReportRecord) -> None:
        key = (record.user_id, record.report_date)
        existing = self.reports.get(key)
        if existing is None:
            self.reports[key] = replace(record)
        else:
            self.reports[key] = replace(
                record,
                email_sent=existing.email_sent,
                email_sent_at=existing.email_sent_at,
                claimed_at=existing.claimed_at,
            )

    async def claim_daily_report(self, user_id: str, report_date: date) -> bool:
        self.calls.append("claim_daily_report")
        now = datetime.now(timezone.utc)
        record = self.reports.get((user_id, report_date))
        if record is None:
            self.reports[(user_id, report_date)] = DailyReportRecord(
                user_id=user_id, report_date=report_date, portfolio_value=0.0,
                daily_change=0.0, daily_change_percent=0.0, claimed_at=now,
            )
            return True
        if record.email_sent:
            return False
        if record.claimed_at is not None and now - record.claimed_at < CLAIM_TIMEOUT:
            return False
        record.claimed_at = now
        return True

    async def release_daily_report(self, user_id: str, report_date: date) -> None:
        self.calls.append("release_daily_report")
        record = self.reports.get((user_id, report_date))
        if record is not None and not record.email_sent:
            record.claimed_at = None

    async def mark_report_sent(self, user_id: str, report_date: date) -> None:
        record = self.reports.get((user_id, report_date))
        if record is not None:
            record.email_sent = True
            record.email_sent_at = datetime.now(timezone.utc)
            record.claimed_at = None


class RecordingSleep:
    """Async sleep stand-in that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def fast_sleep():
    return RecordingSleep()
