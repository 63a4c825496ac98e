"""Tests for the email delivery channel."""

from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tracker.services.email_service import EmailDeliveryError
from tracker.services.notification_service import (
    DeliveryDisabledError,
    EmailDeliveryChannel,
    InvalidEmailError,
    UserNotFoundError,
)
from tracker.services.report_generator import DailyReportData
from tracker.services.repository import DailyReportRecord

TODAY = date(2024, 1, 5)


def _report(user_id="u1") -> DailyReportData:
    return DailyReportData(
        user_id=user_id,
        report_date=TODAY,
        portfolio_value=1000.0,
        daily_change=10.0,
        daily_change_percent=1.0,
        market_summary="ok",
    )


def _store_report(repo, user_id="u1"):
    repo.reports[(user_id, TODAY)] = DailyReportRecord(
        user_id=user_id, report_date=TODAY, portfolio_value=1000.0,
        daily_change=10.0, daily_change_percent=1.0,
    )


@pytest.fixture
def smtp_on():
    with patch("tracker.services.notification_service.smtp_configured", return_value=True):
        yield


class TestEmailDeliveryChannel:
    @pytest.mark.asyncio
    @patch("tracker.services.notification_service.send_email")
    async def test_sends_and_marks_report(self, mock_send, repo, fast_sleep, smtp_on):
        repo.add_user("u1", email="ada@example.com", first_name="Ada")
        _store_report(repo)
        channel = EmailDeliveryChannel(repo, sleep=fast_sleep)

        await channel.send("u1", _report())

        mock_send.assert_called_once()
        to_address, subject, html, text = mock_send.call_args[0]
        assert to_address == "ada@example.com"
        assert subject.startswith("Daily Portfolio Update - ")
        assert "Hello Ada," in text
        assert repo.reports[("u1", TODAY)].email_sent is True

    @pytest.mark.asyncio
    async def test_unknown_user(self, repo, fast_sleep, smtp_on):
        channel = EmailDeliveryChannel(repo, sleep=fast_sleep)
        with pytest.raises(UserNotFoundError, match="User ghost not found"):
            await channel.send("ghost", _report("ghost"))

    @pytest.mark.asyncio
    async def test_disabled_preferences(self, repo, fast_sleep, smtp_on):
        repo.add_user("u1", email_enabled=False)
        channel = EmailDeliveryChannel(repo, sleep=fast_sleep)
        with pytest.raises(DeliveryDisabledError, match="disabled"):
            await channel.send("u1", _report())

    @pytest.mark.asyncio
    async def test_invalid_email(self, repo, fast_sleep, smtp_on):
        repo.add_user("u1", email="not-an-address")
        channel = EmailDeliveryChannel(repo, sleep=fast_sleep)
        with pytest.raises(InvalidEmailError, match="Invalid email"):
            await channel.send("u1", _report())

    @pytest.mark.asyncio
    @patch("tracker.services.notification_service.smtp_configured", return_value=False)
    async def test_smtp_not_configured(self, _mock_configured, repo, fast_sleep):
        repo.add_user("u1")
        channel = EmailDeliveryChannel(repo, sleep=fast_sleep)
        with pytest.raises(DeliveryDisabledError, match="SMTP host not configured"):
            await channel.send("u1", _report())

    @pytest.mark.asyncio
    @patch("tracker.services.notification_service.send_email")
    async def test_retries_transient_smtp_failures(self, mock_send, repo, fast_sleep, smtp_on):
        repo.add_user("u1")
        _store_report(repo)
        mock_send.side_effect = [EmailDeliveryError("421 try later"), None]
        channel = EmailDeliveryChannel(repo, retry_attempts=3, retry_delay=1.0, sleep=fast_sleep)

        await channel.send("u1", _report())

        assert mock_send.call_count == 2
        assert fast_sleep.delays == [1.0]
        assert repo.reports[("u1", TODAY)].email_sent is True

    @pytest.mark.asyncio
    @patch("tracker.services.notification_service.send_email")
    async def test_gives_up_after_attempts(self, mock_send, repo, fast_sleep, smtp_on):
        repo.add_user("u1")
        _store_report(repo)
        mock_send.side_effect = EmailDeliveryError("connection refused")
        channel = EmailDeliveryChannel(repo, retry_attempts=3, retry_delay=0.5, sleep=fast_sleep)

        with pytest.raises(EmailDeliveryError, match="after 3 attempts"):
            await channel.send("u1", _report())

        assert fast_sleep.delays == [0.5, 1.0]
        assert repo.reports[("u1", TODAY)].email_sent is False

    @pytest.mark.asyncio
    @patch("tracker.services.notification_service.send_email", MagicMock())
    async def test_mark_sent_failure_is_not_raised(self, repo, fast_sleep, smtp_on):
        repo.add_user("u1")
        repo.mark_report_sent = AsyncMock(side_effect=RuntimeError("db down"))
        channel = EmailDeliveryChannel(repo, sleep=fast_sleep)

        await channel.send("u1", _report())

        repo.mark_report_sent.assert_awaited_once_with("u1", TODAY)
