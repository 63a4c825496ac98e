"""Daily update delivery over email.

The channel looks up the recipient, re-checks their preferences, renders the
report, sends it with its own retry/backoff and finally marks the stored
report as sent.
"""

import asyncio
import logging

from tracker.integrations.market.http import Sleep
from tracker.services.email_service import (
    EmailDeliveryError,
    send_email,
    smtp_configured,
    template_daily_update,
)
from tracker.services.repository import PortfolioRepository
from tracker.services.report_generator import DailyReportData

logger = logging.getLogger(__name__)


class UserNotFoundError(LookupError):
    pass


class InvalidEmailError(ValueError):
    pass


class DeliveryDisabledError(Exception):
    """Email delivery is switched off, for this user or globally."""


class EmailDeliveryChannel:
    """Sends daily reports by email."""

    def __init__(
        self,
        repository: PortfolioRepository,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        sleep: Sleep = asyncio.sleep,
    ):
        self.repository = repository
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self._sleep = sleep

    async def send(self, user_id: str, report: DailyReportData) -> None:
        user = await self.repository.get_user(user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found")

        prefs = await self.repository.get_notification_settings(user_id)
        if not prefs.email_enabled or not prefs.daily_update_enabled:
            raise DeliveryDisabledError(f"Daily update email disabled for user {user_id}")

        if "@" not in (user.email or ""):
            raise InvalidEmailError(f"Invalid email address for user {user_id}")

        if not smtp_configured():
            raise DeliveryDisabledError("Email delivery disabled: SMTP host not configured")

        subject, html, text = template_daily_update(
            report, first_name=user.first_name, alert_threshold=prefs.alert_threshold,
        )
        await self._send_with_retry(user.email, subject, html, text)

        try:
            await self.repository.mark_report_sent(user_id, report.report_date)
        except Exception:
            # Email is already out; the next run's idempotency check may resend
            logger.exception("Failed to mark report as sent for user %s", user_id)

        logger.info("Daily update email sent to %s", user.email)

    async def _send_with_retry(self, to_address: str, subject: str, html: str, text: str) -> None:
        last_error: Exception | None = None

        for attempt in range(1, self.retry_attempts + 1):
            try:
                await asyncio.to_thread(send_email, to_address, subject, html, text)
                return
            except EmailDeliveryError as e:
                last_error = e
                logger.warning("Email send attempt %d/%d failed: %s", attempt, self.retry_attempts, e)
                if attempt < self.retry_attempts:
                    await self._sleep(self.retry_delay * 2 ** (attempt - 1))

        raise EmailDeliveryError(
            f"Failed to send email after {self.retry_attempts} attempts: {last_error}"
        ) from last_error
