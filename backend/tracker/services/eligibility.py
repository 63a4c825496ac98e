"""Which users are due a daily update today."""

import logging
from datetime import date

from tracker.services.repository import EligibleUser, NotificationPreferences, PortfolioRepository

logger = logging.getLogger(__name__)


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5  # Saturday=5, Sunday=6


def allows_daily_update(prefs: EligibleUser | NotificationPreferences, day: date) -> bool:
    """Email on, daily updates on, and weekend opt-in when ``day`` is a weekend."""
    if not prefs.email_enabled or not prefs.daily_update_enabled:
        return False
    if is_weekend(day) and not prefs.weekends_enabled:
        return False
    return True


class EligibilityFilter:
    def __init__(self, repository: PortfolioRepository):
        self.repository = repository

    async def eligible_users(self, today: date) -> list[EligibleUser]:
        users = await self.repository.find_eligible_users(is_weekend(today))
        eligible = [u for u in users if allows_daily_update(u, today)]
        if len(eligible) != len(users):
            logger.info(
                "Dropped %d user(s) whose preferences exclude %s",
                len(users) - len(eligible), today.isoformat(),
            )
        return eligible
