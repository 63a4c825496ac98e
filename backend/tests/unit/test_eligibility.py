"""Tests for daily update eligibility."""

from datetime import date

import pytest

from tracker.services.eligibility import EligibilityFilter, allows_daily_update, is_weekend
from tracker.services.repository import NotificationPreferences

FRIDAY = date(2024, 1, 5)
SATURDAY = date(2024, 1, 6)
SUNDAY = date(2024, 1, 7)


class TestIsWeekend:
    def test_weekdays(self):
        assert not is_weekend(date(2024, 1, 1))  # Monday
        assert not is_weekend(FRIDAY)

    def test_weekend_days(self):
        assert is_weekend(SATURDAY)
        assert is_weekend(SUNDAY)


class TestAllowsDailyUpdate:
    def test_defaults_allow_weekdays_only(self):
        prefs = NotificationPreferences()
        assert allows_daily_update(prefs, FRIDAY)
        assert not allows_daily_update(prefs, SATURDAY)

    def test_weekend_opt_in(self):
        prefs = NotificationPreferences(weekends_enabled=True)
        assert allows_daily_update(prefs, SUNDAY)

    def test_email_disabled(self):
        assert not allows_daily_update(NotificationPreferences(email_enabled=False), FRIDAY)

    def test_daily_update_disabled(self):
        assert not allows_daily_update(NotificationPreferences(daily_update_enabled=False), FRIDAY)


class TestEligibilityFilter:
    @pytest.mark.asyncio
    async def test_weekday_includes_all_enabled_users(self, repo):
        repo.add_user("u1")
        repo.add_user("u2", weekends_enabled=True)
        repo.add_user("u3", email_enabled=False)
        repo.add_user("u4", positions=[])

        users = await EligibilityFilter(repo).eligible_users(FRIDAY)

        assert [u.user_id for u in users] == ["u1", "u2"]

    @pytest.mark.asyncio
    async def test_saturday_only_weekend_opt_ins(self, repo):
        repo.add_user("u1", weekends_enabled=True)
        repo.add_user("u2", weekends_enabled=False)

        users = await EligibilityFilter(repo).eligible_users(SATURDAY)

        assert [u.user_id for u in users] == ["u1"]

    @pytest.mark.asyncio
    async def test_refilters_repository_results(self, repo):
        repo.add_user("u1")

        async def loose_query(is_weekend):
            from tracker.services.repository import EligibleUser
            return [
                EligibleUser(user_id="u1", email="u1@example.com"),
                EligibleUser(user_id="u2", email="u2@example.com", weekends_enabled=False),
            ]

        repo.find_eligible_users = loose_query

        users = await EligibilityFilter(repo).eligible_users(SUNDAY)

        assert users == []
