"""Daily update scheduler.

Arms an APScheduler cron job that runs the daily update for every eligible
user. A run partitions users into fixed-size batches, processes each batch
concurrently, isolates per-user failures into run statistics and never lets
two runs overlap inside one process.

Duplicates across overlapping runs, manual triggers and processes are
prevented by claiming the unique ``(user_id, report_date)`` report key before
any email is generated.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from tracker.config import Settings
from tracker.core.metrics import SCHEDULER_RUN_DURATION, SCHEDULER_RUNS_TOTAL, SCHEDULER_USER_UPDATES
from tracker.services.eligibility import EligibilityFilter, allows_daily_update
from tracker.services.repository import PortfolioRepository
from tracker.services.report_generator import DailyReportData

logger = logging.getLogger(__name__)

JOB_ID = "daily-portfolio-update"

# Lower-cased substrings that mark an error as permanent for this user
NON_RETRYABLE_MESSAGES = ("not found", "invalid email", "disabled")


class InvalidScheduleError(ValueError):
    """Malformed cron expression, timezone or scheduler configuration."""


class NonRetryableUserError(Exception):
    def __init__(self, user_id: str, cause: Exception):
        self.user_id = user_id
        self.cause = cause
        super().__init__(str(cause))


class RetryExhaustedError(Exception):
    def __init__(self, user_id: str, attempts: int, last_error: Exception):
        self.user_id = user_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Failed to process daily update for user {user_id} "
            f"after {attempts} attempts: {last_error}"
        )


class UpdateOutcome(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"


class ReportGenerator(Protocol):
    async def generate_daily_report(self, user_id: str, report_date: date | None = None) -> DailyReportData: ...


class DeliveryChannel(Protocol):
    async def send(self, user_id: str, report: DailyReportData) -> None: ...


@dataclass
class UpdateError:
    user_id: str
    error: str
    timestamp: datetime


@dataclass
class SchedulerRunStats:
    total_users: int = 0
    successful_updates: int = 0
    failed_updates: int = 0
    skipped_updates: int = 0
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: datetime | None = None
    duration_ms: int | None = None
    errors: list[UpdateError] = field(default_factory=list)

    @property
    def error_rate(self) -> float:
        """Failed share of considered users, in percent."""
        if not self.total_users:
            return 0.0
        return self.failed_updates / self.total_users * 100

    def finish(self) -> None:
        self.end_time = datetime.now(timezone.utc)
        self.duration_ms = int((self.end_time - self.start_time).total_seconds() * 1000)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["error_rate"] = round(self.error_rate, 1)
        return data


@dataclass
class SchedulerStatus:
    is_running: bool
    is_processing: bool
    cron_expression: str
    timezone: str


def is_non_retryable(error: Exception) -> bool:
    message = str(error).lower()
    return any(term in message for term in NON_RETRYABLE_MESSAGES)


def _batches(items: list, size: int) -> list[list]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class DailyUpdateScheduler:
    """Arms the daily cron job and drives batched per-user updates."""

    def __init__(
        self,
        repository: PortfolioRepository,
        report_generator: ReportGenerator,
        delivery_channel: DeliveryChannel,
        cron_expression: str = "0 9 * * *",
        timezone_name: str = "America/New_York",
        retry_attempts: int = 3,
        retry_delay_ms: int = 1000,
        batch_size: int = 10,
        batch_delay_ms: int = 5000,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.repository = repository
        self.report_generator = report_generator
        self.delivery_channel = delivery_channel
        self.eligibility = EligibilityFilter(repository)
        self.cron_expression = cron_expression
        self.timezone_name = timezone_name
        try:
            self._tz = ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise InvalidScheduleError(f"Invalid timezone: {timezone_name}") from e
        self.retry_attempts = retry_attempts
        self.retry_delay_ms = retry_delay_ms
        self.batch_size = batch_size
        self.batch_delay_ms = batch_delay_ms
        self._clock = clock
        self._sleep = sleep

        self._scheduler: AsyncIOScheduler | None = None
        self._busy = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        repository: PortfolioRepository,
        report_generator: ReportGenerator,
        delivery_channel: DeliveryChannel,
    ) -> "DailyUpdateScheduler":
        return cls(
            repository=repository,
            report_generator=report_generator,
            delivery_channel=delivery_channel,
            cron_expression=settings.daily_update_cron,
            timezone_name=settings.scheduler_timezone,
            retry_attempts=settings.scheduler_retry_attempts,
            retry_delay_ms=settings.scheduler_retry_delay_ms,
            batch_size=settings.scheduler_batch_size,
            batch_delay_ms=settings.scheduler_batch_delay_ms,
        )

    # ── Time ─────────────────────────────────────────────────

    def _now(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        return datetime.now(self._tz)

    def _today(self) -> date:
        return self._now().date()

    # ── Arm / disarm ─────────────────────────────────────────

    def _build_trigger(self) -> CronTrigger:
        if self.retry_attempts < 1:
            raise InvalidScheduleError(f"retry_attempts must be >= 1, got {self.retry_attempts}")
        if self.batch_size < 1:
            raise InvalidScheduleError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.batch_delay_ms < 0 or self.retry_delay_ms < 0:
            raise InvalidScheduleError("Delays must not be negative")

        try:
            return CronTrigger.from_crontab(self.cron_expression, timezone=self._tz)
        except ValueError as e:
            raise InvalidScheduleError(f"Invalid cron expression: {self.cron_expression}") from e

    def arm(self) -> None:
        """Register the recurring job. No-op when already armed.

        Must be called with a running event loop.
        """
        if self._scheduler is not None:
            logger.info("Daily update scheduler is already running")
            return

        trigger = self._build_trigger()

        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            self._on_timer,
            trigger,
            id=JOB_ID,
            name="Daily portfolio update",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "Daily update scheduler started (cron=%r, timezone=%s)",
            self.cron_expression, self.timezone_name,
        )

    def disarm(self) -> None:
        """Cancel future runs. An in-flight run finishes on its own."""
        if self._scheduler is None:
            logger.info("Daily update scheduler is not running")
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Daily update scheduler stopped")

    def is_armed(self) -> bool:
        return self._scheduler is not None

    @property
    def is_processing(self) -> bool:
        return self._busy

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            is_running=self.is_armed(),
            is_processing=self._busy,
            cron_expression=self.cron_expression,
            timezone=self.timezone_name,
        )

    def next_run_time(self) -> datetime | None:
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None

    async def _on_timer(self) -> None:
        if self._busy:
            logger.info("Daily update process is already running, skipping this execution")
            SCHEDULER_RUNS_TOTAL.labels(trigger="timer", status="skipped").inc()
            return
        logger.info("Starting scheduled daily update process")
        await self.run_once(trigger="timer")

    # ── Runs ─────────────────────────────────────────────────

    async def trigger_now(self) -> SchedulerRunStats | None:
        """Run the daily update immediately. Returns None if a run is in progress."""
        logger.info("Manually triggering daily update process")
        return await self.run_once(trigger="manual")

    async def trigger_for_user(self, user_id: str) -> UpdateOutcome:
        """Single-user update with the same idempotency check and retry policy."""
        logger.info("Manually triggering daily update for user %s", user_id)
        return await self.process_user(user_id, self._today())

    async def run_once(self, trigger: str = "manual") -> SchedulerRunStats | None:
        # Check-and-set before the first await keeps runs single-flight
        if self._busy:
            logger.info("Daily update process is already running")
            SCHEDULER_RUNS_TOTAL.labels(trigger=trigger, status="skipped").inc()
            return None
        self._busy = True

        stats = SchedulerRunStats()
        started = time.monotonic()
        try:
            today = self._today()
            logger.info("Starting daily update process for %s", today.isoformat())

            users = await self.eligibility.eligible_users(today)
            stats.total_users = len(users)
            logger.info("Found %d eligible users for daily updates", len(users))

            if not users:
                logger.info("No eligible users found for daily updates")
                stats.finish()
                SCHEDULER_RUNS_TOTAL.labels(trigger=trigger, status="ok").inc()
                return stats

            batches = _batches(users, self.batch_size)
            for index, batch in enumerate(batches, start=1):
                logger.info("Processing batch %d/%d (%d users)", index, len(batches), len(batch))
                await asyncio.gather(*(self._run_user(u.user_id, u.email, today, stats) for u in batch))

                if index < len(batches):
                    logger.info("Waiting %dms before processing next batch...", self.batch_delay_ms)
                    await self._sleep(self.batch_delay_ms / 1000)

            stats.finish()
            self._log_stats(stats)
            SCHEDULER_RUNS_TOTAL.labels(trigger=trigger, status="ok").inc()
            return stats
        except Exception:
            logger.exception("Critical error in daily update process")
            SCHEDULER_RUNS_TOTAL.labels(trigger=trigger, status="error").inc()
            raise
        finally:
            SCHEDULER_RUN_DURATION.observe(time.monotonic() - started)
            self._busy = False

    async def _run_user(self, user_id: str, email: str, today: date, stats: SchedulerRunStats) -> None:
        """Task boundary: every outcome, including exceptions, lands in ``stats``."""
        try:
            outcome = await self.process_user(user_id, today)
        except Exception as e:
            stats.failed_updates += 1
            stats.errors.append(UpdateError(
                user_id=user_id, error=str(e) or type(e).__name__, timestamp=datetime.now(timezone.utc),
            ))
            SCHEDULER_USER_UPDATES.labels(outcome="failed").inc()
            logger.error("✗ Daily update failed for user %s (%s): %s", user_id, email, e)
            return

        if outcome is UpdateOutcome.SKIPPED:
            stats.skipped_updates += 1
        else:
            stats.successful_updates += 1
            logger.info("✓ Daily update completed for user %s (%s)", user_id, email)
        SCHEDULER_USER_UPDATES.labels(outcome=outcome.value).inc()

    async def process_user(self, user_id: str, today: date) -> UpdateOutcome:
        """Per-user update with exponential backoff.

        Errors matching ``NON_RETRYABLE_MESSAGES`` are raised immediately as
        ``NonRetryableUserError``; others are retried up to
        ``retry_attempts`` times before ``RetryExhaustedError``.
        """
        last_error: Exception | None = None

        for attempt in range(1, self.retry_attempts + 1):
            try:
                outcome = await self._update_user(user_id, today)
                if outcome is UpdateOutcome.SENT:
                    logger.info("Daily update sent to user %s (attempt %d)", user_id, attempt)
                return outcome
            except Exception as e:
                last_error = e
                logger.warning("Daily update attempt %d failed for user %s: %s", attempt, user_id, e)

                if is_non_retryable(e):
                    raise NonRetryableUserError(user_id, e) from e

                if attempt < self.retry_attempts:
                    delay_ms = self.retry_delay_ms * 2 ** (attempt - 1)
                    logger.info("Waiting %dms before retry...", delay_ms)
                    await self._sleep(delay_ms / 1000)

        raise RetryExhaustedError(user_id, self.retry_attempts, last_error) from last_error

    async def _update_user(self, user_id: str, today: date) -> UpdateOutcome:
        existing = await self.repository.find_daily_report(user_id, today)
        if existing is not None and existing.email_sent:
            logger.info("Skipping daily update for user %s (already sent today)", user_id)
            return UpdateOutcome.SKIPPED

        prefs = await self.repository.get_notification_settings(user_id)
        if not allows_daily_update(prefs, today):
            logger.info("Skipping daily update for user %s (disabled by preferences)", user_id)
            return UpdateOutcome.SKIPPED

        if not await self.repository.claim_daily_report(user_id, today):
            logger.info("Skipping daily update for user %s (already sent or in progress)", user_id)
            return UpdateOutcome.SKIPPED

        try:
            report = await self.report_generator.generate_daily_report(user_id, report_date=today)
            await self.delivery_channel.send(user_id, report)
        except Exception:
            await self._release_claim(user_id, today)
            raise
        return UpdateOutcome.SENT

    async def _release_claim(self, user_id: str, today: date) -> None:
        try:
            await self.repository.release_daily_report(user_id, today)
        except Exception:
            logger.exception("Failed to release daily report claim for user %s", user_id)

    def _log_stats(self, stats: SchedulerRunStats) -> None:
        logger.info(
            "Daily update process completed: total=%d successful=%d failed=%d skipped=%d "
            "duration=%ds error_rate=%.1f%%",
            stats.total_users, stats.successful_updates, stats.failed_updates,
            stats.skipped_updates, round((stats.duration_ms or 0) / 1000), stats.error_rate,
        )
        for error in stats.errors:
            logger.error("- User %s: %s", error.user_id, error.error)
