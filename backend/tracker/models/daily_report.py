"""Daily portfolio report, one row per user per calendar day."""

import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, JSON, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from tracker.models.base import Base, UUIDMixin, TimestampMixin

_JSON = JSON().with_variant(JSONB(), "postgresql")


class DailyReport(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "daily_reports"
    __table_args__ = (
        UniqueConstraint("user_id", "report_date", name="uq_daily_report_user_date"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    report_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    portfolio_value: Mapped[float] = mapped_column(Float, nullable=False)
    daily_change: Mapped[float] = mapped_column(Float, nullable=False)
    daily_change_percent: Mapped[float] = mapped_column(Float, nullable=False)
    significant_movers: Mapped[list] = mapped_column(_JSON, nullable=False, default=list)
    sector_performance: Mapped[list] = mapped_column(_JSON, nullable=False, default=list)
    market_summary: Mapped[str | None] = mapped_column(Text)

    email_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    # Set while an update holds the (user_id, report_date) key; cleared on failure
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
