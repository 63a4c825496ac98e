"""Per-user notification preferences for the daily update email."""

import uuid

from sqlalchemy import String, Boolean, Float, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tracker.models.base import Base, UUIDMixin, TimestampMixin


class NotificationSettings(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "notification_settings"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    email_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    daily_update_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    update_time: Mapped[str] = mapped_column(String(5), default="09:00", nullable=False)
    # Percent move that makes a position a "significant mover"
    alert_threshold: Mapped[float] = mapped_column(Float, default=5.0, nullable=False)
    weekends_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    user = relationship("User", back_populates="notification_settings")
