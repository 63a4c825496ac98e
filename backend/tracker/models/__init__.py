from tracker.models.base import Base
from tracker.models.user import User
from tracker.models.position import StockPosition
from tracker.models.notification import NotificationSettings
from tracker.models.daily_report import DailyReport

__all__ = [
    "Base", "User", "StockPosition", "NotificationSettings", "DailyReport",
]
