from datetime import datetime

from pydantic import BaseModel


class SchedulerStatusResponse(BaseModel):
    is_running: bool
    is_processing: bool
    cron_expression: str
    timezone: str
    next_run_time: datetime | None = None


class UpdateErrorResponse(BaseModel):
    user_id: str
    error: str
    timestamp: datetime


class RunStatsResponse(BaseModel):
    total_users: int
    successful_updates: int
    failed_updates: int
    skipped_updates: int
    start_time: datetime
    end_time: datetime | None
    duration_ms: int | None
    error_rate: float
    errors: list[UpdateErrorResponse]


class MessageResponse(BaseModel):
    message: str


class UserTriggerResponse(BaseModel):
    user_id: str
    outcome: str  # 'sent' or 'skipped'
    message: str
