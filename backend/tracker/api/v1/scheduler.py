"""Scheduler control plane: status, arm/disarm, manual triggers."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from tracker.core.admin_access import require_admin_ip
from tracker.schemas.scheduler import (
    MessageResponse,
    RunStatsResponse,
    SchedulerStatusResponse,
    UserTriggerResponse,
)
from tracker.services.scheduler_service import (
    DailyUpdateScheduler,
    InvalidScheduleError,
    NonRetryableUserError,
)

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_ip)])


def get_scheduler(request: Request) -> DailyUpdateScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scheduler is not initialised",
        )
    return scheduler


@router.get("/status", response_model=SchedulerStatusResponse)
async def get_status(scheduler: DailyUpdateScheduler = Depends(get_scheduler)):
    current = scheduler.status()
    return SchedulerStatusResponse(
        is_running=current.is_running,
        is_processing=current.is_processing,
        cron_expression=current.cron_expression,
        timezone=current.timezone,
        next_run_time=scheduler.next_run_time(),
    )


@router.post("/start", response_model=MessageResponse)
async def start_scheduler(scheduler: DailyUpdateScheduler = Depends(get_scheduler)):
    if scheduler.is_armed():
        raise HTTPException(status_code=400, detail="Scheduler is already running")
    try:
        scheduler.arm()
    except InvalidScheduleError as e:
        logger.error("Failed to start scheduler: %s", e)
        raise HTTPException(status_code=500, detail=str(e))
    return MessageResponse(message="Scheduler started")


@router.post("/stop", response_model=MessageResponse)
async def stop_scheduler(scheduler: DailyUpdateScheduler = Depends(get_scheduler)):
    if not scheduler.is_armed():
        raise HTTPException(status_code=400, detail="Scheduler is not running")
    scheduler.disarm()
    return MessageResponse(message="Scheduler stopped")


@router.post("/trigger", response_model=RunStatsResponse)
async def trigger_daily_update(scheduler: DailyUpdateScheduler = Depends(get_scheduler)):
    stats = await scheduler.trigger_now()
    if stats is None:
        raise HTTPException(status_code=409, detail="Daily update process is already running")
    return RunStatsResponse(**stats.to_dict())


@router.post("/trigger/{user_id}", response_model=UserTriggerResponse)
async def trigger_user_update(user_id: str, scheduler: DailyUpdateScheduler = Depends(get_scheduler)):
    try:
        outcome = await scheduler.trigger_for_user(user_id)
    except NonRetryableUserError as e:
        if "not found" in str(e).lower():
            raise HTTPException(status_code=404, detail=str(e))
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.error("Manual daily update failed for user %s: %s", user_id, e)
        raise HTTPException(status_code=500, detail=str(e))

    message = (
        f"Daily update sent to user {user_id}"
        if outcome.value == "sent"
        else f"Daily update skipped for user {user_id}"
    )
    return UserTriggerResponse(user_id=user_id, outcome=outcome.value, message=message)
