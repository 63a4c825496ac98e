from fastapi import APIRouter
from tracker.api.v1 import scheduler

api_router = APIRouter()

api_router.include_router(scheduler.router, prefix="/scheduler", tags=["scheduler"])
