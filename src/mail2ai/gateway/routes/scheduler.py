"""调度器路由

GET /api/scheduler: 调度器状态。
POST /api/scheduler/poll: 手动触发一次轮询。
"""

from fastapi import APIRouter, Depends
from starlette.responses import JSONResponse

from ...scheduler import Scheduler
from ..deps import get_scheduler

router = APIRouter()


@router.get("/api/scheduler")
async def scheduler_status(scheduler: Scheduler = Depends(get_scheduler)):
    """查询调度器状态"""
    return scheduler.get_status().model_dump()


@router.post("/api/scheduler/poll")
async def trigger_poll(scheduler: Scheduler = Depends(get_scheduler)):
    """手动触发一次 tick；调度器未运行时返回 409"""
    if not scheduler.running:
        return JSONResponse(
            status_code=409,
            content={
                "error": {
                    "code": "SCHEDULER_NOT_RUNNING",
                    "message": "Scheduler is not running",
                }
            },
        )
    await scheduler.trigger_poll()
    return scheduler.get_status().model_dump()
