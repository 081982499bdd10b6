"""任务路由

GET /api/tasks: 任务列表，支持 status 筛选（存储顺序）。
GET /api/tasks/{task_id}: 任务详情。
POST /api/tasks: 手动入队一封邮件。
POST /api/tasks/cleanup: 删除过期终态任务。
GET /api/stats: 各状态任务计数。
"""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

from ...core.models import EmailContent, TaskStatus
from ...core.store import JsonTaskQueue
from ..deps import get_task_queue

router = APIRouter()

SECONDS_PER_DAY = 24 * 60 * 60


class TaskCreateRequest(BaseModel):
    """手动入队请求体"""

    subject: str = Field(min_length=1, description="邮件主题")
    sender: str = Field(min_length=1, description="发件人地址")
    text: str | None = Field(default=None, description="纯文本正文，缺省使用主题")
    html: str | None = Field(default=None, description="HTML 正文")
    reporter_email: str | None = Field(default=None, description="报告接收人，缺省为发件人")


class TaskCreateResponse(BaseModel):
    """入队响应"""

    task_id: str
    status: str


class CleanupResponse(BaseModel):
    """清理响应"""

    removed: int


@router.get("/api/tasks")
async def list_tasks(
    status: TaskStatus | None = Query(default=None, description="按状态筛选"),
    queue: JsonTaskQueue = Depends(get_task_queue),
):
    """查询任务列表"""
    if status is None:
        tasks = await queue.get_all_tasks()
    else:
        tasks = await queue.get_tasks_by_status(status)
    return {"tasks": [task.to_store() for task in tasks]}


@router.get("/api/tasks/{task_id}")
async def get_task_detail(
    task_id: str,
    queue: JsonTaskQueue = Depends(get_task_queue),
):
    """查询任务详情"""
    task = await queue.get_task(task_id)
    if task is None:
        return JSONResponse(
            status_code=404,
            content={
                "error": {
                    "code": "TASK_NOT_FOUND",
                    "message": f"Task with id {task_id} does not exist",
                }
            },
        )
    return {"task": task.to_store()}


@router.post("/api/tasks", status_code=201, response_model=TaskCreateResponse)
async def create_task(
    body: TaskCreateRequest,
    queue: JsonTaskQueue = Depends(get_task_queue),
):
    """手动入队"""
    email = EmailContent.manual(
        subject=body.subject,
        sender=body.sender,
        text=body.text or body.subject,
        html=body.html,
    )
    task = await queue.add_task(email, reporter_email=body.reporter_email or body.sender)
    return TaskCreateResponse(task_id=task.id, status=task.status.value)


@router.post("/api/tasks/cleanup", response_model=CleanupResponse)
async def cleanup_tasks(
    days: float = Query(default=7, ge=0, description="保留最近 days 天的终态任务"),
    queue: JsonTaskQueue = Depends(get_task_queue),
):
    """删除过期终态任务"""
    removed = await queue.cleanup(max_age_s=days * SECONDS_PER_DAY)
    return CleanupResponse(removed=removed)


@router.get("/api/stats")
async def get_stats(queue: JsonTaskQueue = Depends(get_task_queue)):
    """各状态任务计数"""
    stats = await queue.get_stats()
    return stats.model_dump()
