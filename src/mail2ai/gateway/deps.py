"""依赖注入模块 -- 通过 FastAPI Depends 注入队列与调度器

实例通过 app.state 管理，在 lifespan 中创建/停止。
"""

from fastapi import Request

from ..core.store import JsonTaskQueue
from ..scheduler import Scheduler


def get_task_queue(request: Request) -> JsonTaskQueue:
    """从 app.state 获取任务队列"""
    return request.app.state.task_queue


def get_scheduler(request: Request) -> Scheduler:
    """从 app.state 获取调度器"""
    return request.app.state.scheduler
