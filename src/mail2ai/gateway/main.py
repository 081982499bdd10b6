"""FastAPI 应用主文件

app 创建 + lifespan 管理：队列初始化、调度器启动/优雅停机、路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from ..core.config import get_queue_path
from ..core.logging_config import setup_logging
from ..core.store import create_task_queue
from ..scheduler import (
    EchoProcessor,
    LogReporter,
    Scheduler,
    SchedulerConfig,
    TaskProcessor,
    TaskReporter,
    load_scheduler_config,
)
from .middleware.logging_mw import LoggingMiddleware
from .routes import health, scheduler, tasks

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化队列并启动调度器，关闭时优雅停机"""
    queue = await create_task_queue(get_queue_path())
    app.state.task_queue = queue

    config: SchedulerConfig = app.state.scheduler_config or load_scheduler_config()
    task_scheduler = Scheduler(
        queue,
        app.state.processor,
        config=config,
        reporter=app.state.reporter,
    )
    app.state.scheduler = task_scheduler
    await task_scheduler.start()
    log.info("gateway_started", queue_path=str(queue.path), processor=task_scheduler.processor_name)

    try:
        yield
    finally:
        await task_scheduler.stop()
        log.info("gateway_stopped")


def create_app(
    processor: TaskProcessor | None = None,
    reporter: TaskReporter | None = None,
    scheduler_config: SchedulerConfig | None = None,
) -> FastAPI:
    """创建 FastAPI 应用实例

    Args:
        processor: 处理能力，缺省使用 EchoProcessor
        reporter: 报告器，缺省使用 LogReporter
        scheduler_config: 调度器配置，缺省从环境变量加载
    """
    app = FastAPI(
        title="Mail2AI Gateway",
        version="0.1.0",
        description="Mail2AI 任务队列与调度器 API",
        lifespan=lifespan,
    )

    app.state.processor = processor or EchoProcessor()
    app.state.reporter = reporter or LogReporter()
    app.state.scheduler_config = scheduler_config

    app.add_middleware(LoggingMiddleware)

    setup_logging()

    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(scheduler.router, tags=["scheduler"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
