"""gateway 测试配置 -- 带 lifespan 的 FastAPI app + httpx AsyncClient"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from mail2ai.scheduler import SchedulerConfig


@pytest_asyncio.fixture
async def app(tmp_path: Path, monkeypatch, make_processor, reporter):
    """创建测试用 app 并运行 lifespan（调度器默认关闭，避免后台处理干扰断言）"""
    monkeypatch.setenv("TASK_QUEUE_PATH", str(tmp_path / "tasks.json"))

    from mail2ai.gateway.main import create_app

    application = create_app(
        processor=make_processor(),
        reporter=reporter,
        scheduler_config=SchedulerConfig(enabled=False),
    )
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
