"""全局 pytest 配置 -- 临时队列文件与处理能力/reporter 测试替身"""

import asyncio
import inspect
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio

from mail2ai.core.models import EmailAddress, EmailContent

# 测试进程不读取宿主机的队列/调度器配置
_CONFIG_ENV_VARS = (
    "MAIL2AI_DATA_DIR",
    "TASK_QUEUE_PATH",
    "TASK_MAX_RETRIES",
    "TASK_LOCK_STALE_MS",
    "SCHEDULER_POLL_INTERVAL",
    "SCHEDULER_MAX_CONCURRENT",
    "SCHEDULER_TASK_TIMEOUT",
    "SCHEDULER_SHUTDOWN_TIMEOUT",
    "SCHEDULER_ENABLED",
    "SCHEDULER_HARD_DEADLINE",
    "SCHEDULER_STALE_AFTER",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """清理配置相关环境变量"""
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def tmp_queue_path(tmp_path: Path) -> Path:
    """提供临时队列文件路径"""
    return tmp_path / "data" / "tasks.json"


@pytest_asyncio.fixture
async def queue(tmp_queue_path: Path) -> AsyncGenerator:
    """提供已初始化的临时任务队列"""
    from mail2ai.core.store import create_task_queue

    task_queue = await create_task_queue(tmp_queue_path, max_retries=3)
    yield task_queue


@pytest.fixture
def sample_email() -> EmailContent:
    """示例邮件"""
    return EmailContent(
        message_id="<msg-001@example.com>",
        subject="Fix login bug",
        sender=EmailAddress(address="alice@example.com", name="Alice"),
        to=[EmailAddress(address="bot@example.com")],
        text="The login page returns 500 when the password is empty.",
    )


class ScriptedProcessor:
    """可编排行为的处理能力

    Args:
        delay_s: 每次处理耗时
        fail_times: 前 fail_times 次调用抛出异常
        observe_token: True 时等待期间响应取消信号
        ready: is_ready() 的返回值
    """

    name = "ScriptedProcessor"

    def __init__(
        self,
        delay_s: float = 0.0,
        fail_times: int = 0,
        observe_token: bool = True,
        ready: bool = True,
        result: dict | None = None,
    ) -> None:
        self.delay_s = delay_s
        self.fail_times = fail_times
        self.observe_token = observe_token
        self.ready = ready
        self.result = result
        self.calls = 0
        self.active = 0
        self.peak = 0
        self.hard_cancelled = False
        self.destroyed = False
        self.seen_task_ids: list[str] = []

    async def process_task(self, task, options):
        from mail2ai.core.exceptions import TaskCancelledError

        self.calls += 1
        call = self.calls
        self.seen_task_ids.append(task.id)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.observe_token:
                if not await options.cancellation_token.sleep(self.delay_s):
                    raise TaskCancelledError()
            else:
                await asyncio.sleep(self.delay_s)
            if call <= self.fail_times:
                raise RuntimeError(f"failure {call}")
            return self.result or {"summary": f"done: {task.subject}"}
        except asyncio.CancelledError:
            self.hard_cancelled = True
            raise
        finally:
            self.active -= 1

    async def is_ready(self) -> bool:
        return self.ready

    async def destroy(self) -> None:
        self.destroyed = True


class RecordingReporter:
    """记录收到的报告；fail=True 时每次都抛异常"""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.reports: list = []

    async def send_task_report(self, task) -> None:
        self.reports.append(task)
        if self.fail:
            raise RuntimeError("smtp unavailable")


@pytest.fixture
def make_processor():
    """ScriptedProcessor 工厂"""
    return ScriptedProcessor


@pytest.fixture
def reporter() -> RecordingReporter:
    """记录型 reporter"""
    return RecordingReporter()


@pytest.fixture
def failing_reporter() -> RecordingReporter:
    """总是失败的 reporter"""
    return RecordingReporter(fail=True)


@pytest.fixture
def wait_until():
    """轮询等待条件成立，超时则断言失败"""

    async def _wait(predicate, timeout: float = 5.0, interval: float = 0.01) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            outcome = predicate()
            if inspect.isawaitable(outcome):
                outcome = await outcome
            if outcome:
                return
            if loop.time() >= deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(interval)

    return _wait
