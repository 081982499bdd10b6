"""处理能力契约 -- TaskProcessor 协议与 EchoProcessor

调度器只依赖 TaskProcessor 协议：process_task 必须观察取消信号，
is_ready / destroy 为可选钩子。
EchoProcessor 是内置的模拟实现，Gateway 未注入处理能力时使用。
"""

import random
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

import structlog
from pydantic import BaseModel, ConfigDict, Field

from ..core.exceptions import TaskCancelledError
from ..core.models import Task, TaskResult, TodoItem
from .cancellation import CancellationToken

log = structlog.get_logger()


class ProcessingProgress(BaseModel):
    """处理进度通知"""

    stage: str = Field(description="当前阶段")
    message: str = Field(default="", description="进度描述")
    percent: int | None = Field(default=None, ge=0, le=100, description="完成百分比")


ProgressCallback = Callable[[ProcessingProgress], Awaitable[None] | None]


class ProcessOptions(BaseModel):
    """单次处理尝试的调用参数"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    cancellation_token: CancellationToken = Field(description="协作式取消信号")
    timeout_s: float = Field(description="本次尝试的超时（秒）")
    on_progress: ProgressCallback | None = Field(default=None, description="进度回调")

    async def report(self, progress: ProcessingProgress) -> None:
        """调用进度回调（未设置时忽略）"""
        if self.on_progress is None:
            return
        outcome = self.on_progress(progress)
        if outcome is not None:
            await outcome


@runtime_checkable
class TaskProcessor(Protocol):
    """处理能力接口

    可选属性/方法（调度器通过 getattr 探测）：
        name: 显示名称
        is_ready() -> bool: 启动前就绪检查
        destroy() -> None: 停机时释放资源
    """

    async def process_task(
        self,
        task: Task,
        options: ProcessOptions,
    ) -> TaskResult | dict[str, Any]:
        """处理任务；失败时抛出任意异常"""
        ...


def processor_name(processor: object) -> str:
    """处理能力的显示名称，缺省为类名"""
    name = getattr(processor, "name", None)
    return name if isinstance(name, str) and name else type(processor).__name__


class EchoProcessor:
    """模拟处理能力 -- 延迟后根据邮件主题生成回声结果

    Args:
        delay_s: 模拟处理时长，期间观察取消信号
        should_fail: 每次都失败
        fail_rate: 随机失败概率 [0, 1]
    """

    name = "EchoProcessor"

    def __init__(
        self,
        delay_s: float = 0.01,
        should_fail: bool = False,
        fail_rate: float = 0.0,
    ) -> None:
        if not 0.0 <= fail_rate <= 1.0:
            raise ValueError("fail_rate must be within [0, 1]")
        self.delay_s = delay_s
        self.should_fail = should_fail
        self.fail_rate = fail_rate
        self.destroyed = False

    async def process_task(self, task: Task, options: ProcessOptions) -> TaskResult:
        await options.report(ProcessingProgress(stage="start", message="Start processing"))

        token = options.cancellation_token
        if not await token.sleep(self.delay_s):
            raise TaskCancelledError()

        if self.should_fail or random.random() < self.fail_rate:
            raise RuntimeError("Simulated processing failure")

        subject = task.subject or "(no subject)"
        await options.report(
            ProcessingProgress(stage="done", message="Complete processing", percent=100)
        )
        log.debug("echo_processor_done", task_id=task.id)

        return TaskResult(
            summary=f"Processed email: {subject}",
            todos=[
                TodoItem(id="1", title=f"Process: {subject}", status="pending", priority="medium"),
            ],
            response=f"Echo processor processed task {task.id}",
            agent_logs=[
                "Start processing",
                "Analyze email content",
                "Generate todos",
                "Complete processing",
            ],
        )

    async def is_ready(self) -> bool:
        return True

    async def destroy(self) -> None:
        self.destroyed = True
