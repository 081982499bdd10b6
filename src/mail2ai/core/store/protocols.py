"""Store Protocol 接口定义

定义 Lock 与 TaskQueue 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
调度器只依赖 TaskQueue 协议，测试可替换为内存实现。
"""

from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from ..models.enums import LogLevel, TaskStatus
from ..models.queue import QueueStats
from ..models.task import Task, TaskResult

# 释放锁的回调
ReleaseFn = Callable[[], Awaitable[None]]


class Lock(Protocol):
    """跨进程互斥锁接口

    可由 OS 文件锁、KV 存储租约或分布式锁服务实现；
    实现必须支持过期回收（持有者崩溃后不致永久死锁）。
    """

    async def acquire(self) -> ReleaseFn:
        """获取锁，返回释放回调；重试耗尽时抛出 LockTimeoutError"""
        ...


class TaskQueue(Protocol):
    """持久化任务队列接口"""

    async def initialize(self) -> None:
        """确保存储文件存在"""
        ...

    async def add_task(self, prompt: dict[str, Any], reporter_email: str) -> Task:
        """新任务入队（pending）"""
        ...

    async def pick_task(self) -> Task | None:
        """原子认领第一个 pending 任务并置为 processing"""
        ...

    async def complete_task(self, task_id: str, result: TaskResult | dict[str, Any]) -> Task | None:
        """标记完成"""
        ...

    async def fail_task(self, task_id: str, error: str) -> Task | None:
        """记录一次失败：重新入队或进入 failed"""
        ...

    async def get_task(self, task_id: str) -> Task | None:
        """根据 id 查询任务"""
        ...

    async def get_all_tasks(self) -> list[Task]:
        """查询全部任务（存储顺序）"""
        ...

    async def get_tasks_by_status(self, status: TaskStatus) -> list[Task]:
        """按状态筛选"""
        ...

    async def add_task_log(
        self,
        task_id: str,
        level: LogLevel,
        message: str,
        data: Any | None = None,
    ) -> bool:
        """追加任务日志"""
        ...

    async def get_stats(self) -> QueueStats:
        """各状态计数"""
        ...

    async def cleanup(self, max_age_s: float) -> int:
        """删除过期终态任务"""
        ...

    async def recover_stale_tasks(self, stale_after_s: float) -> list[Task]:
        """回收长时间停留在 processing 的任务"""
        ...
