"""Mail2AI Core Store -- JSON 文件持久化实现

提供工厂函数创建并初始化任务队列。
"""

from pathlib import Path

from ..config import get_queue_path
from .file_lock import FileLock
from .protocols import Lock, ReleaseFn, TaskQueue
from .task_queue import JsonTaskQueue
from .transaction import atomic_update, read_state, write_state


async def create_task_queue(
    path: str | Path | None = None,
    max_retries: int | None = None,
    lock_stale_s: float | None = None,
) -> JsonTaskQueue:
    """创建并初始化任务队列

    Args:
        path: 队列文件路径，缺省读取 TASK_QUEUE_PATH
        max_retries: 新任务默认 maxRetries，缺省读取 TASK_MAX_RETRIES
        lock_stale_s: 文件锁过期阈值（秒），缺省读取 TASK_LOCK_STALE_MS

    Returns:
        已初始化的 JsonTaskQueue 实例
    """
    queue = JsonTaskQueue(
        path or get_queue_path(),
        max_retries=max_retries,
        lock_stale_s=lock_stale_s,
    )
    await queue.initialize()
    return queue


__all__ = [
    "create_task_queue",
    "JsonTaskQueue",
    "FileLock",
    "Lock",
    "ReleaseFn",
    "TaskQueue",
    "atomic_update",
    "read_state",
    "write_state",
]
