"""队列原子事务封装

每个队列操作都是一次完整事务：
获取跨进程文件锁 -> 读出整个存储文件 -> 在内存副本上应用修改 ->
整体写回（临时文件 + os.replace）-> 释放锁。
只读事务同样持锁，但跳过写回。
"""

import asyncio
import json
import os
import random
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeVar

import structlog
from pydantic import ValidationError

from ..exceptions import LockTimeoutError, StorageError
from ..models.queue import QueueState
from ..models.task import Task
from .protocols import Lock, ReleaseFn

log = structlog.get_logger()

T = TypeVar("T")

# updater 接收任务列表副本，返回 (新任务列表, 操作结果)；新任务列表为 None 表示无修改，跳过写回
Updater = Callable[[list[Task]], tuple[list[Task] | None, T]]

# 锁争用时整个获取过程的最大重试次数
MAX_LOCK_ATTEMPTS = 10


def read_state(path: Path) -> QueueState:
    """读取并校验存储文件

    Raises:
        StorageError: 文件不可读或内容损坏
    """
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise StorageError(str(path), "读取队列文件失败", e) from e
    try:
        return QueueState.model_validate(json.loads(content))
    except (json.JSONDecodeError, ValidationError) as e:
        raise StorageError(str(path), "队列文件内容损坏", e) from e


def write_state(path: Path, tasks: list[Task]) -> None:
    """整体写回存储文件

    先写同目录临时文件再 os.replace，读方永远看不到半截文件。

    Raises:
        StorageError: 写入失败
    """
    state = QueueState(tasks=tasks, last_updated=datetime.now(UTC))
    payload = json.dumps(state.to_store(), ensure_ascii=False, indent=2)
    tmp_path = path.with_name(f"{path.name}.{os.getpid()}.tmp")
    try:
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise StorageError(str(path), "写入队列文件失败", e) from e


def _transact(path: Path, updater: Updater[T], write: bool) -> T:
    state = read_state(path)
    tasks, result = updater(list(state.tasks))
    if write and tasks is not None:
        write_state(path, tasks)
    return result


async def _locked_transact(
    path: Path,
    release: ReleaseFn,
    updater: Updater[T],
    write: bool,
) -> T:
    try:
        return await asyncio.to_thread(_transact, path, updater, write)
    finally:
        await release()


async def atomic_update(
    path: Path,
    lock: Lock,
    updater: Updater[T],
    write: bool = True,
    max_attempts: int = MAX_LOCK_ATTEMPTS,
) -> T:
    """在文件锁保护下执行一次读-改-写事务

    Args:
        path: 存储文件路径
        lock: 跨进程锁
        updater: 纯函数，接收任务列表，返回 (新任务列表 | None, 结果)
        write: False 表示只读事务
        max_attempts: 锁争用时的最大重试次数

    Returns:
        updater 返回的结果

    Raises:
        StorageError: 锁获取重试耗尽或文件读写失败
    """
    last_error: LockTimeoutError | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            release = await lock.acquire()
        except LockTimeoutError as e:
            last_error = e
            log.warning(
                "queue_lock_contention_retry",
                path=str(path),
                attempt=attempt,
            )
            await asyncio.sleep(0.05 + random.random() * 0.1)
            continue

        # 写入线程不可中断：调用方被取消时事务仍需完成并释放锁
        return await asyncio.shield(_locked_transact(path, release, updater, write))

    raise last_error or LockTimeoutError(str(path), max_attempts)
