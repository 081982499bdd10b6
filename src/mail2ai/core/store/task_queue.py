"""JsonTaskQueue -- 基于 JSON 文件的持久化任务队列

所有操作都通过 atomic_update 在文件锁保护下完成，
对同一存储文件的其他操作（包括其他进程）保持原子性。
按存储顺序线性扫描认领 pending 任务：FIFO，但不是优先级队列。
"""

import asyncio
import os
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import structlog
from ulid import ULID

from ..config import DEFAULT_CLEANUP_MAX_AGE_S, get_lock_stale_s, get_max_retries
from ..exceptions import StorageError
from ..models.enums import TERMINAL_STATES, LogLevel, TaskStatus, validate_transition
from ..models.message import EmailContent
from ..models.queue import QueueStats
from ..models.task import Task, TaskLog, TaskResult
from .file_lock import FileLock
from .protocols import Lock
from .transaction import atomic_update, write_state

log = structlog.get_logger()

STALE_RECOVERY_ERROR = "stale processing attempt recovered"


def _now() -> datetime:
    return datetime.now(UTC)


def _find_index(tasks: list[Task], task_id: str) -> int:
    for index, task in enumerate(tasks):
        if task.id == task_id:
            return index
    return -1


def _apply_failure(task: Task, error: str, now: datetime) -> None:
    """记录一次失败尝试：retries < max_retries 时重新入队，否则进入 failed"""
    task.retries += 1
    task.updated_at = now
    task.logs.append(
        TaskLog(timestamp=now, level=LogLevel.ERROR, message=f"Task processing failed: {error}")
    )

    if task.retries < task.max_retries:
        task.status = TaskStatus.PENDING
        task.started_at = None
        task.logs.append(
            TaskLog(
                timestamp=now,
                level=LogLevel.INFO,
                message=f"Task will retry ({task.retries}/{task.max_retries})",
            )
        )
        log.warning(
            "task_will_retry",
            task_id=task.id,
            retries=task.retries,
            max_retries=task.max_retries,
        )
    else:
        task.status = TaskStatus.FAILED
        task.error = error
        task.completed_at = now
        log.error("task_failed_permanently", task_id=task.id, retries=task.retries)


class JsonTaskQueue:
    """持久化任务队列的 JSON 文件实现"""

    def __init__(
        self,
        path: str | Path,
        max_retries: int | None = None,
        lock: Lock | None = None,
        lock_stale_s: float | None = None,
    ) -> None:
        """
        Args:
            path: 存储文件路径
            max_retries: 新任务默认 maxRetries，缺省读取 TASK_MAX_RETRIES
            lock: 自定义跨进程锁，缺省使用 FileLock
            lock_stale_s: FileLock 过期阈值，缺省读取 TASK_LOCK_STALE_MS
        """
        self._path = Path(path)
        self._max_retries = max_retries if max_retries is not None else get_max_retries()
        if self._max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self._lock: Lock = lock or FileLock(
            self._path,
            stale_s=lock_stale_s if lock_stale_s is not None else get_lock_stale_s(),
        )
        # 同进程内先串行化，减少文件锁争用；跨进程互斥仍由文件锁保证
        self._local_lock = asyncio.Lock()
        self._initialized = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def max_retries(self) -> int:
        return self._max_retries

    async def initialize(self) -> None:
        """确保存储文件存在；已存在时校验可读写

        Raises:
            StorageError: 目录不可创建或文件不可读写
        """
        if self._initialized:
            return

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(str(self._path), "无法创建队列目录", e) from e

        release = await self._lock.acquire()
        try:
            if self._path.exists():
                if not os.access(self._path, os.R_OK | os.W_OK):
                    raise StorageError(str(self._path), "队列文件不可读写")
            else:
                await asyncio.to_thread(write_state, self._path, [])
                log.info("task_queue_file_created", path=str(self._path))
        finally:
            await release()

        self._initialized = True
        log.info("task_queue_initialized", path=str(self._path))

    async def _transaction(self, updater, write: bool = True):
        await self.initialize()
        async with self._local_lock:
            return await atomic_update(self._path, self._lock, updater, write=write)

    async def add_task(
        self,
        prompt: dict[str, Any] | EmailContent,
        reporter_email: str,
    ) -> Task:
        """新任务入队

        Args:
            prompt: 生产者载荷（邮件内容或任意 JSON 对象）
            reporter_email: 报告接收人

        Returns:
            新建的 pending 任务
        """
        if isinstance(prompt, EmailContent):
            prompt = prompt.to_prompt()

        now = _now()
        task = Task(
            id=str(ULID()),
            status=TaskStatus.PENDING,
            prompt=prompt,
            reporter_email=reporter_email,
            max_retries=self._max_retries,
            created_at=now,
            updated_at=now,
            logs=[TaskLog(timestamp=now, level=LogLevel.INFO, message="Task created")],
        )

        def updater(tasks: list[Task]) -> tuple[list[Task], None]:
            return [*tasks, task], None

        await self._transaction(updater)
        log.info("task_added", task_id=task.id, subject=task.subject)
        return task

    async def pick_task(self) -> Task | None:
        """原子认领存储顺序中第一个 pending 任务

        Returns:
            已置为 processing 的任务；没有 pending 任务时返回 None
        """

        def updater(tasks: list[Task]) -> tuple[list[Task] | None, Task | None]:
            for task in tasks:
                if task.status != TaskStatus.PENDING:
                    continue
                now = _now()
                task.status = TaskStatus.PROCESSING
                task.started_at = now
                task.updated_at = now
                task.logs.append(
                    TaskLog(timestamp=now, level=LogLevel.INFO, message="Task processing started")
                )
                log.info("task_picked", task_id=task.id)
                return tasks, task
            return None, None

        return await self._transaction(updater)

    async def complete_task(
        self,
        task_id: str,
        result: TaskResult | dict[str, Any],
    ) -> Task | None:
        """标记任务完成

        Returns:
            更新后的任务；id 不存在或状态不允许时返回 None（no-op）
        """
        task_result = (
            result if isinstance(result, TaskResult) else TaskResult.model_validate(result)
        )

        def updater(tasks: list[Task]) -> tuple[list[Task] | None, Task | None]:
            index = _find_index(tasks, task_id)
            if index == -1:
                log.warning("task_not_found", task_id=task_id, operation="complete_task")
                return None, None

            task = tasks[index]
            if not validate_transition(task.status, TaskStatus.COMPLETED):
                log.warning(
                    "task_transition_rejected",
                    task_id=task_id,
                    from_status=task.status.value,
                    to_status=TaskStatus.COMPLETED.value,
                )
                return None, None

            now = _now()
            task.status = TaskStatus.COMPLETED
            task.result = task_result
            task.completed_at = now
            task.updated_at = now
            task.logs.append(
                TaskLog(timestamp=now, level=LogLevel.INFO, message="Task processing completed")
            )
            log.info("task_completed", task_id=task_id)
            return tasks, task

        return await self._transaction(updater)

    async def fail_task(self, task_id: str, error: str) -> Task | None:
        """记录一次失败尝试

        retries 加一；retries < max_retries 时回到 pending 并清空 started_at，
        否则进入 failed 并保留错误信息。

        Returns:
            更新后的任务；id 不存在或状态不允许时返回 None（no-op）
        """

        def updater(tasks: list[Task]) -> tuple[list[Task] | None, Task | None]:
            index = _find_index(tasks, task_id)
            if index == -1:
                log.warning("task_not_found", task_id=task_id, operation="fail_task")
                return None, None

            task = tasks[index]
            if task.status != TaskStatus.PROCESSING:
                log.warning(
                    "task_transition_rejected",
                    task_id=task_id,
                    from_status=task.status.value,
                    operation="fail_task",
                )
                return None, None

            _apply_failure(task, error, _now())
            return tasks, task

        return await self._transaction(updater)

    async def get_task(self, task_id: str) -> Task | None:
        """根据 id 查询任务快照"""

        def reader(tasks: list[Task]) -> tuple[list[Task], Task | None]:
            index = _find_index(tasks, task_id)
            return tasks, tasks[index] if index != -1 else None

        return await self._transaction(reader, write=False)

    async def find_task(self, id_or_prefix: str) -> Task | None:
        """精确匹配 id，否则返回第一个以该前缀开头的任务（短 id 查询）"""
        if not id_or_prefix:
            return None

        def reader(tasks: list[Task]) -> tuple[list[Task], Task | None]:
            index = _find_index(tasks, id_or_prefix)
            if index != -1:
                return tasks, tasks[index]
            for task in tasks:
                if task.id.startswith(id_or_prefix):
                    return tasks, task
            return tasks, None

        return await self._transaction(reader, write=False)

    async def get_all_tasks(self) -> list[Task]:
        """查询全部任务（存储顺序）"""
        return await self._transaction(lambda tasks: (tasks, list(tasks)), write=False)

    async def get_tasks_by_status(self, status: TaskStatus) -> list[Task]:
        """按状态筛选任务"""
        wanted = TaskStatus(status)
        return await self._transaction(
            lambda tasks: (tasks, [t for t in tasks if t.status == wanted]),
            write=False,
        )

    async def add_task_log(
        self,
        task_id: str,
        level: LogLevel,
        message: str,
        data: Any | None = None,
    ) -> bool:
        """追加一条任务日志并更新 updated_at

        Returns:
            True 表示已追加；id 不存在时返回 False 且不写文件
        """

        def updater(tasks: list[Task]) -> tuple[list[Task] | None, bool]:
            index = _find_index(tasks, task_id)
            if index == -1:
                log.debug("task_not_found", task_id=task_id, operation="add_task_log")
                return None, False
            now = _now()
            task = tasks[index]
            task.logs.append(
                TaskLog(timestamp=now, level=LogLevel(level), message=message, data=data)
            )
            task.updated_at = now
            return tasks, True

        return await self._transaction(updater)

    async def get_stats(self) -> QueueStats:
        """各状态任务计数"""
        return QueueStats.from_tasks(await self.get_all_tasks())

    async def cleanup(self, max_age_s: float = DEFAULT_CLEANUP_MAX_AGE_S) -> int:
        """删除 completed_at 早于 max_age_s 的终态任务

        非终态任务无论多旧都保留；缺少 completed_at 的终态任务按"刚刚完成"计。

        Returns:
            删除的任务数
        """
        max_age = timedelta(seconds=max_age_s)

        def updater(tasks: list[Task]) -> tuple[list[Task] | None, int]:
            now = _now()
            kept = [
                task
                for task in tasks
                if task.status not in TERMINAL_STATES
                or now - (task.completed_at or now) < max_age
            ]
            removed = len(tasks) - len(kept)
            if not removed:
                return None, 0
            log.info("task_queue_cleaned", removed=removed)
            return kept, removed

        return await self._transaction(updater)

    async def recover_stale_tasks(self, stale_after_s: float) -> list[Task]:
        """回收 started_at 早于 stale_after_s 的 processing 任务

        按一次失败尝试处理（计入 retries），用于释放崩溃进程遗留的认领。

        Returns:
            被回收的任务
        """
        stale_after = timedelta(seconds=stale_after_s)

        def updater(tasks: list[Task]) -> tuple[list[Task] | None, list[Task]]:
            now = _now()
            recovered: list[Task] = []
            for task in tasks:
                if task.status != TaskStatus.PROCESSING:
                    continue
                if now - (task.started_at or task.updated_at) < stale_after:
                    continue
                _apply_failure(task, STALE_RECOVERY_ERROR, now)
                recovered.append(task)
            if not recovered:
                return None, []
            log.warning("stale_tasks_recovered", count=len(recovered))
            return tasks, recovered

        return await self._transaction(updater)
