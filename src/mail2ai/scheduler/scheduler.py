"""Scheduler -- 有并发上限的轮询调度器

状态：stopped -> running -> draining -> stopped。
每次 tick 最多认领一个任务；认领成功后以独立 asyncio.Task 派发，
在途数量永不超过 max_concurrent。
超时默认是协作式的：到期只设置取消信号，由处理能力自行退出；
hard_deadline=True 时到期直接取消处理协程并按超时失败收尾。
"""

import asyncio
import time
from typing import Any

import structlog
from pydantic import BaseModel, Field

from ..core.exceptions import ProcessorNotReadyError, TaskCancelledError
from ..core.models import LogLevel, Task, TaskResult, TaskStatus
from ..core.store.protocols import TaskQueue
from .cancellation import CancellationToken
from .config import SchedulerConfig, load_scheduler_config
from .processor import ProcessingProgress, ProcessOptions, TaskProcessor, processor_name
from .reporter import TaskReporter

log = structlog.get_logger()

# 停机时检查在途任务的间隔
DRAIN_POLL_INTERVAL_S = 0.1


class SchedulerStatus(BaseModel):
    """调度器运行状态快照"""

    running: bool = Field(description="是否已启动")
    draining: bool = Field(description="是否正在优雅停机")
    processing_count: int = Field(description="在途任务数")
    processing_task_ids: list[str] = Field(default_factory=list, description="在途任务 id")
    poll_interval_s: float
    max_concurrent: int
    task_timeout_s: float
    processor_name: str


class Scheduler:
    """任务调度器

    单个队列实例只应有一个调度器；在途表只在事件循环线程内访问。
    """

    def __init__(
        self,
        queue: TaskQueue,
        processor: TaskProcessor,
        config: SchedulerConfig | None = None,
        reporter: TaskReporter | None = None,
    ) -> None:
        self._queue = queue
        self._processor = processor
        self._config = config or load_scheduler_config()
        self._reporter = reporter

        self._running = False
        self._draining = False
        self._processing_count = 0
        self._in_flight: dict[str, CancellationToken] = {}
        self._dispatches: set[asyncio.Task] = set()
        self._poll_task: asyncio.Task | None = None
        self._wakeup = asyncio.Event()
        # 串行化 tick，保证"检查上限 + 认领"整体不被交错
        self._tick_lock = asyncio.Lock()

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def running(self) -> bool:
        return self._running

    @property
    def draining(self) -> bool:
        return self._draining

    @property
    def processor_name(self) -> str:
        return processor_name(self._processor)

    async def start(self) -> None:
        """启动调度器

        Raises:
            ProcessorNotReadyError: 处理能力就绪检查返回 False
        """
        if not self._config.enabled:
            log.warning("scheduler_disabled")
            return
        if self._running:
            log.warning("scheduler_already_running")
            return

        is_ready = getattr(self._processor, "is_ready", None)
        if is_ready is not None and not await is_ready():
            raise ProcessorNotReadyError(self.processor_name)

        if self._config.stale_after_s > 0:
            await self._recover_stale()

        self._running = True
        self._draining = False
        self._wakeup = asyncio.Event()
        self._poll_task = asyncio.create_task(self._poll_loop(), name="scheduler-poll")

        log.info(
            "scheduler_started",
            poll_interval_s=self._config.poll_interval_s,
            max_concurrent=self._config.max_concurrent,
            task_timeout_s=self._config.task_timeout_s,
            hard_deadline=self._config.hard_deadline,
            processor=self.processor_name,
        )

    async def stop(self) -> None:
        """优雅停机：不再认领，等待在途任务，超时后取消剩余任务"""
        if not self._running:
            return

        self._draining = True
        self._wakeup.set()
        if self._poll_task is not None:
            await self._poll_task
            self._poll_task = None
        # 等待进行中的 tick（如 trigger_poll）完成认领与派发
        async with self._tick_lock:
            pass

        if self._in_flight:
            log.info("scheduler_draining", in_flight=len(self._in_flight))
            loop = asyncio.get_running_loop()
            deadline = loop.time() + self._config.graceful_shutdown_timeout_s
            while self._in_flight:
                if loop.time() >= deadline:
                    log.warning(
                        "graceful_shutdown_timeout",
                        remaining=list(self._in_flight),
                    )
                    for task_id, token in list(self._in_flight.items()):
                        log.warning("task_force_cancelled", task_id=task_id)
                        token.cancel("shutdown")
                    break
                await asyncio.sleep(DRAIN_POLL_INTERVAL_S)

        destroy = getattr(self._processor, "destroy", None)
        if destroy is not None:
            try:
                await destroy()
            except Exception as e:
                log.error(
                    "processor_destroy_failed",
                    processor=self.processor_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        self._running = False
        self._draining = False
        log.info("scheduler_stopped")

    async def trigger_poll(self) -> None:
        """手动触发一次 tick"""
        if not self._running:
            log.warning("scheduler_not_running")
            return
        await self._tick()

    async def wait_until_idle(self) -> None:
        """等待当前所有派发结束（不阻止新的认领）"""
        while self._dispatches:
            await asyncio.gather(*list(self._dispatches), return_exceptions=True)

    def get_status(self) -> SchedulerStatus:
        return SchedulerStatus(
            running=self._running,
            draining=self._draining,
            processing_count=self._processing_count,
            processing_task_ids=list(self._in_flight),
            poll_interval_s=self._config.poll_interval_s,
            max_concurrent=self._config.max_concurrent,
            task_timeout_s=self._config.task_timeout_s,
            processor_name=self.processor_name,
        )

    async def _poll_loop(self) -> None:
        while self._running and not self._draining:
            await self._tick()
            try:
                await asyncio.wait_for(
                    self._wakeup.wait(),
                    timeout=self._config.poll_interval_s,
                )
            except TimeoutError:
                pass

    async def _tick(self) -> None:
        async with self._tick_lock:
            if self._draining:
                return
            if self._processing_count >= self._config.max_concurrent:
                log.debug(
                    "max_concurrency_reached",
                    processing=self._processing_count,
                    max_concurrent=self._config.max_concurrent,
                )
                return

            try:
                task = await self._queue.pick_task()
            except Exception as e:
                # 单次 tick 失败不影响后续轮询
                log.error("poll_failed", error=str(e), error_type=type(e).__name__)
                return
            if task is None:
                return

            self._processing_count += 1
            token = CancellationToken()
            self._in_flight[task.id] = token
            dispatch = asyncio.create_task(
                self._dispatch(task, token),
                name=f"dispatch-{task.id}",
            )
            self._dispatches.add(dispatch)
            dispatch.add_done_callback(self._dispatches.discard)
            log.debug(
                "task_dispatched",
                task_id=task.id,
                processing=self._processing_count,
                max_concurrent=self._config.max_concurrent,
            )

    async def _dispatch(self, task: Task, token: CancellationToken) -> None:
        started = time.monotonic()
        loop = asyncio.get_running_loop()
        timer = loop.call_later(self._config.task_timeout_s, self._on_timeout, task.id, token)
        log.info("task_processing_started", task_id=task.id, subject=task.subject)

        try:
            try:
                await self._queue.add_task_log(
                    task.id,
                    LogLevel.INFO,
                    f"Invoking processor ({self.processor_name})...",
                )
                result = await self._invoke(task, token)
                if token.cancelled:
                    raise TaskCancelledError()
            except Exception as e:
                await self._handle_failure(task, e)
            else:
                await self._handle_success(task, result, started)
        finally:
            timer.cancel()
            self._in_flight.pop(task.id, None)
            self._processing_count -= 1

    async def _invoke(self, task: Task, token: CancellationToken) -> TaskResult:
        options = ProcessOptions(
            cancellation_token=token,
            timeout_s=self._config.task_timeout_s,
            on_progress=lambda progress: self._on_progress(task.id, progress),
        )
        call = self._processor.process_task(task, options)

        if self._config.hard_deadline:
            try:
                result: Any = await asyncio.wait_for(call, timeout=self._config.task_timeout_s)
            except TimeoutError as e:
                token.cancel("timeout")
                raise TaskCancelledError() from e
        else:
            result = await call

        if isinstance(result, TaskResult):
            return result
        return TaskResult.model_validate(result)

    async def _handle_success(self, task: Task, result: TaskResult, started: float) -> None:
        try:
            completed = await self._queue.complete_task(task.id, result)
        except Exception as e:
            # 任务保持 processing，由启动时的遗留回收处理
            log.error(
                "task_finalize_failed",
                task_id=task.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return
        if completed is None:
            return

        log.info(
            "task_processing_succeeded",
            task_id=task.id,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        await self._report(completed)

    async def _handle_failure(self, task: Task, error: Exception) -> None:
        message = str(error) or type(error).__name__
        log.error(
            "task_processing_failed",
            task_id=task.id,
            error=message,
            error_type=type(error).__name__,
        )
        try:
            updated = await self._queue.fail_task(task.id, message)
        except Exception as e:
            log.error(
                "task_finalize_failed",
                task_id=task.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        if updated is not None and updated.status == TaskStatus.FAILED:
            await self._report(updated)

    async def _report(self, task: Task) -> None:
        if self._reporter is None:
            return
        try:
            await self._reporter.send_task_report(task)
        except Exception as e:
            log.warning(
                "task_report_failed",
                task_id=task.id,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _recover_stale(self) -> None:
        recovered = await self._queue.recover_stale_tasks(self._config.stale_after_s)
        for task in recovered:
            if task.status == TaskStatus.FAILED:
                await self._report(task)

    def _on_timeout(self, task_id: str, token: CancellationToken) -> None:
        log.warning(
            "task_timed_out",
            task_id=task_id,
            timeout_s=self._config.task_timeout_s,
        )
        token.cancel("timeout")

    def _on_progress(self, task_id: str, progress: ProcessingProgress) -> None:
        log.debug(
            "task_progress",
            task_id=task_id,
            stage=progress.stage,
            message=progress.message,
            percent=progress.percent,
        )
