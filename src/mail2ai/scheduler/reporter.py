"""报告契约 -- TaskReporter 协议与 LogReporter

调度器在任务进入终态后调用 reporter；reporter 抛出的异常只记录日志，
不会改变任务状态。
"""

from typing import Protocol

import structlog

from ..core.models import Task, TaskStatus

log = structlog.get_logger()


class TaskReporter(Protocol):
    """终态任务的报告接口"""

    async def send_task_report(self, task: Task) -> None:
        """发送任务报告"""
        ...


class LogReporter:
    """以结构化日志输出报告；缺少 reporter_email 的任务跳过"""

    async def send_task_report(self, task: Task) -> None:
        if not task.reporter_email:
            log.warning("task_report_skipped", task_id=task.id, reason="no_reporter_email")
            return

        if task.status == TaskStatus.COMPLETED:
            log.info(
                "task_report",
                task_id=task.id,
                to=task.reporter_email,
                subject=task.subject,
                status=task.status.value,
                summary=task.result.summary if task.result else None,
            )
        else:
            log.info(
                "task_report",
                task_id=task.id,
                to=task.reporter_email,
                subject=task.subject,
                status=task.status.value,
                error=task.error,
                retries=task.retries,
            )
