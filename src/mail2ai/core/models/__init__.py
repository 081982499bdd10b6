"""Mail2AI Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    LogLevel,
    TaskStatus,
    validate_transition,
)
from .message import EmailAddress, EmailAttachment, EmailContent
from .queue import QueueState, QueueStats
from .task import Task, TaskLog, TaskResult, TodoItem

__all__ = [
    # 枚举
    "TaskStatus",
    "LogLevel",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "validate_transition",
    # Task
    "Task",
    "TaskLog",
    "TaskResult",
    "TodoItem",
    # Message
    "EmailContent",
    "EmailAddress",
    "EmailAttachment",
    # Queue
    "QueueState",
    "QueueStats",
]
