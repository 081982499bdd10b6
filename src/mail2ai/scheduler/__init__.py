"""Mail2AI Scheduler -- 轮询调度、取消信号与处理能力契约"""

from .cancellation import CancellationToken
from .config import SchedulerConfig, load_scheduler_config
from .processor import (
    EchoProcessor,
    ProcessingProgress,
    ProcessOptions,
    TaskProcessor,
    processor_name,
)
from .reporter import LogReporter, TaskReporter
from .scheduler import Scheduler, SchedulerStatus

__all__ = [
    "Scheduler",
    "SchedulerStatus",
    "SchedulerConfig",
    "load_scheduler_config",
    "CancellationToken",
    "TaskProcessor",
    "ProcessOptions",
    "ProcessingProgress",
    "EchoProcessor",
    "processor_name",
    "TaskReporter",
    "LogReporter",
]
