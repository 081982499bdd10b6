"""队列存储容器模型

存储文件即一个完整文档：{"tasks": [...], "lastUpdated": "..."}，
每个写事务整体读出、内存中修改、整体写回。
"""

from datetime import UTC, datetime

from pydantic import Field

from .enums import TaskStatus
from .task import CamelModel, Task


class QueueState(CamelModel):
    """存储文件的完整内容"""

    tasks: list[Task] = Field(default_factory=list, description="按入队顺序排列的任务")
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="最后写入时间",
    )


class QueueStats(CamelModel):
    """各状态任务计数"""

    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    @classmethod
    def from_tasks(cls, tasks: list[Task]) -> "QueueStats":
        counts = {status: 0 for status in TaskStatus}
        for task in tasks:
            counts[task.status] += 1
        return cls(
            total=len(tasks),
            pending=counts[TaskStatus.PENDING],
            processing=counts[TaskStatus.PROCESSING],
            completed=counts[TaskStatus.COMPLETED],
            failed=counts[TaskStatus.FAILED],
        )
