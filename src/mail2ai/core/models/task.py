"""Task Domain Model -- 队列中的持久化工作单元

落盘字段使用 camelCase（reporterEmail / maxRetries / createdAt ...），
Python 侧使用 snake_case，两者通过 alias 互通。
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .enums import TERMINAL_STATES, LogLevel, TaskStatus


class CamelModel(BaseModel):
    """落盘模型基类：camelCase 序列化，snake_case / camelCase 均可构造"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_store(self) -> dict[str, Any]:
        """序列化为落盘格式"""
        return self.model_dump(mode="json", by_alias=True)


class TaskLog(CamelModel):
    """Task 日志条目（append-only）"""

    timestamp: datetime = Field(description="记录时间")
    level: LogLevel = Field(default=LogLevel.INFO, description="日志级别")
    message: str = Field(description="日志内容")
    data: Any | None = Field(default=None, description="附加结构化数据")


class TodoItem(CamelModel):
    """处理结果中的待办项"""

    id: str
    title: str
    status: Literal["pending", "in-progress", "completed"] = "pending"
    priority: Literal["high", "medium", "low"] | None = None
    description: str | None = None


class TaskResult(CamelModel):
    """处理能力返回的结构化结果

    对核心层不透明：未声明的字段原样保留。
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    issue_url: str | None = Field(default=None, description="创建的 Issue 链接")
    issue_number: int | None = Field(default=None, description="Issue 编号")
    summary: str | None = Field(default=None, description="处理摘要")
    todos: list[TodoItem] = Field(default_factory=list, description="待办列表")
    response: str | None = Field(default=None, description="完整响应")
    agent_logs: list[str] = Field(default_factory=list, description="处理过程日志")


class Task(CamelModel):
    """Task 数据模型

    status 只能经由队列操作流转：
    add_task -> pending，pick_task -> processing，
    complete_task -> completed，fail_task -> pending（重试）或 failed。
    """

    id: str = Field(description="唯一标识，ULID 格式")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="当前状态")
    prompt: dict[str, Any] = Field(description="生产者提供的载荷，核心层不修改")
    reporter_email: str = Field(description="报告接收人，原样透传")
    result: TaskResult | None = Field(default=None, description="仅 completed 时存在")
    error: str | None = Field(default=None, description="仅 failed 时存在，最后一次错误")
    retries: int = Field(default=0, ge=0, description="已失败次数")
    max_retries: int = Field(default=3, ge=1, description="最大尝试次数")
    created_at: datetime = Field(description="创建时间")
    started_at: datetime | None = Field(default=None, description="本次处理开始时间")
    completed_at: datetime | None = Field(default=None, description="进入终态的时间")
    updated_at: datetime = Field(description="更新时间")
    logs: list[TaskLog] = Field(default_factory=list, description="任务日志")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    @property
    def subject(self) -> str:
        """邮件类载荷的主题，缺失时返回空串"""
        value = self.prompt.get("subject")
        return value if isinstance(value, str) else ""
