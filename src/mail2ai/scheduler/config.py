"""SchedulerConfig -- 调度器配置加载

从环境变量加载配置；环境变量中的时长以毫秒表示，模型内部统一用秒。
非法数值记录告警后回退默认值，不阻塞启动。
"""

from pydantic import BaseModel, Field

from ..core.config import env_bool, env_int

DEFAULT_POLL_INTERVAL_MS = 5_000
DEFAULT_MAX_CONCURRENT = 1
DEFAULT_TASK_TIMEOUT_MS = 300_000
DEFAULT_SHUTDOWN_TIMEOUT_MS = 30_000


class SchedulerConfig(BaseModel):
    """调度器配置

    环境变量:
        SCHEDULER_POLL_INTERVAL: 轮询间隔（毫秒，默认 5000）
        SCHEDULER_MAX_CONCURRENT: 并发上限（默认 1）
        SCHEDULER_TASK_TIMEOUT: 单任务超时（毫秒，默认 300000）
        SCHEDULER_SHUTDOWN_TIMEOUT: 优雅停机等待上限（毫秒，默认 30000）
        SCHEDULER_ENABLED: 是否启用（默认 true）
        SCHEDULER_HARD_DEADLINE: 超时即终止处理协程（默认 false）
        SCHEDULER_STALE_AFTER: 启动时回收 processing 遗留任务的阈值（毫秒，0 关闭）
    """

    poll_interval_s: float = Field(default=5.0, gt=0, description="轮询间隔（秒）")
    max_concurrent: int = Field(default=1, ge=1, description="同时处理的任务上限")
    task_timeout_s: float = Field(default=300.0, gt=0, description="单任务超时（秒）")
    graceful_shutdown_timeout_s: float = Field(
        default=30.0,
        ge=0,
        description="停机时等待在途任务的上限（秒）",
    )
    enabled: bool = Field(default=True, description="False 时 start() 为 no-op")
    hard_deadline: bool = Field(
        default=False,
        description="True 时超时直接取消处理协程并按超时失败收尾",
    )
    stale_after_s: float = Field(
        default=0.0,
        ge=0,
        description="启动时回收 started_at 早于该阈值的 processing 任务，0 表示关闭",
    )


def load_scheduler_config() -> SchedulerConfig:
    """从环境变量加载调度器配置

    Returns:
        SchedulerConfig 实例
    """
    return SchedulerConfig(
        poll_interval_s=env_int("SCHEDULER_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_MS, minimum=1)
        / 1000,
        max_concurrent=env_int("SCHEDULER_MAX_CONCURRENT", DEFAULT_MAX_CONCURRENT, minimum=1),
        task_timeout_s=env_int("SCHEDULER_TASK_TIMEOUT", DEFAULT_TASK_TIMEOUT_MS, minimum=1)
        / 1000,
        graceful_shutdown_timeout_s=env_int(
            "SCHEDULER_SHUTDOWN_TIMEOUT", DEFAULT_SHUTDOWN_TIMEOUT_MS, minimum=0
        )
        / 1000,
        enabled=env_bool("SCHEDULER_ENABLED", True),
        hard_deadline=env_bool("SCHEDULER_HARD_DEADLINE", False),
        stale_after_s=env_int("SCHEDULER_STALE_AFTER", 0, minimum=0) / 1000,
    )
