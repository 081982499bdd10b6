"""配置常量模块 -- 可通过环境变量覆盖

包含队列文件路径、默认重试次数、文件锁参数等可配置项。
非法数值不阻塞启动，记录告警后使用默认值。
"""

import os
from pathlib import Path

import structlog

log = structlog.get_logger()

DEFAULT_MAX_RETRIES = 3
DEFAULT_LOCK_STALE_MS = 10_000

# cleanup 默认保留最近 7 天的终态任务
DEFAULT_CLEANUP_MAX_AGE_S: float = 7 * 24 * 60 * 60


def env_int(name: str, default: int, minimum: int | None = None) -> int:
    """读取整数环境变量；缺失或非法时返回默认值"""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        log.warning("invalid_int_config", env_var=name, value=raw, fallback=default)
        return default
    if minimum is not None and value < minimum:
        log.warning("out_of_range_config", env_var=name, value=value, fallback=default)
        return default
    return value


def env_bool(name: str, default: bool) -> bool:
    """读取布尔环境变量；仅 "false"/"0"/"no"/"off" 视为 False"""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() not in ("false", "0", "no", "off")


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("MAIL2AI_DATA_DIR", "data"))


def get_queue_path() -> str:
    """获取任务队列文件路径"""
    return os.environ.get(
        "TASK_QUEUE_PATH",
        str(_get_base_dir() / "tasks.json"),
    )


def get_max_retries() -> int:
    """新任务的默认 maxRetries"""
    return env_int("TASK_MAX_RETRIES", DEFAULT_MAX_RETRIES, minimum=1)


def get_lock_stale_s() -> float:
    """文件锁过期阈值（秒），超过即视为持有者已崩溃"""
    return env_int("TASK_LOCK_STALE_MS", DEFAULT_LOCK_STALE_MS, minimum=1) / 1000
