"""structlog 配置模块

dev 模式：pretty print 可读输出
json 模式：结构化 JSON 输出

调度器、CLI、Gateway 共用同一套处理器链；
Task 自身的处理历史另外记录在 Task.logs 中。
"""

import logging
import os

import structlog

# 第三方库默认只输出 WARNING 及以上
_NOISY_LOGGERS = ("uvicorn.access", "httpx", "asyncio")


def setup_logging(
    log_format: str | None = None,
    log_level: str | None = None,
) -> None:
    """初始化 structlog 配置

    Args:
        log_format: "json" 或 "dev"；缺省读取 MAIL2AI_LOG_FORMAT（默认 dev）
        log_level: 日志级别；缺省读取 MAIL2AI_LOG_LEVEL（默认 INFO）
    """
    log_format = log_format or os.environ.get("MAIL2AI_LOG_FORMAT", "dev")
    log_level = log_level or os.environ.get("MAIL2AI_LOG_LEVEL", "INFO")

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        # 生产模式：异常栈也结构化输出
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer(
            ensure_ascii=False
        )
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
