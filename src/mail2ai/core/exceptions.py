"""Mail2AI 异常体系

TaskNotFound 不是异常：读操作返回 None，写操作记录日志后 no-op。
处理能力抛出的任意异常都由调度器捕获并转为 fail_task。
"""


class Mail2AIError(Exception):
    """Mail2AI 基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class StorageError(Mail2AIError):
    """存储文件读写或加锁失败

    队列内部的有限次重试耗尽后才会抛出；
    调用方应将其视为该次操作的硬失败。
    """

    def __init__(self, path: str, message: str, original_error: Exception | None = None) -> None:
        """
        Args:
            path: 存储文件路径
            message: 错误描述
            original_error: 原始异常
        """
        detail = f"{message}: {path}"
        if original_error is not None:
            detail = f"{detail} -- {original_error}"
        super().__init__(detail, recoverable=True)
        self.path = path
        self.original_error = original_error


class LockTimeoutError(StorageError):
    """在重试预算内未能获取文件锁"""

    def __init__(self, path: str, attempts: int) -> None:
        super().__init__(path, f"获取文件锁失败（尝试 {attempts} 次）")
        self.attempts = attempts


class TaskCancelledError(Mail2AIError):
    """任务被协作式取消（超时或停机）"""

    def __init__(self, message: str = "Task was cancelled (timeout or shutdown).") -> None:
        super().__init__(message, recoverable=True)


class ProcessorNotReadyError(Mail2AIError):
    """处理能力就绪检查失败，调度器拒绝启动"""

    def __init__(self, processor_name: str) -> None:
        super().__init__(f"Processor is not ready: {processor_name}", recoverable=False)
        self.processor_name = processor_name
