"""CancellationToken -- 协作式取消信号

调度器在超时或停机时设置 token；处理能力负责观察并尽快返回。
token 只能从未取消变为已取消，不可复位。
"""

import asyncio

from ..core.exceptions import TaskCancelledError


class CancellationToken:
    """一次处理尝试的取消信号"""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        """取消原因（"timeout" / "shutdown" 等），未取消时为 None"""
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """设置取消信号；重复调用保留第一次的原因"""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    async def wait(self) -> None:
        """等待直到被取消"""
        await self._event.wait()

    async def sleep(self, delay_s: float) -> bool:
        """可被取消打断的 sleep

        Returns:
            True 表示睡满 delay_s，False 表示中途被取消
        """
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay_s)
        except TimeoutError:
            return True
        return False

    def raise_if_cancelled(self) -> None:
        """已取消时抛出 TaskCancelledError"""
        if self.cancelled:
            raise TaskCancelledError()
