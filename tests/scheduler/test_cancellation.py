"""CancellationToken 单元测试"""

import asyncio

import pytest

from mail2ai.core.exceptions import TaskCancelledError
from mail2ai.scheduler import CancellationToken


class TestCancellationToken:
    """取消信号"""

    def test_initial_state(self):
        """初始未取消"""
        token = CancellationToken()
        assert token.cancelled is False
        assert token.reason is None
        token.raise_if_cancelled()

    def test_cancel_keeps_first_reason(self):
        """重复取消保留第一次原因"""
        token = CancellationToken()
        token.cancel("timeout")
        token.cancel("shutdown")
        assert token.cancelled is True
        assert token.reason == "timeout"

    def test_raise_if_cancelled(self):
        """已取消时抛出 TaskCancelledError"""
        token = CancellationToken()
        token.cancel()
        with pytest.raises(TaskCancelledError, match="Task was cancelled"):
            token.raise_if_cancelled()

    async def test_sleep_completes(self):
        """未取消时睡满"""
        token = CancellationToken()
        assert await token.sleep(0.01) is True

    async def test_sleep_interrupted(self):
        """取消时提前醒来"""
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        loop.call_later(0.02, token.cancel, "shutdown")

        started = loop.time()
        assert await token.sleep(5) is False
        assert loop.time() - started < 1

    async def test_wait(self):
        """wait 在取消后返回"""
        token = CancellationToken()
        waiter = asyncio.create_task(token.wait())
        await asyncio.sleep(0)
        assert not waiter.done()
        token.cancel()
        await asyncio.wait_for(waiter, timeout=1)
