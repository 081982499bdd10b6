"""FileLock -- 跨进程咨询锁

以 "<store>.lock" 目录作为锁：mkdir 在所有平台上都是原子操作，
目录已存在即表示锁被占用。锁目录 mtime 超过 stale_s 视为持有者已崩溃，
新的获取方可回收该锁。获取失败时按随机化指数退避重试，次数有上限。

每次获取都会在锁目录内写入一次性 owner 令牌；持有期间每 stale_s/2 刷新一次
目录 mtime。释放时令牌不匹配说明锁已被他人回收（lock_compromised），
此时不删除锁目录，避免误删新持有者的锁。
"""

import asyncio
import os
import random
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from ulid import ULID

from ..exceptions import LockTimeoutError, StorageError
from .protocols import ReleaseFn

log = structlog.get_logger()

OWNER_FILE = "owner"


class FileLock:
    """基于锁目录的跨进程互斥锁"""

    def __init__(
        self,
        path: str | Path,
        stale_s: float = 10.0,
        retries: int = 15,
        factor: float = 1.5,
        min_timeout_s: float = 0.05,
        max_timeout_s: float = 0.5,
        randomize: bool = True,
        refresh: bool = True,
    ) -> None:
        """
        Args:
            path: 被保护的文件路径
            stale_s: 锁过期阈值（秒）
            retries: 首次失败后的重试次数
            factor: 退避指数因子
            min_timeout_s: 首次退避时长
            max_timeout_s: 单次退避上限
            randomize: 是否对每次退避乘以 [1, 2) 的随机因子
            refresh: 持有期间是否定期刷新锁目录 mtime
        """
        if stale_s <= 0:
            raise ValueError("stale_s must be positive")
        self._target = Path(path)
        self._lock_dir = Path(f"{path}.lock")
        self._owner_file = self._lock_dir / OWNER_FILE
        self._stale_s = stale_s
        self._retries = retries
        self._factor = factor
        self._min_timeout_s = min_timeout_s
        self._max_timeout_s = max_timeout_s
        self._randomize = randomize
        self._refresh = refresh

    @property
    def lock_path(self) -> Path:
        return self._lock_dir

    @property
    def stale_s(self) -> float:
        return self._stale_s

    def is_locked(self) -> bool:
        """锁目录当前是否存在（不区分是否过期）"""
        return self._lock_dir.exists()

    async def acquire(self) -> ReleaseFn:
        """获取锁，返回只对本次持有有效的释放回调

        Raises:
            LockTimeoutError: 重试次数耗尽
            StorageError: 锁目录无法创建（权限、路径不存在等）
        """
        attempts = self._retries + 1
        for attempt in range(attempts):
            token = self._try_acquire()
            if token is not None:
                return self._holder(token)
            if attempt < self._retries:
                await asyncio.sleep(self.backoff_delay(attempt))

        raise LockTimeoutError(str(self._target), attempts)

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        """async with 形式持有锁"""
        release = await self.acquire()
        try:
            yield
        finally:
            await release()

    def backoff_delay(self, attempt: int) -> float:
        """第 attempt 次（从 0 开始）失败后的等待时长"""
        delay = self._min_timeout_s * (self._factor**attempt)
        if self._randomize:
            delay *= 1 + random.random()
        return min(delay, self._max_timeout_s)

    def _holder(self, token: str) -> ReleaseFn:
        refresher = None
        if self._refresh:
            refresher = asyncio.create_task(self._keep_alive(token), name="file-lock-refresh")
        released = False

        async def release() -> None:
            nonlocal released
            if released:
                return
            released = True
            if refresher is not None:
                refresher.cancel()
            self._release(token)

        return release

    def _try_acquire(self) -> str | None:
        token = self._create()
        if token is not None or not self._is_stale():
            return token

        # 回收过期锁后立即重新抢占
        try:
            self._remove_lock_dir()
        except OSError as e:
            raise StorageError(str(self._target), "无法回收过期文件锁", e) from e
        log.warning(
            "stale_lock_reclaimed",
            path=str(self._target),
            stale_s=self._stale_s,
        )
        return self._create()

    def _create(self) -> str | None:
        try:
            os.mkdir(self._lock_dir)
        except FileExistsError:
            return None
        except OSError as e:
            raise StorageError(str(self._target), "无法创建文件锁", e) from e

        token = str(ULID())
        try:
            self._owner_file.write_text(token, encoding="utf-8")
        except OSError as e:
            self._remove_lock_dir()
            raise StorageError(str(self._target), "无法写入文件锁令牌", e) from e
        return token

    def _read_owner(self) -> str | None:
        try:
            return self._owner_file.read_text(encoding="utf-8")
        except OSError:
            return None

    def _remove_lock_dir(self) -> None:
        self._owner_file.unlink(missing_ok=True)
        try:
            os.rmdir(self._lock_dir)
        except FileNotFoundError:
            pass

    def _is_stale(self) -> bool:
        try:
            mtime = os.stat(self._lock_dir).st_mtime
        except FileNotFoundError:
            return False
        return time.time() - mtime > self._stale_s

    async def _keep_alive(self, token: str) -> None:
        interval = self._stale_s / 2
        while True:
            await asyncio.sleep(interval)
            if self._read_owner() != token:
                log.error("lock_compromised", path=str(self._target), stage="refresh")
                return
            try:
                os.utime(self._lock_dir)
            except OSError as e:
                log.warning(
                    "lock_refresh_failed",
                    path=str(self._target),
                    error_type=type(e).__name__,
                )
                return

    def _release(self, token: str) -> None:
        owner = self._read_owner()
        if owner is None and not self._lock_dir.exists():
            log.warning("lock_already_released", path=str(self._target))
            return
        if owner != token:
            # 持有时间超过 stale_s，锁已被他人回收
            log.error("lock_compromised", path=str(self._target), stage="release")
            return
        try:
            self._remove_lock_dir()
        except OSError as e:
            log.error(
                "lock_release_failed",
                path=str(self._target),
                error_type=type(e).__name__,
            )
