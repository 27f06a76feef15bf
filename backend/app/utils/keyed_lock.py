"""按 key 串行化的异步锁"""
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class KeyedLock:
    """同一个 key 的临界区串行执行，不同 key 互不影响

    锁按引用计数维护，最后一个持有者退出后即移除。
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        k = str(key)
        lock = self._locks.get(k)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[k] = lock
        self._waiters[k] = self._waiters.get(k, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._waiters.get(k, 1) - 1
            if remaining <= 0:
                _ = self._waiters.pop(k, None)
                _ = self._locks.pop(k, None)
            else:
                self._waiters[k] = remaining

    def locked(self, key: str) -> bool:
        lock = self._locks.get(str(key))
        return bool(lock is not None and lock.locked())

    def __len__(self) -> int:
        return len(self._locks)


# 进程内共享的对话锁
conversation_locks = KeyedLock()
