"""Per-key mutual exclusion for read-modify-write sequences."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional


def employee_key(employee_id: int) -> str:
    return f"employee:{employee_id}"


def transaction_key(reference: str) -> str:
    return f"transaction:{reference}"


class KeyedLock:
    """Registry of asyncio locks keyed by string.

    Locks are created on first use and dropped once no task holds or waits
    on them. Several keys are always acquired in sorted order so two tasks
    holding overlapping key sets cannot deadlock.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _release(self, key: str) -> None:
        self._users[key] -= 1
        if not self._users[key]:
            del self._users[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(self, *keys: Optional[str]) -> AsyncIterator[None]:
        """Hold every given key (None entries are ignored) for the block."""
        ordered = sorted({key for key in keys if key})
        acquired = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    await lock.acquire()
                except BaseException:
                    self._release(key)
                    raise
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._release(key)

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    def __len__(self) -> int:
        return len(self._locks)
