"""
Keyed asyncio locks.

One ``asyncio.Lock`` per key, created on first use and discarded once no
task holds or waits for it. Waiters on a key are served in arrival order.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from .adapter import LockTimeoutError


logger = logging.getLogger(__name__)


class KeyedLock:
    """
    Mutual exclusion per key within one event loop.

    Usage:
        async with locks.hold("user:42"):
            ...  # read-modify-write

    The lock is released when the block exits, including on exceptions.
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Initialize keyed lock registry.

        Args:
            timeout: Seconds to wait for a key before raising
                LockTimeoutError. None waits forever.
        """
        self.timeout = timeout
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Acquire the lock for ``key`` for the duration of the block."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            if self.timeout is None:
                await lock.acquire()
            elif not await self._acquire_within(lock, self.timeout):
                logger.error(f"Timed out after {self.timeout}s waiting for lock {key}")
                raise LockTimeoutError(f"lock {key} not acquired within {self.timeout}s")

            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    @staticmethod
    async def _acquire_within(lock: asyncio.Lock, timeout: float) -> bool:
        """
        Acquire ``lock`` unless ``timeout`` expires first.

        The acquisition runs as its own task so a grant that lands while the
        timeout fires is observed and released, never leaked.
        """
        acquire = asyncio.ensure_future(lock.acquire())
        try:
            done, _ = await asyncio.wait({acquire}, timeout=timeout)
        except asyncio.CancelledError:
            if acquire.done() and not acquire.cancelled():
                lock.release()
            else:
                acquire.cancel()
            raise
        if done:
            return True

        acquire.cancel()
        try:
            await acquire
        except asyncio.CancelledError:
            return False
        lock.release()
        return False

    def locked(self, key: str) -> bool:
        """Whether some task currently holds ``key``."""
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
