"""
Per-key mutual exclusion for workflow mutations.

One asyncio.Lock per key, created on demand and dropped once no task holds
or waits on it. Waiters queue in FIFO order; a waiter that cannot acquire
within the timeout gets a retryable ConcurrencyConflict.

Usage:
    >>> locks = KeyedLock(timeout=5.0)
    >>> async with locks.hold(f"rx:{prescription_id}"):
    ...     ...  # read-modify-write
"""

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager

from pharmflow.core.exceptions import ConcurrencyConflict
from pharmflow.core.logger import get_logger

logger = get_logger(__name__)


class _Slot:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class KeyedLock:
    """Registry of per-key locks with acquisition timeout."""

    def __init__(self, timeout: float | None = 10.0):
        self.timeout = timeout
        self._slots: dict[Hashable, _Slot] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable, timeout: float | None = None) -> AsyncIterator[None]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Raises:
            ConcurrencyConflict: If the lock is not acquired within the timeout
        """
        wait = self.timeout if timeout is None else timeout
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _Slot()
        slot.users += 1

        try:
            try:
                await asyncio.wait_for(slot.lock.acquire(), timeout=wait)
            except TimeoutError:
                logger.warning(f"Timed out after {wait}s waiting for lock {key!r}")
                raise ConcurrencyConflict(str(key), f"Timed out waiting for {key}; retry") from None

            try:
                yield
            finally:
                slot.lock.release()
        finally:
            slot.users -= 1
            if slot.users == 0 and self._slots.get(key) is slot:
                del self._slots[key]

    def locked(self, key: Hashable) -> bool:
        slot = self._slots.get(key)
        return slot is not None and slot.lock.locked()

    def __len__(self) -> int:
        return len(self._slots)
