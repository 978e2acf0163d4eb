"""Bounded admission of concurrent API calls."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class ConcurrencyGate:
    """Counting gate with ``capacity`` slots; 0 admits everyone immediately.

    Waiters are not served in any particular order.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        self._capacity = capacity
        self._semaphore = asyncio.Semaphore(capacity) if capacity else None
        self._in_use = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def unbounded(self) -> bool:
        return self._semaphore is None

    @property
    def in_use(self) -> int:
        return self._in_use

    async def acquire(self) -> None:
        if self._semaphore is not None:
            await self._semaphore.acquire()
        self._in_use += 1

    def release(self) -> None:
        if self._in_use == 0:
            raise RuntimeError("release() called without a matching acquire()")
        self._in_use -= 1
        if self._semaphore is not None:
            self._semaphore.release()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()
