"""
Per-ticket serialization.

Mutations of the same ticket run one at a time inside this process;
different tickets never wait on each other. Cross-process safety comes from
the storage layer (row lock on load plus the version check on save).
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class TicketLockRegistry:
    """Hands out one asyncio.Lock per ticket id, dropped once unused."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, ticket_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(ticket_id, asyncio.Lock())
        self._waiters[ticket_id] = self._waiters.get(ticket_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[ticket_id] -= 1
            if self._waiters[ticket_id] == 0:
                del self._waiters[ticket_id]
                del self._locks[ticket_id]

    def is_locked(self, ticket_id: str) -> bool:
        lock = self._locks.get(ticket_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
