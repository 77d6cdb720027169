# affiliate_system/utils/locks.py
"""
In-process per-user locks.

Commission processing for one purchase touches the purchaser and the whole
sponsor chain; locks are taken in ascending user id order so two chains
that overlap cannot deadlock.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Iterable
import logging

logger = logging.getLogger(__name__)


class UserLockRegistry:

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}

    def lockFor(self, userId: int) -> asyncio.Lock:
        lock = self._locks.get(userId)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[userId] = lock
        return lock

    @asynccontextmanager
    async def hold(self, userIds: Iterable[int]):
        ordered = sorted(set(uid for uid in userIds if uid is not None))
        acquired = []
        try:
            for userId in ordered:
                lock = self.lockFor(userId)
                await lock.acquire()
                acquired.append(lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()

    def clear(self):
        self._locks.clear()


userLocks = UserLockRegistry()
