"""
assetrewards/protocol/locks.py

Per-reward mutual exclusion.

One trio.Lock per reward id, created on first use and discarded once no
task holds or waits for it.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

import trio


class KeyedLock:
    """
    Serializes work on the same key while other keys proceed concurrently.

    Usage:
        locks = KeyedLock()
        async with locks.hold(reward_id):
            ...
    """

    def __init__(self):
        self._locks: Dict[str, trio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = trio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]
