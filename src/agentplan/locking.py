"""Advisory, process-local locks keyed by string.

A :class:`LockRegistry` serializes read-modify-write sequences against one
persisted document::

    locks = LockRegistry()
    result = await locks.with_lock(identity, lambda: mutate(identity))

    async with locks.hold(identity):
        ...

Two holders of the same key never interleave: the second body starts only
after the first has settled, whether it returned or raised. Entries are
dropped once nobody holds or waits on a key.

The lock is NOT reentrant. Calling ``with_lock(key, ...)`` again with the
same key from inside the body deadlocks. It also does not protect against
another process writing the same file.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from agentplan import log

T = TypeVar("T")


class LockRegistry:
    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            if lock.locked():
                log.debug(f"Waiting for lock {key}")
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    async def with_lock(self, key: str, op: Callable[[], Awaitable[T]]) -> T:
        async with self.hold(key):
            return await op()

    def active_keys(self) -> list[str]:
        """Keys currently held or waited on."""
        return sorted(self._locks)

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()
