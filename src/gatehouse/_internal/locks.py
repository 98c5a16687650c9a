"""Per-key async locks.

Serializes work on a single key (a session id, a hashed throttle key)
without blocking unrelated keys. Entries are reference counted and
dropped when the last holder releases, so the map does not grow with
every key ever seen.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import anyio


class KeyedLock:
    """A registry of ``anyio.Lock`` objects keyed by string.

    Usage::

        locks = KeyedLock()

        async with locks.hold(key):
            state = await read(key)
            await write(key, update(state))
    """

    __slots__ = ("_locks",)

    def __init__(self) -> None:
        # key -> (lock, holders + waiters)
        self._locks: dict[str, tuple[anyio.Lock, int]] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock, count = self._locks.get(key, (None, 0))
        if lock is None:
            lock = anyio.Lock()
        self._locks[key] = (lock, count + 1)
        try:
            async with lock:
                yield
        finally:
            lock, count = self._locks[key]
            if count <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, count - 1)

    def __len__(self) -> int:
        return len(self._locks)
