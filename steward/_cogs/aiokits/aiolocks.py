"""
Named locks: one lock per arbitrary string, created and forgotten on demand.

The locks are used to serialize the processing of the same object regardless
of where the processing comes from (direct changes or triggers), while the
unrelated objects are processed concurrently.
"""
import asyncio
import contextlib
from collections.abc import AsyncIterator


class KeyedLocks:
    """
    A set of locks addressed by names.

    A lock exists only while someone holds it or waits for it, so the set
    does not grow with the number of all objects ever seen.
    """

    def __init__(self) -> None:
        super().__init__()
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._locks

    def __len__(self) -> int:
        return len(self._locks)

    @contextlib.asynccontextmanager
    async def lock(self, name: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(name, asyncio.Lock())
        self._users[name] = self._users.get(name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[name] -= 1
            if not self._users[name]:
                del self._users[name]
                del self._locks[name]
