"""Per-entity lock table serializing read-current-state-then-append."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

LockKey = tuple[str, str, str]


class LockTimeoutError(Exception):
    """Raised when an entity lock could not be acquired in time."""

    def __init__(self, key: LockKey, timeout: float) -> None:
        self.key = key
        self.timeout = timeout
        super().__init__(
            f"Timed out after {timeout}s waiting for lock on {key[0]}:{key[1]} (machine {key[2]})"
        )


class EntityLockTable:
    """One asyncio.Lock per (entity_type, entity_id, machine_id).

    Locks are created on demand and dropped once no task holds or waits for
    them, so the table only grows with the number of entities in flight.
    Only tasks in this process are serialized; cross-process safety comes
    from the history store's conditional append.
    """

    def __init__(self) -> None:
        self._locks: dict[LockKey, asyncio.Lock] = {}
        self._users: dict[LockKey, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, key: LockKey) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: LockKey, timeout: float | None = None) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block.

        Raises:
            LockTimeoutError: If ``timeout`` elapses before the lock is acquired.
        """
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            if timeout is None:
                await lock.acquire()
            else:
                try:
                    async with asyncio.timeout(timeout):
                        await lock.acquire()
                except TimeoutError as e:
                    raise LockTimeoutError(key, timeout) from e
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]
