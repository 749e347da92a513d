"""Keyed in-process state with per-key locking and expiry."""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Generic, TypeVar

V = TypeVar("V")


class KeyedLocks:
    """One asyncio lock per key, discarded once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


class TTLStore(Generic[V]):
    """Dictionary whose entries expire ``ttl_seconds`` after their last write."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[V, float]] = {}
        self._locks = KeyedLocks()

    def lock(self, key: str):  # noqa: ANN201
        """Exclusive section for a read-modify-write on ``key``."""

        return self._locks.hold(key)

    def get(self, key: str) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def put(self, key: str, value: V, ttl_seconds: float) -> None:
        self._entries[key] = (value, self._clock() + ttl_seconds)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def keys(self) -> list[str]:
        now = self._clock()
        return [key for key, (_, expires_at) in self._entries.items() if now < expires_at]

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
