"""Store abstraction used by lock handles.

`memory` mode uses an in-process implementation.
`redis` mode uses the Redis-backed store in `lease_lock.distributed`.

Every store must provide an atomic set-if-absent with expiry and atomic,
token-checked delete/expire operations. TTLs are passed in milliseconds.
"""

from __future__ import annotations

import threading
import time
from typing import Mapping, Protocol

from .exceptions import PoolNotConfigured
from .models import LockInfo, ReleaseOutcome

DEFAULT_POOL = "default"


class LockStore(Protocol):
    async def set_if_absent(self, key: str, token: str, ttl_ms: int) -> bool:
        """Write `token` under `key` only if the key does not exist."""

    async def expire(self, key: str, ttl_ms: int) -> bool:
        """Reset the TTL of `key` without checking its value."""

    async def compare_and_expire(self, key: str, token: str, ttl_ms: int) -> bool:
        """Reset the TTL of `key` only while it still holds `token`."""

    async def compare_and_delete(self, key: str, token: str) -> ReleaseOutcome:
        """Delete `key` only while it still holds `token`."""

    async def inspect(self, key: str) -> LockInfo:
        """Return the current holder and remaining TTL of `key`."""

    async def ping(self) -> bool:
        """Return True when the store is reachable."""

    async def close(self) -> None:
        """Release resources held by the store."""


class InMemoryLockStore:
    """
    Single-process store.

    Used for:
    - Tests
    - `memory` backend mode, where every contender lives in one process

    Expiry is evaluated lazily against a monotonic clock.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> tuple[str, float] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _deadline(self, ttl_ms: int) -> float:
        return self._clock() + max(1, ttl_ms) / 1000.0

    async def set_if_absent(self, key: str, token: str, ttl_ms: int) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._entries[key] = (token, self._deadline(ttl_ms))
            return True

    async def expire(self, key: str, ttl_ms: int) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return False
            self._entries[key] = (entry[0], self._deadline(ttl_ms))
            return True

    async def compare_and_expire(self, key: str, token: str, ttl_ms: int) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None or entry[0] != token:
                return False
            self._entries[key] = (token, self._deadline(ttl_ms))
            return True

    async def compare_and_delete(self, key: str, token: str) -> ReleaseOutcome:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return ReleaseOutcome.ALREADY_GONE
            if entry[0] != token:
                return ReleaseOutcome.NOT_OWNER
            del self._entries[key]
            return ReleaseOutcome.DELETED

    async def inspect(self, key: str) -> LockInfo:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return LockInfo(key=key, holder=None, ttl_ms=None)
            remaining = max(0, int((entry[1] - self._clock()) * 1000))
            return LockInfo(key=key, holder=entry[0], ttl_ms=remaining)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()


class StorePools:
    """Named store pools; lock handles resolve their pool on every store call."""

    def __init__(self, stores: Mapping[str, LockStore] | None = None):
        self._stores: dict[str, LockStore] = dict(stores or {})

    @classmethod
    def single(cls, store: LockStore, name: str = DEFAULT_POOL) -> "StorePools":
        return cls({name: store})

    def register(self, name: str, store: LockStore) -> None:
        """Register (or replace) the store for a pool name."""
        self._stores[name] = store

    def get(self, name: str = DEFAULT_POOL) -> LockStore:
        store = self._stores.get(name)
        if store is None:
            raise PoolNotConfigured(name)
        return store

    def names(self) -> list[str]:
        return sorted(self._stores)

    async def close(self) -> None:
        stores = list(self._stores.values())
        self._stores.clear()
        for store in stores:
            await store.close()
