"""Lease-based mutual-exclusion lock over a shared key-value store.

Lifecycle of a handle:
1. acquire: SET key token NX with TTL (optionally polling until free)
2. renew: a background task refreshes the TTL at half the lease
3. release: stop renewal, then delete the key only if it still holds our token

A handle keeps the same token for its whole life and can be re-acquired after
release.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import TypeVar
from uuid import uuid4

from .events import LockEvent, LockEventListener, publish
from .exceptions import AcquireFailed
from .models import LockState, ReleaseOutcome
from .renewal import RenewalTask, renewal_interval
from .scheduler import AsyncioScheduler, Scheduler
from .store import DEFAULT_POOL, LockStore, StorePools

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_LEASE_SECONDS = 5.0
DEFAULT_KEY_PREFIX = "lock:"
DEFAULT_POLL_INTERVAL = 0.25


def new_token() -> str:
    """Unique per handle across cooperating processes; not a secret."""
    return f"{os.getpid()}-{time.time_ns():x}-{uuid4().hex}"


class LockHandle:
    """One holder's claim on a named lock."""

    def __init__(
        self,
        key: str,
        pools: StorePools,
        scheduler: Scheduler | None = None,
        *,
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        pool_name: str = DEFAULT_POOL,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        min_renewal_interval: float = 1.0,
        verify_renewal: bool = True,
        listener: LockEventListener | None = None,
    ):
        if not key:
            msg = "lock key must be a non-empty string"
            raise ValueError(msg)
        if lease_seconds <= 0:
            msg = f"lease_seconds must be positive, got {lease_seconds}"
            raise ValueError(msg)
        if poll_interval <= 0:
            msg = f"poll_interval must be positive, got {poll_interval}"
            raise ValueError(msg)
        self.key = f"{key_prefix}{key}"
        self.token = new_token()
        self.lease_seconds = lease_seconds
        self.pool_name = pool_name
        self.poll_interval = poll_interval
        self.min_renewal_interval = min_renewal_interval
        self.verify_renewal = verify_renewal
        self.listener = listener
        self.last_release: ReleaseOutcome | None = None
        self._pools = pools
        self._scheduler = scheduler or AsyncioScheduler()
        self._state = LockState.IDLE
        self._lost = False
        self._renewal: RenewalTask | None = None
        self._guard = asyncio.Lock()
        self._scopes: list[bool] = []

    def __repr__(self) -> str:
        return f"LockHandle(key={self.key!r}, state={self._state.value})"

    @property
    def state(self) -> LockState:
        return self._state

    @property
    def held(self) -> bool:
        return self._state is LockState.HELD

    @property
    def lost(self) -> bool:
        """True when the store no longer carried our token while HELD."""
        return self._lost

    @property
    def renewing(self) -> bool:
        return self._renewal is not None and self._renewal.running

    @property
    def lease_ms(self) -> int:
        return max(1, int(self.lease_seconds * 1000))

    def _store(self) -> LockStore:
        return self._pools.get(self.pool_name)

    async def acquire(
        self,
        wait: bool = False,
        *,
        timeout: float | None = None,
        renewal: bool = True,
        poll_interval: float | None = None,
    ) -> bool:
        """Try to take the lock; returns False when it is held elsewhere.

        With `wait=True` the calling task polls every `poll_interval` seconds
        until the lock is free or `timeout` seconds have passed
        (`timeout=None` waits until cancelled). Store errors propagate as
        `StoreUnavailable` and are never treated as "busy". On a HELD handle
        the call confirms and refreshes the lease in the store; if the token is
        gone the handle is marked lost and competes for the key again. A
        re-entrant call with `renewal=True` starts renewal if none is running.
        """
        interval = poll_interval if poll_interval is not None else self.poll_interval
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + max(0.0, timeout)
        attempts = 0

        while True:
            attempts += 1
            async with self._guard:
                # Re-entrant only while the store still carries our token.
                if self._state is LockState.HELD and not self._lost:
                    if await self._store().compare_and_expire(
                        self.key, self.token, self.lease_ms
                    ):
                        if renewal and not self.renewing:
                            self._start_renewal()
                        return True
                    await self._stop_renewal()
                    self._mark_lost()
                if await self._store().set_if_absent(self.key, self.token, self.lease_ms):
                    self._on_acquired(renewal, attempts)
                    return True

            if not wait:
                logger.debug("lock busy", extra={"lock_key": self.key})
                return False
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    logger.info(
                        "lock wait timed out attempts=%s",
                        attempts,
                        extra={"lock_key": self.key},
                    )
                    return False
                await asyncio.sleep(min(interval, remaining))
            else:
                await asyncio.sleep(interval)

    def _on_acquired(self, renewal: bool, attempts: int) -> None:
        self._state = LockState.HELD
        self._lost = False
        self.last_release = None
        if renewal:
            self._start_renewal()
        logger.info(
            "lock acquired attempts=%s renewal=%s",
            attempts,
            renewal,
            extra={"lock_key": self.key},
        )
        publish(
            self.listener,
            LockEvent(
                type="lock.acquired",
                key=self.key,
                token=self.token,
                data={"attempts": attempts, "lease_seconds": self.lease_seconds},
            ),
        )

    async def release(self) -> bool:
        """Give up the lock; False means another holder owns the key now.

        Releasing a handle that is not HELD is a successful no-op. The renewal
        task is stopped before the store is touched, so a failing delete never
        leaves it running. The handle is RELEASED after any attempt; on
        `StoreUnavailable` the entry is left to expire with its lease.
        """
        async with self._guard:
            if self._state is not LockState.HELD:
                return True
            await self._stop_renewal()
            try:
                outcome = await self._store().compare_and_delete(self.key, self.token)
            finally:
                self._state = LockState.RELEASED
            self.last_release = outcome

        if outcome.ok:
            logger.info(
                "lock released outcome=%s",
                outcome.value,
                extra={"lock_key": self.key},
            )
        else:
            logger.warning(
                "lock release refused; key is held by another owner",
                extra={"lock_key": self.key},
            )
        publish(
            self.listener,
            LockEvent(
                type="lock.released",
                key=self.key,
                token=self.token,
                data={"outcome": outcome.value},
            ),
        )
        return outcome.ok

    async def owned(self) -> bool:
        """Ask the store whether the key still carries this handle's token."""
        info = await self._store().inspect(self.key)
        return info.holder == self.token

    async def run_exclusive(
        self,
        action: Callable[[], Awaitable[T]],
        *,
        wait: bool = False,
        timeout: float | None = None,
        renewal: bool = True,
    ) -> T:
        """Run `action` while holding the lock and release afterwards.

        Unlike `acquire`, a busy lock raises `AcquireFailed` without calling
        `action`: the return value belongs to `action`, so it cannot also
        carry "not acquired". An error raised by `action` is re-raised after
        release; a release error is then only logged.

        When the handle was already HELD on entry, the outer holder keeps the
        lock and no release happens here.
        """
        async with self._scope(wait, timeout=timeout, renewal=renewal):
            return await action()

    def hold(
        self,
        wait: bool = True,
        *,
        timeout: float | None = None,
        renewal: bool = True,
    ) -> AbstractAsyncContextManager["LockHandle"]:
        """Scoped acquisition: `async with handle.hold(timeout=10): ...`.

        Nested use on a HELD handle leaves the release to the outermost scope.
        """
        return self._scope(wait, timeout=timeout, renewal=renewal)

    async def __aenter__(self) -> "LockHandle":
        nested = self.held
        if not await self.acquire(wait=True):
            raise AcquireFailed(self.key)
        self._scopes.append(not nested)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if not self._scopes.pop():
            return
        if exc_type is None:
            await self._release_checked()
        else:
            await self._release_quietly()

    @asynccontextmanager
    async def _scope(
        self,
        wait: bool,
        *,
        timeout: float | None,
        renewal: bool,
    ) -> AsyncIterator["LockHandle"]:
        nested = self.held
        if not await self.acquire(wait, timeout=timeout, renewal=renewal):
            raise AcquireFailed(self.key)
        if nested:
            yield self
            return
        try:
            yield self
        except BaseException:
            await self._release_quietly()
            raise
        await self._release_checked()

    def __del__(self) -> None:
        renewal = getattr(self, "_renewal", None)
        if renewal is not None:
            renewal.stop()

    async def _release_checked(self) -> None:
        if not await self.release():
            logger.warning(
                "lock was lost before the exclusive section finished",
                extra={"lock_key": self.key},
            )

    async def _release_quietly(self) -> None:
        # Keeps the in-flight error as the one the caller sees.
        try:
            await self.release()
        except Exception:
            logger.exception(
                "lock release failed during error cleanup",
                extra={"lock_key": self.key},
            )

    def _start_renewal(self) -> None:
        self._renewal = RenewalTask(
            self,
            self._scheduler,
            interval=renewal_interval(self.lease_seconds, self.min_renewal_interval),
        )
        self._renewal.start()

    async def _stop_renewal(self) -> None:
        renewal = self._renewal
        self._renewal = None
        if renewal is None:
            return
        renewal.stop()
        await renewal.join()

    async def _refresh_lease(self) -> bool:
        store = self._store()
        if self.verify_renewal:
            return await store.compare_and_expire(self.key, self.token, self.lease_ms)
        return await store.expire(self.key, self.lease_ms)

    def _mark_lost(self) -> None:
        if self._lost:
            return
        self._lost = True
        self._renewal = None
        logger.warning(
            "lock lease lost while held; renewal stopped",
            extra={"lock_key": self.key},
        )
        publish(
            self.listener,
            LockEvent(type="lock.lost", key=self.key, token=self.token),
        )
