"""Lock-specific exception types shared across modules."""

from __future__ import annotations


class LockError(Exception):
    """Base class for lock-related failures."""


class AcquireFailed(LockError):
    """Raised by scoped helpers when the lock could not be obtained.

    `LockHandle.acquire` reports the same condition as a plain `False`.
    """

    def __init__(self, key: str, reason: str | None = None):
        self.key = key
        self.reason = reason or "lock_busy"
        super().__init__(f"{self.reason}: {key}")


class StoreUnavailable(LockError):
    """The backing store could not be reached or answered with an error."""

    def __init__(self, operation: str, key: str | None = None):
        self.operation = operation
        self.key = key
        message = f"store call failed operation={operation}"
        if key is not None:
            message = f"{message} key={key}"
        super().__init__(message)


class PoolNotConfigured(LockError):
    """A lock referenced a store pool name that is not registered."""

    def __init__(self, pool_name: str):
        self.pool_name = pool_name
        super().__init__(f"no store pool named {pool_name!r}")


class RenewalFailed(LockError):
    """A background TTL refresh failed; reported through logs and events only."""

    def __init__(self, key: str, cause: BaseException | None = None):
        self.key = key
        self.cause = cause
        super().__init__(f"lease renewal failed: {key}")
