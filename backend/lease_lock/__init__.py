"""
Lease-based distributed lock over Redis.

Public API surface for the lease_lock package.
"""

from .container import LockContainer, build_container
from .events import LockEvent
from .exceptions import (
    AcquireFailed,
    LockError,
    PoolNotConfigured,
    RenewalFailed,
    StoreUnavailable,
)
from .lock import LockHandle
from .models import LockInfo, LockState, ReleaseOutcome
from .scheduler import AsyncioScheduler, PeriodicTask, Scheduler
from .settings import LockSettings, get_settings
from .store import InMemoryLockStore, LockStore, StorePools

__all__ = [
    "AcquireFailed",
    "AsyncioScheduler",
    "InMemoryLockStore",
    "LockContainer",
    "LockError",
    "LockEvent",
    "LockHandle",
    "LockInfo",
    "LockSettings",
    "LockState",
    "LockStore",
    "PeriodicTask",
    "PoolNotConfigured",
    "ReleaseOutcome",
    "RenewalFailed",
    "Scheduler",
    "StorePools",
    "StoreUnavailable",
    "build_container",
    "get_settings",
]

__version__ = "0.1.0"
