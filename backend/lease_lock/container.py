"""Explicit dependency container for lock wiring.

This module is side-effect free on import. `build_container` constructs the
store pools and scheduler; nothing connects until the first store call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .events import LockEventListener
from .exceptions import StoreUnavailable
from .lock import LockHandle
from .scheduler import AsyncioScheduler
from .settings import LockSettings, get_settings
from .store import InMemoryLockStore, StorePools

logger = logging.getLogger(__name__)


@dataclass
class LockContainer:
    """Holds the shared collaborators every lock handle needs."""

    settings: LockSettings
    pools: StorePools
    scheduler: AsyncioScheduler
    listener: LockEventListener | None = None

    def lock(self, key: str, **overrides: Any) -> LockHandle:
        """Build a handle for `key` using the container defaults."""
        options: dict[str, Any] = {
            "lease_seconds": self.settings.lease_seconds,
            "key_prefix": self.settings.key_prefix,
            "poll_interval": self.settings.poll_interval_seconds,
            "min_renewal_interval": self.settings.min_renewal_seconds,
            "listener": self.listener,
        }
        options.update(overrides)
        return LockHandle(key, self.pools, self.scheduler, **options)


def build_container(
    *,
    settings: LockSettings | None = None,
    pools: StorePools | None = None,
    listener: LockEventListener | None = None,
) -> LockContainer:
    """Construct the lock dependency graph without opening connections."""

    settings = settings or get_settings()
    if pools is None:
        pools = StorePools()
        if settings.backend == "memory":
            pools.register("default", InMemoryLockStore())
        else:
            from .distributed.redis_store import RedisLockStore, RedisStoreConfig

            for name, url in settings.pool_urls().items():
                pools.register(name, RedisLockStore.from_config(RedisStoreConfig(url=url)))

    return LockContainer(
        settings=settings,
        pools=pools,
        scheduler=AsyncioScheduler(),
        listener=listener,
    )


async def startup(container: LockContainer) -> None:
    """Fail fast when a configured store pool does not answer."""

    for name in container.pools.names():
        if not await container.pools.get(name).ping():
            logger.error("lock store pool unreachable pool=%s", name)
            raise StoreUnavailable("ping", name)
    logger.info(
        "lock stores ready backend=%s pools=%s",
        container.settings.backend,
        ",".join(container.pools.names()),
    )


async def shutdown(container: LockContainer) -> None:
    """Stop renewal tasks still running, then close every store pool."""

    await container.scheduler.shutdown()
    await container.pools.close()
