"""Background lease renewal ("watchdog") for held locks."""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import TYPE_CHECKING

from .events import LockEvent, publish
from .exceptions import LockError, RenewalFailed
from .models import LockState
from .scheduler import PeriodicTask, Scheduler

if TYPE_CHECKING:
    from .lock import LockHandle

logger = logging.getLogger(__name__)


def renewal_interval(lease_seconds: float, minimum: float = 1.0) -> float:
    """Renew at half the lease, but never more often than `minimum`."""
    return max(minimum, lease_seconds / 2)


class RenewalTask:
    """Keeps one handle's lease alive while it is HELD.

    Only a weak reference to the handle is kept, so a handle that is dropped
    without being released stops its own renewal on the next tick.
    """

    def __init__(self, handle: LockHandle, scheduler: Scheduler, *, interval: float):
        self._handle_ref = weakref.ref(handle)
        self._scheduler = scheduler
        self.key = handle.key
        self.interval = interval
        self.failures = 0
        self._periodic: PeriodicTask | None = None

    @property
    def running(self) -> bool:
        return self._periodic is not None and not self._periodic.cancelled

    def start(self) -> None:
        if self._periodic is not None:
            return
        self._periodic = self._scheduler.schedule_periodic(
            self.interval, self._tick, name=f"lock-renewal:{self.key}"
        )
        logger.debug(
            "lock renewal started interval=%.2fs",
            self.interval,
            extra={"lock_key": self.key},
        )

    def stop(self) -> None:
        if self._periodic is None:
            return
        self._scheduler.cancel(self._periodic)

    async def join(self) -> None:
        if self._periodic is not None:
            await self._periodic.join()

    async def _tick(self) -> None:
        handle = self._handle_ref()
        if handle is None or handle.state is not LockState.HELD:
            self.stop()
            return

        try:
            still_owned = await handle._refresh_lease()
        except asyncio.CancelledError:
            raise
        except LockError as exc:
            self.failures += 1
            error = RenewalFailed(self.key, exc)
            logger.warning(
                "%s failures=%s error=%s",
                error,
                self.failures,
                exc,
                extra={"lock_key": self.key},
            )
            publish(
                handle.listener,
                LockEvent(
                    type="lock.renewal_failed",
                    key=self.key,
                    token=handle.token,
                    data={"error": str(exc), "failures": self.failures},
                ),
            )
            return

        if still_owned:
            self.failures = 0
            publish(
                handle.listener,
                LockEvent(
                    type="lock.renewed",
                    key=self.key,
                    token=handle.token,
                    data={"lease_seconds": handle.lease_seconds},
                ),
            )
            return

        self.stop()
        handle._mark_lost()
