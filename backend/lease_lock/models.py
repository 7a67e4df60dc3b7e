"""Value types describing lock state and store answers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class LockState(str, Enum):
    """
    Lifecycle of a LockHandle.

    State transitions:
        IDLE -> HELD -> RELEASED -> HELD -> ...
    """

    IDLE = "idle"
    HELD = "held"
    RELEASED = "released"


class ReleaseOutcome(str, Enum):
    """Answer of the atomic compare-and-delete script."""

    DELETED = "deleted"
    ALREADY_GONE = "already_gone"
    NOT_OWNER = "not_owner"

    @classmethod
    def from_script(cls, value: int) -> "ReleaseOutcome":
        if value > 0:
            return cls.DELETED
        if value < 0:
            return cls.ALREADY_GONE
        return cls.NOT_OWNER

    @property
    def ok(self) -> bool:
        return self is not ReleaseOutcome.NOT_OWNER


@dataclass(frozen=True)
class LockInfo:
    """Snapshot of a store entry as seen by `LockStore.inspect`."""

    key: str
    holder: str | None
    ttl_ms: int | None

    @property
    def held(self) -> bool:
        return self.holder is not None
