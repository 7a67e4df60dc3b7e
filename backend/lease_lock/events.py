"""Lifecycle events published by lock handles."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

LockEventType = Literal[
    "lock.acquired",
    "lock.renewed",
    "lock.renewal_failed",
    "lock.lost",
    "lock.released",
]


def iso_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class LockEvent(BaseModel):
    """Observable transition of a single lock handle."""

    model_config = ConfigDict(extra="forbid")

    type: LockEventType
    key: str
    token: str
    ts: str = Field(default_factory=iso_timestamp)
    data: dict[str, Any] = Field(default_factory=dict)


LockEventListener = Callable[[LockEvent], None]


def publish(listener: LockEventListener | None, event: LockEvent) -> None:
    """Hand `event` to `listener`; listener failures are logged, never raised."""
    if listener is None:
        return
    try:
        listener(event)
    except Exception:
        logger.exception(
            "lock event listener failed type=%s",
            event.type,
            extra={"lock_key": event.key},
        )


__all__ = ["LockEvent", "LockEventListener", "LockEventType", "publish"]
