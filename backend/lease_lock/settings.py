"""Lock settings loaded from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Literal

from dotenv import find_dotenv, load_dotenv


def _env_str(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip()
    return normalized or default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_pools(raw: str | None) -> dict[str, str]:
    """Parse `name=url,name=url` into a mapping; malformed items are skipped."""
    pools: dict[str, str] = {}
    if not raw:
        return pools
    for item in raw.split(","):
        name, sep, url = item.partition("=")
        name, url = name.strip(), url.strip()
        if sep and name and url:
            pools[name] = url
    return pools


BackendMode = Literal["redis", "memory"]


@dataclass(frozen=True)
class LockSettings:
    """Defaults applied to every lock handle built by the container."""

    backend: BackendMode = "redis"
    redis_url: str = "redis://localhost:6379/0"
    extra_pools: dict[str, str] = field(default_factory=dict)
    key_prefix: str = "lock:"
    lease_seconds: float = 5.0
    poll_interval_seconds: float = 0.25
    min_renewal_seconds: float = 1.0

    @classmethod
    def from_env(cls) -> "LockSettings":
        raw_backend = (_env_str("LOCK_BACKEND", "redis") or "redis").lower()
        backend: BackendMode = "memory" if raw_backend == "memory" else "redis"
        lease_seconds = _env_float("LOCK_LEASE_SECONDS", 5.0)
        if lease_seconds <= 0:
            lease_seconds = 5.0
        poll_ms = max(10, _env_int("LOCK_POLL_INTERVAL_MS", 250))
        return cls(
            backend=backend,
            redis_url=_env_str("LOCK_REDIS_URL", "redis://localhost:6379/0")
            or "redis://localhost:6379/0",
            extra_pools=_parse_pools(_env_str("LOCK_REDIS_POOLS")),
            key_prefix=os.getenv("LOCK_KEY_PREFIX", "lock:"),
            lease_seconds=lease_seconds,
            poll_interval_seconds=poll_ms / 1000.0,
            min_renewal_seconds=max(0.05, _env_float("LOCK_MIN_RENEWAL_SECONDS", 1.0)),
        )

    def pool_urls(self) -> dict[str, str]:
        """Every configured Redis pool, `default` included."""
        pools = {"default": self.redis_url}
        pools.update(self.extra_pools)
        return pools


def load_dotenv_if_present() -> None:
    """Load environment variables from a .env file if one is found.

    Not invoked at import time; call it from entrypoints.
    """
    dotenv_path = find_dotenv(filename=".env", usecwd=True)
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path)


_SETTINGS: LockSettings | None = None


def get_settings() -> LockSettings:
    """Return a cached LockSettings instance built from the current environment."""

    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = LockSettings.from_env()
    return _SETTINGS


def reset_settings() -> None:
    """Drop the cached settings so the next `get_settings` re-reads the environment."""

    global _SETTINGS
    _SETTINGS = None
