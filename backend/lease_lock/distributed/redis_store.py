"""Redis-backed lock store.

Uses a value-based lease with a millisecond TTL:
- acquire: SET key token NX PX ttl
- renew: PEXPIRE, or if GET==token then PEXPIRE
- release: if GET==token then DEL, -1 when the key is already gone
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..exceptions import StoreUnavailable
from ..models import LockInfo, ReleaseOutcome

logger = logging.getLogger(__name__)

# release: 1 deleted, -1 absent, 0 held by someone else
RELEASE_LUA = """
local current = redis.call('GET', KEYS[1])
if current == ARGV[1] then
    return redis.call('DEL', KEYS[1])
elseif current == false then
    return -1
else
    return 0
end
"""

# renew: extend only while owned
RENEW_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('PEXPIRE', KEYS[1], ARGV[2])
else
    return 0
end
"""


@dataclass(frozen=True)
class RedisStoreConfig:
    url: str
    socket_timeout_seconds: float | None = 5.0


class RedisLockStore:
    def __init__(self, client: redis.Redis):
        self._client: redis.Redis | None = client
        self._release_script = None
        self._renew_script = None

    @classmethod
    def from_config(cls, config: RedisStoreConfig) -> "RedisLockStore":
        client = redis.from_url(
            config.url,
            decode_responses=True,
            socket_timeout=config.socket_timeout_seconds,
        )
        return cls(client)

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            raise StoreUnavailable("closed")
        return self._client

    def _ensure_scripts(self) -> None:
        if self._release_script is not None and self._renew_script is not None:
            return
        client = self._get_client()
        self._release_script = client.register_script(RELEASE_LUA)
        self._renew_script = client.register_script(RENEW_LUA)

    async def set_if_absent(self, key: str, token: str, ttl_ms: int) -> bool:
        client = self._get_client()
        try:
            result = await client.set(key, token, nx=True, px=max(1, ttl_ms))
        except RedisError as exc:
            raise StoreUnavailable("set_if_absent", key) from exc
        return bool(result)

    async def expire(self, key: str, ttl_ms: int) -> bool:
        client = self._get_client()
        try:
            result = await client.pexpire(key, max(1, ttl_ms))
        except RedisError as exc:
            raise StoreUnavailable("expire", key) from exc
        return bool(result)

    async def compare_and_expire(self, key: str, token: str, ttl_ms: int) -> bool:
        self._ensure_scripts()
        assert self._renew_script is not None
        try:
            result = await self._renew_script(keys=[key], args=[token, max(1, ttl_ms)])
        except RedisError as exc:
            raise StoreUnavailable("compare_and_expire", key) from exc
        return int(result or 0) > 0

    async def compare_and_delete(self, key: str, token: str) -> ReleaseOutcome:
        self._ensure_scripts()
        assert self._release_script is not None
        try:
            result = await self._release_script(keys=[key], args=[token])
        except RedisError as exc:
            raise StoreUnavailable("compare_and_delete", key) from exc
        return ReleaseOutcome.from_script(int(result or 0))

    async def inspect(self, key: str) -> LockInfo:
        client = self._get_client()
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.get(key)
                pipe.pttl(key)
                holder, ttl_ms = await pipe.execute()
        except RedisError as exc:
            raise StoreUnavailable("inspect", key) from exc
        if holder is None:
            return LockInfo(key=key, holder=None, ttl_ms=None)
        # PTTL is -1 for keys without expiry
        return LockInfo(key=key, holder=holder, ttl_ms=int(ttl_ms) if ttl_ms >= 0 else None)

    async def ping(self, timeout: float = 2.0) -> bool:
        """Return True when Redis answers a PING within `timeout` seconds."""
        try:
            return bool(await asyncio.wait_for(self._get_client().ping(), timeout))
        except (RedisError, StoreUnavailable, asyncio.TimeoutError):
            return False

    async def close(self) -> None:
        if self._client is None:
            return
        client = self._client
        self._client = None
        self._release_script = None
        self._renew_script = None
        try:
            await client.aclose()
        except RedisError:
            logger.warning("redis lock store close failed", exc_info=True)
