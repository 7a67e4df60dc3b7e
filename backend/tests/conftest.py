from __future__ import annotations

import fakeredis
import pytest
import pytest_asyncio

from lease_lock.distributed.redis_store import RedisLockStore
from lease_lock.lock import LockHandle
from lease_lock.scheduler import AsyncioScheduler
from lease_lock.settings import reset_settings
from lease_lock.store import InMemoryLockStore, StorePools


@pytest.fixture(autouse=True)
def _clean_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def redis_client():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def redis_store(redis_client):
    return RedisLockStore(redis_client)


@pytest.fixture
def pools(redis_store):
    return StorePools.single(redis_store)


@pytest.fixture
def memory_store():
    return InMemoryLockStore()


@pytest_asyncio.fixture
async def scheduler():
    scheduler = AsyncioScheduler()
    yield scheduler
    await scheduler.shutdown()


@pytest.fixture
def make_lock(pools, scheduler):
    def _make(key: str = "job:42", **options) -> LockHandle:
        store_pools = options.pop("pools", pools)
        return LockHandle(key, store_pools, scheduler, **options)

    return _make
