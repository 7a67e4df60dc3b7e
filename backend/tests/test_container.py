import pytest

from lease_lock.container import build_container, shutdown, startup
from lease_lock.distributed.redis_store import RedisLockStore
from lease_lock.exceptions import StoreUnavailable
from lease_lock.settings import LockSettings, get_settings
from lease_lock.store import InMemoryLockStore, StorePools


def test_settings_defaults(monkeypatch):
    for name in (
        "LOCK_BACKEND",
        "LOCK_REDIS_URL",
        "LOCK_REDIS_POOLS",
        "LOCK_KEY_PREFIX",
        "LOCK_LEASE_SECONDS",
        "LOCK_POLL_INTERVAL_MS",
        "LOCK_MIN_RENEWAL_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = get_settings()

    assert settings == LockSettings()
    assert settings.pool_urls() == {"default": "redis://localhost:6379/0"}


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("LOCK_BACKEND", "Memory")
    monkeypatch.setenv("LOCK_REDIS_URL", "redis://cache:6379/1")
    monkeypatch.setenv("LOCK_REDIS_POOLS", "reports=redis://reports:6379/0, broken, =x")
    monkeypatch.setenv("LOCK_KEY_PREFIX", "app:lock:")
    monkeypatch.setenv("LOCK_LEASE_SECONDS", "12")
    monkeypatch.setenv("LOCK_POLL_INTERVAL_MS", "100")

    settings = LockSettings.from_env()

    assert settings.backend == "memory"
    assert settings.key_prefix == "app:lock:"
    assert settings.lease_seconds == 12.0
    assert settings.poll_interval_seconds == pytest.approx(0.1)
    assert settings.pool_urls() == {
        "default": "redis://cache:6379/1",
        "reports": "redis://reports:6379/0",
    }


def test_invalid_numbers_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("LOCK_LEASE_SECONDS", "-3")
    monkeypatch.setenv("LOCK_POLL_INTERVAL_MS", "often")

    settings = LockSettings.from_env()

    assert settings.lease_seconds == 5.0
    assert settings.poll_interval_seconds == pytest.approx(0.25)


def test_container_builds_redis_pools():
    settings = LockSettings(extra_pools={"reports": "redis://reports:6379/0"})

    container = build_container(settings=settings)

    assert container.pools.names() == ["default", "reports"]
    assert isinstance(container.pools.get("reports"), RedisLockStore)


def test_container_lock_applies_settings():
    settings = LockSettings(
        backend="memory",
        key_prefix="svc:",
        lease_seconds=8,
        poll_interval_seconds=0.5,
    )
    container = build_container(settings=settings)

    handle = container.lock("nightly", pool_name="default")

    assert isinstance(container.pools.get(), InMemoryLockStore)
    assert handle.key == "svc:nightly"
    assert handle.lease_seconds == 8
    assert handle.poll_interval == 0.5
    assert container.lock("nightly", lease_seconds=2).lease_seconds == 2


@pytest.mark.asyncio
async def test_container_lifecycle_stops_renewals():
    events = []
    container = build_container(settings=LockSettings(backend="memory"), listener=events.append)
    await startup(container)

    handle = container.lock("nightly")
    assert await handle.acquire() is True
    assert len(container.scheduler.active()) == 1

    await shutdown(container)

    assert container.scheduler.active() == []
    assert container.pools.names() == []
    assert [event.type for event in events] == ["lock.acquired"]


@pytest.mark.asyncio
async def test_startup_fails_for_unreachable_pool(redis_store):
    await redis_store.close()
    container = build_container(pools=StorePools.single(redis_store))

    with pytest.raises(StoreUnavailable):
        await startup(container)
