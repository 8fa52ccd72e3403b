import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import FakeClock
from core.cache import (
    MISSING,
    CacheBackend,
    CacheBackendError,
    CacheService,
    MemoryCacheBackend,
    RedisCacheBackend,
    build_cache_backend,
    sliding_window_for,
)

pytestmark = pytest.mark.anyio


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the cache backend."""

    def __init__(self):
        self.data = {}
        self.expiries = {}

    async def ping(self):
        return True

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, px=None):
        self.data[key] = value
        self.expiries[key] = px
        return True

    async def pexpire(self, key, milliseconds):
        self.expiries[key] = milliseconds
        return True

    async def delete(self, key):
        self.expiries.pop(key, None)
        return int(self.data.pop(key, None) is not None)

    async def aclose(self):
        pass


class UnreachableRedis(FakeRedis):
    async def ping(self):
        raise RedisConnectionError("connection refused")

    async def get(self, key):
        raise RedisConnectionError("connection refused")

    async def set(self, key, value, px=None):
        raise RedisConnectionError("connection refused")


class BrokenBackend(CacheBackend):
    name = "broken"

    async def get(self, key):
        raise CacheBackendError("down")

    async def set(self, key, value, ttl):
        raise CacheBackendError("down")

    async def delete(self, key):
        raise CacheBackendError("down")


def test_sliding_window_is_half_ttl_capped_at_ten_minutes():
    assert sliding_window_for(60) == 30
    assert sliding_window_for(900) == 450
    assert sliding_window_for(3600) == 600


class TestMemoryCache:

    async def test_set_then_get(self, memory_cache):
        await memory_cache.set("k", {"v": 1}, ttl=60)
        assert await memory_cache.get("k") == {"v": 1}

    async def test_missing_key(self, memory_cache):
        assert await memory_cache.get("nope") is None

    async def test_expires_after_ttl_without_access(self, memory_cache, clock):
        await memory_cache.set("k", "v", ttl=60)
        clock.advance(61)
        assert await memory_cache.get("k") is None

    async def test_idle_entry_expires_after_sliding_window(self, memory_cache, clock):
        await memory_cache.set("k", "v", ttl=60)
        clock.advance(31)
        assert await memory_cache.get("k") is None

    async def test_access_extends_life_up_to_absolute_cap(self, memory_cache, clock):
        await memory_cache.set("k", "v", ttl=60)
        for _ in range(3):
            clock.advance(20)
            if clock.now < 1_060:
                assert await memory_cache.get("k") == "v"
        # accessed at t=40, so sliding would allow t=70, but the cap is t=60
        assert await memory_cache.get("k") is None

    async def test_sliding_window_capped_for_long_ttl(self, memory_cache, clock):
        await memory_cache.set("k", "v", ttl=3600)
        clock.advance(599)
        assert await memory_cache.get("k") == "v"
        clock.advance(601)
        assert await memory_cache.get("k") is None

    async def test_remove(self, memory_cache):
        await memory_cache.set("k", "v", ttl=60)
        assert await memory_cache.remove("k") is True
        assert await memory_cache.get("k") is None
        assert await memory_cache.remove("k") is False

    async def test_expired_entries_are_evicted(self, settings, clock):
        backend = MemoryCacheBackend(clock=clock)
        cache = CacheService(backend, settings)
        await cache.set("k", "v", ttl=10)
        clock.advance(11)
        await cache.get("k")
        assert len(backend) == 0

    async def test_write_sweeps_expired_entries_never_read_again(self, settings, clock):
        backend = MemoryCacheBackend(clock=clock)
        cache = CacheService(backend, settings)
        for i in range(100):
            await cache.set(f"k{i}", i, ttl=10)
        clock.advance(11)
        await cache.set("fresh", "v", ttl=10)
        assert len(backend) == 1
        assert await cache.get("fresh") == "v"

    async def test_write_keeps_live_entries(self, settings, clock):
        backend = MemoryCacheBackend(clock=clock)
        cache = CacheService(backend, settings)
        await cache.set("old", "v", ttl=60)
        clock.advance(5)
        await cache.set("new", "v", ttl=60)
        assert len(backend) == 2

    async def test_zero_ttl_is_not_replaced_by_default(self, memory_cache):
        await memory_cache.set("k", "v", ttl=0)
        assert await memory_cache.get("k") is None

    async def test_default_ttl_from_settings(self, memory_cache, clock, settings):
        await memory_cache.set("k", "v")
        clock.advance(settings.forms_cache_ttl / 2 - 1)
        assert await memory_cache.get("k") == "v"


class TestGetOrCreate:

    async def test_factory_runs_once_per_generation(self, memory_cache, clock):
        calls = []

        async def factory():
            calls.append(1)
            return ["form"]

        assert await memory_cache.get_or_create("k", factory, ttl=60) == ["form"]
        assert await memory_cache.get_or_create("k", factory, ttl=60) == ["form"]
        assert len(calls) == 1

        clock.advance(61)
        await memory_cache.get_or_create("k", factory, ttl=60)
        assert len(calls) == 2

    async def test_sync_factory(self, memory_cache):
        assert await memory_cache.get_or_create("k", lambda: 42, ttl=60) == 42
        assert await memory_cache.get("k") == 42

    async def test_empty_result_is_a_hit(self, memory_cache):
        calls = []

        def factory():
            calls.append(1)
            return []

        await memory_cache.get_or_create("k", factory, ttl=60)
        assert await memory_cache.get_or_create("k", factory, ttl=60) == []
        assert len(calls) == 1

    async def test_failing_factory_caches_nothing(self, memory_cache):
        async def factory():
            raise RuntimeError("upstream down")

        with pytest.raises(RuntimeError):
            await memory_cache.get_or_create("k", factory, ttl=60)
        assert await memory_cache.get("k") is None


class TestBackendFailures:

    async def test_failures_degrade_to_miss(self, settings):
        cache = CacheService(BrokenBackend(), settings)
        assert await cache.get("k") is None
        assert await cache.set("k", "v", ttl=60) is False
        assert await cache.remove("k") is False
        assert await cache.get_or_create("k", lambda: "fresh", ttl=60) == "fresh"


class TestRedisBackend:

    @pytest.fixture
    def fake_redis(self):
        return FakeRedis()

    @pytest.fixture
    def wall_clock(self):
        return FakeClock(start=1_700_000_000.0)

    @pytest.fixture
    async def backend(self, fake_redis, wall_clock):
        backend = RedisCacheBackend(None, client=fake_redis, clock=wall_clock)
        await backend.startup()
        return backend

    async def test_set_writes_envelope_with_sliding_ttl(self, backend, fake_redis):
        await backend.set("k", {"a": 1}, 60)
        envelope = json.loads(fake_redis.data["k"])
        assert envelope["value"] == {"a": 1}
        assert envelope["sliding_window"] == 30
        assert fake_redis.expiries["k"] == 30_000

    async def test_hit_refreshes_expiry_within_cap(self, backend, fake_redis, wall_clock):
        await backend.set("k", "v", 60)
        wall_clock.advance(10)
        assert await backend.get("k") == "v"
        assert fake_redis.expiries["k"] == 30_000

        wall_clock.advance(45)
        assert await backend.get("k") == "v"
        assert fake_redis.expiries["k"] == 5_000

    async def test_past_absolute_expiry_is_deleted(self, backend, fake_redis, wall_clock):
        await backend.set("k", "v", 60)
        wall_clock.advance(61)
        assert await backend.get("k") is MISSING
        assert "k" not in fake_redis.data

    async def test_delete(self, backend):
        await backend.set("k", "v", 60)
        assert await backend.delete("k") is True
        assert await backend.delete("k") is False

    async def test_corrupt_entry(self, backend, fake_redis):
        fake_redis.data["k"] = "not json"
        with pytest.raises(CacheBackendError):
            await backend.get("k")

    async def test_unreachable_server_fails_startup(self):
        backend = RedisCacheBackend("redis://localhost:6379", client=UnreachableRedis())
        with pytest.raises(CacheBackendError):
            await backend.startup()

    async def test_startup_requires_url(self):
        with pytest.raises(CacheBackendError):
            await RedisCacheBackend(None).startup()

    async def test_service_treats_errors_as_miss(self, settings):
        backend = RedisCacheBackend(None, client=UnreachableRedis())
        cache = CacheService(backend, settings)
        assert await cache.get("k") is None
        assert await cache.set("k", "v", 60) is False


def test_backend_selection(settings):
    assert isinstance(build_cache_backend(settings), MemoryCacheBackend)
    redis_settings = settings.model_copy(
        update={"cache_backend": "redis", "redis_url": "redis://localhost:6379/0"}
    )
    backend = build_cache_backend(redis_settings)
    assert isinstance(backend, RedisCacheBackend)
    assert backend.url == "redis://localhost:6379/0"
