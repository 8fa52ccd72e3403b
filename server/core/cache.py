"""Cache-aside service with pluggable in-memory (default) or Redis backend.

Entries carry an absolute TTL counted from write time plus a sliding window of
min(ttl / 2, 10 minutes). Every hit pushes the expiry forward by the sliding
window, never past the absolute cap. Expired entries disappear silently.
"""

import inspect
import json
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import redis.asyncio as redis
from redis.exceptions import RedisError

from core.config import Settings
from core.logging import get_logger, log_cache_operation

logger = get_logger(__name__)

MAX_SLIDING_WINDOW_SECONDS = 600.0

# Returned by backends on a miss so that falsy values ([] or 0) still count as hits.
MISSING = object()

Factory = Callable[[], Union[Any, Awaitable[Any]]]


class CacheBackendError(Exception):
    """Raised when a cache backend cannot serve a request."""


def sliding_window_for(ttl: float) -> float:
    """Sliding expiration applied to an entry written with ``ttl`` seconds."""
    return min(ttl / 2, MAX_SLIDING_WINDOW_SECONDS)


@dataclass
class CacheEntry:
    """A cached value with absolute and sliding expiration."""
    value: Any
    absolute_expiry: float
    sliding_window: float
    last_access: float

    @property
    def expires_at(self) -> float:
        return min(self.absolute_expiry, self.last_access + self.sliding_window)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class CacheBackend(ABC):
    """Keyed value store used by CacheService."""

    name: str = "abstract"

    async def startup(self) -> None:
        """Open connections, if the backend has any."""

    async def shutdown(self) -> None:
        """Release connections, if the backend has any."""

    @abstractmethod
    async def get(self, key: str) -> Any:
        """Return the value for ``key`` or ``MISSING``. A hit refreshes the sliding window."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: float) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...


class MemoryCacheBackend(CacheBackend):
    """Thread-safe in-process backend. Good for a single process and for tests."""

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    async def get(self, key: str) -> Any:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return MISSING
            if entry.is_expired(now):
                del self._entries[key]
                return MISSING
            entry.last_access = now
            return entry.value

    async def set(self, key: str, value: Any, ttl: float) -> None:
        now = self._clock()
        entry = CacheEntry(
            value=value,
            absolute_expiry=now + ttl,
            sliding_window=sliding_window_for(ttl),
            last_access=now,
        )
        with self._lock:
            self._evict_expired(now)
            self._entries[key] = entry

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    async def shutdown(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisCacheBackend(CacheBackend):
    """Redis backend for multi-process deployments.

    Values are stored as a JSON envelope carrying the absolute expiry (epoch
    seconds) and the sliding window. Redis' own key TTL tracks the sliding
    part and is refreshed with PEXPIRE on each hit.
    """

    name = "redis"

    def __init__(self, url: Optional[str], client: Optional[redis.Redis] = None,
                 clock: Callable[[], float] = time.time):
        self.url = url
        self.redis: Optional[redis.Redis] = client
        self._clock = clock

    async def startup(self) -> None:
        if self.redis is None:
            if not self.url:
                raise CacheBackendError("CACHE_BACKEND=redis requires REDIS_URL")
            self.redis = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
                retry_on_timeout=True
            )
        try:
            await self.redis.ping()
        except RedisError as e:
            raise CacheBackendError(f"Cannot connect to Redis at {self.url}: {e}") from e
        logger.info("Redis cache initialized", url=self.url)

    async def shutdown(self) -> None:
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            logger.info("Redis cache connections closed")

    def _client(self) -> redis.Redis:
        if self.redis is None:
            raise CacheBackendError("Redis cache used before startup")
        return self.redis

    async def get(self, key: str) -> Any:
        client = self._client()
        try:
            raw = await client.get(key)
            if raw is None:
                return MISSING
            envelope = json.loads(raw)
            remaining = envelope["absolute_expiry"] - self._clock()
            if remaining <= 0:
                await client.delete(key)
                return MISSING
            window = min(envelope["sliding_window"], remaining)
            await client.pexpire(key, max(1, int(window * 1000)))
            return envelope["value"]
        except RedisError as e:
            raise CacheBackendError(str(e)) from e
        except (ValueError, KeyError) as e:
            raise CacheBackendError(f"Corrupt cache entry for {key}: {e}") from e

    async def set(self, key: str, value: Any, ttl: float) -> None:
        window = sliding_window_for(ttl)
        envelope = {
            "value": value,
            "absolute_expiry": self._clock() + ttl,
            "sliding_window": window,
        }
        try:
            await self._client().set(
                key,
                json.dumps(envelope, default=str),
                px=max(1, int(min(ttl, window) * 1000))
            )
        except RedisError as e:
            raise CacheBackendError(str(e)) from e

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._client().delete(key))
        except RedisError as e:
            raise CacheBackendError(str(e)) from e


def build_cache_backend(settings: Settings) -> CacheBackend:
    """Pick the backend named by CACHE_BACKEND."""
    if settings.cache_backend == "redis":
        return RedisCacheBackend(settings.redis_url)
    return MemoryCacheBackend()


class CacheService:
    """Async cache-aside facade over a CacheBackend.

    Read and write failures of the backend are logged and treated as a miss
    or a skipped write, so a flaky cache never fails a request.
    """

    def __init__(self, backend: CacheBackend, settings: Settings):
        self.backend = backend
        self.settings = settings

    @property
    def backend_name(self) -> str:
        return self.backend.name

    async def startup(self):
        """Initialize cache connection."""
        await self.backend.startup()
        logger.info("Cache initialized", backend=self.backend_name)

    async def shutdown(self):
        """Close cache connections."""
        await self.backend.shutdown()

    async def _lookup(self, key: str) -> Any:
        try:
            value = await self.backend.get(key)
        except CacheBackendError as e:
            logger.error("Cache get failed", key=key, error=str(e))
            return MISSING
        log_cache_operation(logger, "get", key, cache_hit=value is not MISSING)
        return value

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache, or None on a miss."""
        value = await self._lookup(key)
        return None if value is MISSING else value

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Set value in cache with optional TTL in seconds."""
        if ttl is None:
            ttl = self.settings.forms_cache_ttl
        try:
            await self.backend.set(key, value, ttl)
        except CacheBackendError as e:
            logger.error("Cache set failed", key=key, error=str(e))
            return False
        log_cache_operation(logger, "set", key, ttl=ttl)
        return True

    async def get_or_create(self, key: str, factory: Factory, ttl: Optional[float] = None) -> Any:
        """Return the cached value, or run ``factory`` once and cache its result.

        Concurrent misses on the same key each run their own factory. A
        factory that raises caches nothing.
        """
        value = await self._lookup(key)
        if value is not MISSING:
            return value

        value = factory()
        if inspect.isawaitable(value):
            value = await value
        await self.set(key, value, ttl)
        return value

    async def remove(self, key: str) -> bool:
        """Delete value from cache."""
        try:
            deleted = await self.backend.delete(key)
        except CacheBackendError as e:
            logger.error("Cache delete failed", key=key, error=str(e))
            return False
        log_cache_operation(logger, "delete", key, deleted=deleted)
        return deleted
