"""Small key/value cache used for list endpoints.

Handlers receive a :class:`CacheStore` through FastAPI dependency injection, so
tests can swap in a fresh :class:`MemoryCacheStore` and production can point
at a shared redis.
"""

import json
import logging
import time
from typing import Any

import redis.asyncio as redis

from app.config import get_settings

logger = logging.getLogger(__name__)


def account_prefix(account_id) -> str:
    return f"adpulse:account:{account_id}:"


def campaigns_key(account_id, suffix: str = "") -> str:
    return f"{account_prefix(account_id)}campaigns{suffix}"


def ad_sets_key(account_id, suffix: str = "") -> str:
    return f"{account_prefix(account_id)}ad-sets{suffix}"


def ads_key(account_id, suffix: str = "") -> str:
    return f"{account_prefix(account_id)}ads{suffix}"


class CacheStore:
    """Interface: async get / set / invalidate."""

    async def get(self, key: str) -> Any | None:
        raise NotImplementedError

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        raise NotImplementedError

    async def invalidate(self, key: str) -> None:
        raise NotImplementedError

    async def invalidate_prefix(self, prefix: str) -> int:
        raise NotImplementedError


class MemoryCacheStore(CacheStore):
    """Process-local cache; entries expire lazily on read."""

    def __init__(self, default_ttl: int = 60):
        self.default_ttl = default_ttl
        self._data: dict[str, tuple[float, Any]] = {}

    async def get(self, key: str) -> Any | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= time.monotonic():
            self._data.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        self._data[key] = (time.monotonic() + (ttl or self.default_ttl), value)

    async def invalidate(self, key: str) -> None:
        self._data.pop(key, None)

    async def invalidate_prefix(self, prefix: str) -> int:
        keys = [k for k in self._data if k.startswith(prefix)]
        for k in keys:
            del self._data[k]
        return len(keys)


class RedisCacheStore(CacheStore):
    """Shared cache on redis; values are stored as JSON."""

    def __init__(self, redis_url: str | None = None, default_ttl: int = 60):
        self.redis_url = redis_url or get_settings().redis_url
        self.default_ttl = default_ttl
        self._redis: redis.Redis | None = None

    async def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    async def get(self, key: str) -> Any | None:
        r = await self._get_redis()
        raw = await r.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        r = await self._get_redis()
        await r.set(key, json.dumps(value, default=str), ex=ttl or self.default_ttl)

    async def invalidate(self, key: str) -> None:
        r = await self._get_redis()
        await r.delete(key)

    async def invalidate_prefix(self, prefix: str) -> int:
        r = await self._get_redis()
        removed = 0
        async for key in r.scan_iter(match=f"{prefix}*"):
            removed += await r.delete(key)
        return removed


_store: CacheStore | None = None


def get_cache_store() -> CacheStore:
    """FastAPI dependency returning the process-wide cache store."""
    global _store
    if _store is None:
        settings = get_settings()
        if settings.cache_backend == "redis":
            _store = RedisCacheStore(settings.redis_url, settings.cache_ttl_seconds)
        else:
            _store = MemoryCacheStore(settings.cache_ttl_seconds)
        logger.info("Using %s cache store", type(_store).__name__)
    return _store
