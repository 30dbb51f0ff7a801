"""
Result Cache: time-boxed storage for aggregation results.

Two backing stores behind one protocol, selected once at start:
- MemoryResultStore: process-local dict with monotonic-clock expiry
- RedisResultStore:  shared Redis, JSON values, graceful degradation

Keys are ``grc:risk-aggregation:<view>:<sorted levels>``, so every distinct
level subset is an independent entry. Any mutation of risks, controls or
their links drops every entry with a single prefix delete.

Population is idempotent: two callers computing the same entry concurrently
both write the same value, last write wins.
"""

import asyncio
import json
import time
from typing import Any, Callable, Dict, Iterable, Optional, Protocol, Tuple

import structlog

from grcrisk.config import Settings, settings as default_settings
from grcrisk.engine.types import Level
from grcrisk.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

KEY_PREFIX = "grc:risk-aggregation:"
VIEW_ALL = "all"
VIEW_VALIDATED = "validated"


class ResultStore(Protocol):
    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        ...

    async def delete_prefix(self, prefix: str) -> int:
        ...

    async def close(self) -> None:
        ...


class MemoryResultStore:
    """Process-wide in-memory store. Reads are lock-free; writes take a lock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._write_lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        async with self._write_lock:
            self._entries[key] = (self._clock() + ttl_seconds, value)
        return True

    async def delete_prefix(self, prefix: str) -> int:
        async with self._write_lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    async def close(self) -> None:
        self._entries.clear()


class RedisResultStore:
    """
    Redis-backed store. A missing or failing Redis degrades to cache misses;
    aggregation is then simply recomputed on every call.
    """

    def __init__(self, redis_url: str, client: Any = None):
        self.redis_url = redis_url
        self._redis = client

    async def _client(self):
        """Lazy-init Redis connection."""
        if self._redis is None:
            try:
                import redis.asyncio as aioredis

                client = aioredis.from_url(
                    self.redis_url,
                    decode_responses=True,
                    socket_connect_timeout=3,
                )
                await client.ping()
                self._redis = client
                logger.info("redis_connected")
            except Exception as e:
                logger.warning("redis_unavailable", error=str(e))
                self._redis = None
        return self._redis

    async def get(self, key: str) -> Optional[Any]:
        try:
            r = await self._client()
            if r is None:
                return None
            val = await r.get(key)
            return json.loads(val) if val else None
        except Exception as e:
            logger.warning("redis_get_failed", key=key, error=str(e))
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        try:
            r = await self._client()
            if r is None:
                return False
            await r.set(key, json.dumps(value, ensure_ascii=False, default=str), ex=ttl_seconds)
            return True
        except Exception as e:
            logger.warning("redis_set_failed", key=key, error=str(e))
            return False

    async def delete_prefix(self, prefix: str) -> int:
        try:
            r = await self._client()
            if r is None:
                return 0
            keys = []
            async for key in r.scan_iter(match=f"{prefix}*"):
                keys.append(key)
            if keys:
                return await r.delete(*keys)
            return 0
        except Exception as e:
            logger.warning("redis_delete_failed", prefix=prefix, error=str(e))
            return 0

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def build_result_store(settings: Settings = default_settings) -> ResultStore:
    """Pick the configured backing store (called once at start)."""
    backend = settings.result_cache_backend
    if backend == "memory":
        return MemoryResultStore()
    if backend == "redis":
        return RedisResultStore(settings.redis_url)
    raise ConfigurationError(f"Unknown result cache backend: {backend}", backend=backend)


# ── Aggregation cache ────────────────────────────────────────────────────


def cache_key(view: str, levels: Iterable[Level]) -> str:
    return f"{KEY_PREFIX}{view}:{','.join(sorted(level.value for level in levels))}"


class AggregationCache:
    """Aggregation results keyed by view and requested level subset."""

    def __init__(self, store: ResultStore, ttl_seconds: int = default_settings.result_cache_ttl_seconds):
        self.store = store
        self.ttl_seconds = ttl_seconds

    async def get(self, view: str, levels: Iterable[Level]) -> Optional[Dict[str, Any]]:
        key = cache_key(view, levels)
        value = await self.store.get(key)
        logger.debug("aggregation_cache_hit" if value is not None else "aggregation_cache_miss", key=key)
        return value

    async def set(self, view: str, levels: Iterable[Level], payload: Dict[str, Any]) -> bool:
        return await self.store.set(cache_key(view, levels), payload, self.ttl_seconds)

    async def invalidate(self) -> int:
        deleted = await self.store.delete_prefix(KEY_PREFIX)
        logger.info("aggregation_cache_invalidated", entries=deleted)
        return deleted

    async def close(self) -> None:
        await self.store.close()
