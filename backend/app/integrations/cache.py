"""Cache collaborator used to short-circuit the chat-list read path.

Two backends share one async interface (get / set / invalidate /
invalidate_pattern):

    - InMemoryCache: process-local dict with per-key expiry (default, tests)
    - RedisCache:    redis.asyncio client, JSON-encoded values

The cache is never authoritative. Every backend error is logged and treated
as a miss or a no-op.
"""
import fnmatch
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from redis.asyncio import Redis as AsyncRedis

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60


def chats_cache_key(user_id: str) -> str:
    return f"chats:user:{user_id}"


def messages_cache_key(chat_id: str, page: Optional[int] = None) -> str:
    return f"messages:{chat_id}:page:{page}" if page else f"messages:{chat_id}"


class InMemoryCache:
    """Process-local TTL cache."""

    def __init__(self) -> None:
        self._cache: Dict[str, Any] = {}
        self._expiry: Dict[str, datetime] = {}

    async def get(self, key: str) -> Optional[Any]:
        if key not in self._cache:
            return None
        if key in self._expiry and datetime.now() > self._expiry[key]:
            # Expired - remove it
            self._drop(key)
            return None
        logger.debug("Cache HIT: %s", key)
        return self._cache[key]

    async def set(self, key: str, value: Any, ttl: int = DEFAULT_TTL_SECONDS) -> None:
        self._cache[key] = value
        if ttl > 0:
            self._expiry[key] = datetime.now() + timedelta(seconds=ttl)
        else:
            self._expiry.pop(key, None)
        logger.debug("Cache SET: %s (TTL: %ss)", key, ttl)

    async def invalidate(self, key: str) -> None:
        self._drop(key)
        logger.debug("Cache INVALIDATED: %s", key)

    async def invalidate_pattern(self, pattern: str) -> None:
        """Delete all keys matching a Redis-style glob (e.g. "messages:abc*")."""
        doomed = [k for k in self._cache if fnmatch.fnmatchcase(k, pattern)]
        for key in doomed:
            self._drop(key)
        logger.debug("Cache INVALIDATED pattern: %s (%d keys)", pattern, len(doomed))

    async def aclose(self) -> None:
        self._cache.clear()
        self._expiry.clear()

    def _drop(self, key: str) -> None:
        self._cache.pop(key, None)
        self._expiry.pop(key, None)


class RedisCache:
    """Redis-backed cache; values are stored as JSON text."""

    def __init__(self, redis_url: str, client: Optional[AsyncRedis] = None) -> None:
        self._client = client or AsyncRedis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
        )

    async def get(self, key: str) -> Optional[Any]:
        try:
            cached = await self._client.get(key)
        except Exception as exc:
            logger.warning("[REDIS-CACHE] get %s failed: %s", key, exc)
            return None
        if not cached:
            return None
        logger.debug("Cache HIT: %s", key)
        return json.loads(cached)

    async def set(self, key: str, value: Any, ttl: int = DEFAULT_TTL_SECONDS) -> None:
        try:
            await self._client.set(key, json.dumps(value), ex=ttl if ttl > 0 else None)
            logger.debug("Cache SET: %s (TTL: %ss)", key, ttl)
        except Exception as exc:
            logger.warning("[REDIS-CACHE] set %s failed: %s", key, exc)

    async def invalidate(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except Exception as exc:
            logger.warning("[REDIS-CACHE] invalidate %s failed: %s", key, exc)

    async def invalidate_pattern(self, pattern: str) -> None:
        try:
            keys = [k async for k in self._client.scan_iter(match=pattern)]
            if keys:
                await self._client.delete(*keys)
            logger.debug("Cache INVALIDATED pattern: %s (%d keys)", pattern, len(keys))
        except Exception as exc:
            logger.warning("[REDIS-CACHE] pattern invalidate %s failed: %s", pattern, exc)

    async def aclose(self) -> None:
        await self._client.aclose()


def build_cache(backend: str, redis_url: Optional[str] = None):
    """Create the configured cache backend."""
    if backend == "redis":
        if not redis_url:
            logger.warning("Cache backend 'redis' selected without a URL; using in-memory cache")
            return InMemoryCache()
        logger.info("Using Redis cache at %s", redis_url)
        return RedisCache(redis_url)
    return InMemoryCache()
