from __future__ import annotations

import json
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
from redis import Redis

_KEY_PREFIX = "entityapi:cache:"


def _cache_key(key: str) -> str:
    return f"{_KEY_PREFIX}{key}"


def _decode(cached: Optional[str]) -> Any:
    if cached is None:
        return None
    try:
        return json.loads(cached)
    except (json.JSONDecodeError, TypeError):
        # Corrupted cache entry - treat as cache miss
        return None


def _stream_fields(attributes: Dict[str, str], payload: Dict[str, Any]) -> Dict[str, str]:
    return {"attributes": json.dumps(attributes), "payload": json.dumps(payload)}


class RedisCache:
    """Thin Redis wrapper for response caching and webhook streams."""

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        # Short-lived sync client so the async client is not bound to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def get_json(self, key: str) -> Any:
        return _decode(await self.client.get(_cache_key(key)))

    async def set_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        await self.client.set(_cache_key(key), json.dumps(value), ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self.client.delete(_cache_key(key))

    async def flush(self) -> int:
        """Drop every cached response; other keys in the database are untouched."""
        removed = 0
        async for redis_key in self.client.scan_iter(match=f"{_KEY_PREFIX}*", count=500):
            removed += await self.client.delete(redis_key)
        return removed

    async def publish(self, topic: str, attributes: Dict[str, str], payload: Dict[str, Any]) -> str:
        """Append a message to the ``topic`` stream and return its id."""
        return await self.client.xadd(topic, _stream_fields(attributes, payload))

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.close()
        await self.client.connection_pool.disconnect()


class SyncRedisCache:
    """Synchronous Redis wrapper for use in tests.

    Uses a synchronous Redis client internally to avoid event loop binding
    issues in pytest, but exposes async methods so they can be awaited
    uniformly like RedisCache.
    """

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        self.client.ping()

    async def get_json(self, key: str) -> Any:
        return _decode(self.client.get(_cache_key(key)))

    async def set_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        self.client.set(_cache_key(key), json.dumps(value), ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        self.client.delete(_cache_key(key))

    async def flush(self) -> int:
        removed = 0
        for redis_key in self.client.scan_iter(match=f"{_KEY_PREFIX}*", count=500):
            removed += self.client.delete(redis_key)
        return removed

    async def publish(self, topic: str, attributes: Dict[str, str], payload: Dict[str, Any]) -> str:
        return self.client.xadd(topic, _stream_fields(attributes, payload))

    async def close(self) -> None:
        """Close Redis connection."""
        self.client.close()
