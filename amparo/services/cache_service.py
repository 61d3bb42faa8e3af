"""
Optional Redis cache for Amparo.

The cache is an optimization only. When REDIS_URL is unset, Redis is
unreachable, or any command fails, reads behave as misses and writes as
no-ops; no cache error ever reaches a caller.

Key layout:
    user:{user_id}:profile   non-sensitive profile fields (TTL 3600)
    context:{user_id}        identified pattern tags (TTL 3600)

Nothing encrypted, and no salt or key material, is ever cached.
"""

import dataclasses
import json
import logging
from datetime import date, datetime
from enum import Enum
from typing import Any

import redis.asyncio as redis

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600  # seconds


def profile_key(user_id: str) -> str:
    return f"user:{user_id}:profile"


def context_key(user_id: str) -> str:
    return f"context:{user_id}"


class AmparoJSONEncoder(json.JSONEncoder):
    """JSON encoder for dataclasses, datetimes, enums and sets."""

    def default(self, obj: Any) -> Any:
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return dataclasses.asdict(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, set):
            return sorted(obj)
        return super().default(obj)


class CacheService:
    """
    Degrading Redis wrapper.

    Args:
        redis_url: Connection URL. None disables the cache entirely.
        client: Pre-built async client (tests).
    """

    def __init__(self, redis_url: str | None = None, client: Any = None) -> None:
        self._url = redis_url
        self._client: Any = client
        self._unavailable = client is None and not redis_url

    @property
    def enabled(self) -> bool:
        return not self._unavailable

    async def _ensure_client(self) -> Any:
        if self._unavailable:
            return None
        if self._client is None:
            try:
                client = redis.from_url(self._url, decode_responses=True)
                await client.ping()
                self._client = client
            except (redis.RedisError, OSError) as e:
                logger.warning("Redis unavailable, cache disabled", extra={"error": type(e).__name__})
                self._unavailable = True
                return None
        return self._client

    async def get(self, key: str) -> Any | None:
        """Return the decoded JSON value, or None on a miss or any failure."""
        client = await self._ensure_client()
        if client is None:
            return None
        try:
            raw = await client.get(key)
            return json.loads(raw) if raw is not None else None
        except (redis.RedisError, OSError, ValueError) as e:
            logger.warning("Cache get failed", extra={"key": key, "error": type(e).__name__})
            return None

    async def set(self, key: str, value: Any, ttl: int = DEFAULT_TTL) -> bool:
        client = await self._ensure_client()
        if client is None:
            return False
        try:
            return bool(await client.setex(key, ttl, json.dumps(value, cls=AmparoJSONEncoder)))
        except (redis.RedisError, OSError, TypeError, ValueError) as e:
            logger.warning("Cache set failed", extra={"key": key, "error": type(e).__name__})
            return False

    async def delete(self, key: str) -> bool:
        client = await self._ensure_client()
        if client is None:
            return False
        try:
            return bool(await client.delete(key))
        except (redis.RedisError, OSError) as e:
            logger.warning("Cache delete failed", extra={"key": key, "error": type(e).__name__})
            return False

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern. Returns the number removed."""
        client = await self._ensure_client()
        if client is None:
            return 0
        try:
            keys = [key async for key in client.scan_iter(match=pattern)]
            if not keys:
                return 0
            return int(await client.delete(*keys))
        except (redis.RedisError, OSError) as e:
            logger.warning("Cache pattern delete failed", extra={"pattern": pattern, "error": type(e).__name__})
            return 0

    async def invalidate_user(self, user_id: str) -> None:
        """Drop everything cached for a user."""
        await self.delete_pattern(f"user:{user_id}:*")
        await self.delete(context_key(user_id))

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            except (redis.RedisError, OSError) as e:
                logger.debug("Cache close failed", extra={"error": type(e).__name__})
            self._client = None
