"""
Redis counter and cache backend for the Facts Service.
"""

from typing import Optional, List

import redis.asyncio as redis

from shared.logging import get_logger
from shared.errors import InfrastructureError


class RedisBackend:
    """Thin async Redis wrapper used by the cache layer and the quota tracker.

    Every failure is raised as ``InfrastructureError``; callers decide how to
    degrade.
    """

    def __init__(self, redis_url: str, socket_timeout: float = 2.0, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.logger = get_logger("facts.redis_backend")
        self._redis: Optional[redis.Redis] = client

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.socket_timeout,
                socket_timeout=self.socket_timeout
            )
        return self._redis

    async def get(self, key: str) -> Optional[str]:
        try:
            client = await self._get_redis()
            return await client.get(key)
        except Exception as e:
            raise InfrastructureError(message=f"GET failed: {e}", details={"key": key}) from e

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        try:
            client = await self._get_redis()
            if ttl:
                await client.setex(key, ttl, value)
            else:
                await client.set(key, value)
            return True
        except Exception as e:
            raise InfrastructureError(message=f"SET failed: {e}", details={"key": key}) from e

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            client = await self._get_redis()
            return int(await client.delete(*keys))
        except Exception as e:
            raise InfrastructureError(message=f"DEL failed: {e}", details={"keys": list(keys)}) from e

    async def incr_with_expiry(self, key: str, ttl: int, amount: int = 1) -> int:
        """Increment a counter and set its expiry in one MULTI/EXEC block."""
        try:
            client = await self._get_redis()
            async with client.pipeline(transaction=True) as pipe:
                pipe.incrby(key, amount)
                pipe.expire(key, ttl)
                results = await pipe.execute()
            return int(results[0])
        except Exception as e:
            raise InfrastructureError(message=f"INCRBY failed: {e}", details={"key": key}) from e

    async def add_to_set(self, key: str, members: List[str], ttl: Optional[int] = None) -> int:
        """Add members to a set, extending but never shortening its expiry."""
        if not members:
            return 0
        try:
            client = await self._get_redis()
            added = await client.sadd(key, *members)
            if ttl:
                current_ttl = await client.ttl(key)
                # -1 means no expiry yet, -2 means the key vanished
                if current_ttl is None or current_ttl < ttl:
                    await client.expire(key, ttl)
            return int(added)
        except Exception as e:
            raise InfrastructureError(message=f"SADD failed: {e}", details={"key": key}) from e

    async def set_members(self, key: str) -> List[str]:
        try:
            client = await self._get_redis()
            members = await client.smembers(key)
            return sorted(members or [])
        except Exception as e:
            raise InfrastructureError(message=f"SMEMBERS failed: {e}", details={"key": key}) from e

    async def ping(self) -> bool:
        try:
            client = await self._get_redis()
            return bool(await client.ping())
        except Exception as e:
            raise InfrastructureError(message=f"PING failed: {e}") from e

    async def close(self):
        """Close the Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Redis backend closed")
