"""Redis-backed cache for slot listings.

The cache is advisory: a stale entry can at worst show a slot that the booking
authority then rejects with a conflict. Every cache failure degrades to a miss.
"""
from datetime import date
from typing import Optional, Any
import logging
from redis import asyncio as aioredis
from careslot.core.config import settings

logger = logging.getLogger(__name__)


def slot_cache_key(provider_id: int, day: date, duration_minutes: int) -> str:
    return f"slots:{provider_id}:{day.isoformat()}:{duration_minutes}"


class RedisCache:
    def __init__(self, redis_url: Optional[str] = None):
        self.redis_url = redis_url or settings.REDIS_URL
        self.redis: Optional[aioredis.Redis] = None

    async def connect(self):
        if not self.redis:
            try:
                self.redis = aioredis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
                logger.info("Connected to Redis cache.")
            except Exception as e:
                logger.error(f"Failed to connect to Redis: {e}")

    async def get(self, key: str) -> Optional[str]:
        if not self.redis:
            await self.connect()
        try:
            return await self.redis.get(key)
        except Exception as e:
            logger.error(f"Redis get error for key {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = 3600):
        if not self.redis:
            await self.connect()
        try:
            await self.redis.set(key, value, ex=ttl)
        except Exception as e:
            logger.error(f"Redis set error for key {key}: {e}")

    async def delete_pattern(self, pattern: str):
        if not self.redis:
            await self.connect()
        try:
            keys = await self.redis.keys(pattern)
            if keys:
                await self.redis.delete(*keys)
        except Exception as e:
            logger.error(f"Redis delete_pattern error for {pattern}: {e}")

    async def invalidate_slots(self, provider_id: int, *days: date):
        for d in days:
            await self.delete_pattern(f"slots:{provider_id}:{d.isoformat()}:*")

    async def invalidate_provider(self, provider_id: int):
        await self.delete_pattern(f"slots:{provider_id}:*")

    async def close(self):
        if self.redis:
            await self.redis.aclose()

# Singleton instance
redis_cache = RedisCache()
