"""
Redis Cache Service for read-mostly catalog data.
Caches the public event list and the active CEP zone table used by pricing.
"""
import json
from typing import Optional, Any, List

from redis.asyncio import Redis

from backend.app.core.config import REDIS_HOST, REDIS_PORT, REDIS_DB


class CacheService:
    """Service for caching operations using Redis."""

    _redis: Optional[Redis] = None

    # Default TTL values (in seconds)
    TTL_EVENTS = 300           # 5 minutes - admins toggle availability during sales
    TTL_CEP_ZONES = 3600       # 1 hour - invalidated explicitly on every zone change
    TTL_DEFAULT = 300

    # Cache keys
    KEY_EVENTS_AVAILABLE = "events:available"
    KEY_CEP_ZONES_ACTIVE = "cep_zones:active"

    @classmethod
    async def get_redis(cls) -> Redis:
        """Get or create Redis connection."""
        if cls._redis is None:
            cls._redis = Redis(
                host=REDIS_HOST,
                port=REDIS_PORT,
                db=REDIS_DB,
                decode_responses=True
            )
        return cls._redis

    @classmethod
    async def close(cls):
        """Close Redis connection."""
        if cls._redis:
            await cls._redis.close()
            cls._redis = None

    def __init__(self, redis: Redis):
        self.redis = redis

    async def get(self, key: str) -> Optional[Any]:
        data = await self.redis.get(key)
        if data:
            return json.loads(data)
        return None

    async def set(self, key: str, value: Any, ttl: int = TTL_DEFAULT):
        # default=str covers Decimal and datetime values
        await self.redis.set(key, json.dumps(value, ensure_ascii=False, default=str), ex=ttl)

    async def delete(self, key: str):
        await self.redis.delete(key)

    # ----- Events -----

    async def get_available_events(self) -> Optional[List[dict]]:
        return await self.get(self.KEY_EVENTS_AVAILABLE)

    async def set_available_events(self, events: List[dict]):
        await self.set(self.KEY_EVENTS_AVAILABLE, events, self.TTL_EVENTS)

    async def invalidate_events(self):
        await self.delete(self.KEY_EVENTS_AVAILABLE)

    # ----- CEP zones -----

    async def get_active_cep_zones(self) -> Optional[List[dict]]:
        """Cached ``[{"id", "name", "description", "cep_ranges", "price", "priority"}]``."""
        return await self.get(self.KEY_CEP_ZONES_ACTIVE)

    async def set_active_cep_zones(self, zones: List[dict]):
        await self.set(self.KEY_CEP_ZONES_ACTIVE, zones, self.TTL_CEP_ZONES)

    async def invalidate_cep_zones(self):
        await self.delete(self.KEY_CEP_ZONES_ACTIVE)
