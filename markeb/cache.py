"""
Redis cache for upstream lookups (addresses, drive times).

The cache is best effort: when Redis is down every call is a miss and the
caller goes to the provider.
"""

import json
import logging
from typing import Any, Optional

import redis

from .rate_limiter import get_redis_client

logger = logging.getLogger(__name__)


class Cache:
    """Redis cache wrapper with JSON serialization"""

    def __init__(self, client: Optional[redis.Redis] = None):
        self.redis_client = client

    def _get_client(self) -> Optional[redis.Redis]:
        if self.redis_client is None:
            try:
                self.redis_client = get_redis_client()
            except redis.RedisError as e:
                logger.warning(f"⚠️ Redis cache unavailable: {e}")
                return None
        return self.redis_client

    def get(self, key: str) -> Optional[Any]:
        client = self._get_client()
        if not client:
            return None
        try:
            value = client.get(key)
        except redis.RedisError as e:
            logger.error(f"❌ Cache get error for {key}: {e}")
            return None
        if value is None:
            logger.debug(f"Cache MISS: {key}")
            return None
        logger.debug(f"Cache HIT: {key}")
        return json.loads(value)

    def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        client = self._get_client()
        if not client:
            return False
        try:
            client.setex(key, ttl, json.dumps(value))
            return True
        except redis.RedisError as e:
            logger.error(f"❌ Cache set error for {key}: {e}")
            return False


cache = Cache()


def get_cache() -> Cache:
    return cache


def address_key(postcode: str) -> str:
    return f"address:{postcode.replace(' ', '').upper()}"


def drive_time_key(origin: str, destination: str) -> str:
    a, b = sorted([origin.replace(" ", "").upper(), destination.replace(" ", "").upper()])
    return f"drive:{a}:{b}"
