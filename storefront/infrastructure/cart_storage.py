"""Short-lived cart persistence.

Carts expire after ``CART_TTL_SECONDS`` (24h by default); they only need to
outlive the trip to the hosted payment page. Redis is used when reachable,
otherwise an in-process TTL cache.
"""

import json
from functools import lru_cache
from typing import Optional

import redis
from cachetools import TTLCache

from storefront.core.logging_config import get_logger
from storefront.core_settings import get_settings

logger = get_logger(__name__)

KEY_PREFIX = "cart:"


class MemoryCartStorage:
    def __init__(self, ttl: int, maxsize: int = 10_000):
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)

    def load(self, cart_id: str) -> Optional[dict]:
        return self._cache.get(cart_id)

    def save(self, cart_id: str, data: dict) -> None:
        self._cache[cart_id] = data

    def delete(self, cart_id: str) -> None:
        self._cache.pop(cart_id, None)


class RedisCartStorage:
    def __init__(self, client: redis.Redis, ttl: int):
        self.client = client
        self.ttl = ttl

    def load(self, cart_id: str) -> Optional[dict]:
        raw = self.client.get(KEY_PREFIX + cart_id)
        if raw is None:
            return None
        return json.loads(raw)

    def save(self, cart_id: str, data: dict) -> None:
        self.client.setex(KEY_PREFIX + cart_id, self.ttl, json.dumps(data))

    def delete(self, cart_id: str) -> None:
        self.client.delete(KEY_PREFIX + cart_id)


@lru_cache
def get_cart_storage():
    settings = get_settings()
    if settings.REDIS_URL:
        try:
            client = redis.from_url(settings.REDIS_URL, decode_responses=True)
            client.ping()
            logger.info("Cart storage: redis")
            return RedisCartStorage(client, settings.CART_TTL_SECONDS)
        except redis.RedisError as e:
            logger.warning(f"Redis unavailable, carts kept in memory: {e}")
    return MemoryCartStorage(settings.CART_TTL_SECONDS)
