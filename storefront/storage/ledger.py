"""
Webhook Event Ledger
====================
Remembers which Stripe event ids have already been accepted so that a
redelivered notification is acknowledged without being dispatched again.

Redis-backed (``SET NX EX``) when REDIS_URL is configured and reachable;
otherwise falls back to an in-process map with the same TTL semantics.
"""

import asyncio
import time
from collections import OrderedDict
from typing import Optional

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from storefront.config import redis_config

logger = structlog.get_logger(component="event_ledger")

MAX_LOCAL_KEYS = 10000


class EventLedger:
    """Idempotency keys for webhook deliveries"""

    KEY_PREFIX = "stripe:event:"

    def __init__(
        self,
        redis_url: Optional[str] = redis_config.REDIS_URL,
        ttl_seconds: int = redis_config.EVENT_TTL,
        max_local_keys: int = MAX_LOCAL_KEYS,
    ):
        self._redis_url = redis_url
        self._ttl = ttl_seconds
        self._max_local_keys = max_local_keys
        self._redis: Optional[redis.Redis] = None
        # key -> expiry, oldest first
        self._local: "OrderedDict[str, float]" = OrderedDict()
        self._lock = asyncio.Lock()

    @property
    def is_redis_connected(self) -> bool:
        return self._redis is not None

    async def connect(self):
        """Connect to Redis if configured"""
        if not self._redis_url:
            logger.info("ledger_in_memory", reason="redis_not_configured")
            return

        client = redis.from_url(self._redis_url)
        try:
            await client.ping()
        except (RedisError, OSError) as e:
            await client.aclose()
            logger.warning("redis_unavailable", error=str(e), fallback="in_memory")
            return

        self._redis = client
        logger.info("redis_connected")

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None
        self._local.clear()

    async def try_acquire(self, event_id: str) -> bool:
        """Record the event id. Returns False if it was already recorded."""
        key = f"{self.KEY_PREFIX}{event_id}"

        if self._redis:
            try:
                return bool(await self._redis.set(key, "1", nx=True, ex=self._ttl))
            except RedisError as e:
                logger.warning("redis_set_error", event_id=event_id, error=str(e))

        async with self._lock:
            now = time.monotonic()
            expires = self._local.get(key)
            if expires is not None and expires > now:
                return False

            self._local[key] = now + self._ttl
            self._local.move_to_end(key)

            # TTL is fixed, so insertion order is expiry order
            while self._local:
                oldest, oldest_expires = next(iter(self._local.items()))
                if oldest_expires > now and len(self._local) <= self._max_local_keys:
                    break
                del self._local[oldest]
            return True

    async def release(self, event_id: str):
        """Forget the event id so a redelivery is processed again"""
        key = f"{self.KEY_PREFIX}{event_id}"

        if self._redis:
            try:
                await self._redis.delete(key)
            except RedisError as e:
                logger.warning("redis_delete_error", event_id=event_id, error=str(e))

        async with self._lock:
            self._local.pop(key, None)
