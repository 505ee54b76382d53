"""
Redis layer: session availability cache and per-session booking locks.

Redis is optional. Without a connection every read misses, every write is
dropped, and session locks are skipped; the database guard on the session
counter still keeps bookings within capacity.
"""

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
from uuid import uuid4

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from .config import get_settings
from .utils.exceptions import ConflictError

logger = logging.getLogger(__name__)

# Deletes the key only while it still holds our token
RELEASE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


class CacheKeyBuilder:
    """Key layout for everything this service stores in Redis."""

    PREFIX = "xbp"

    @classmethod
    def session_availability(cls, session_id: str) -> str:
        return f"{cls.PREFIX}:sessions:{session_id}:availability"

    @classmethod
    def session_lock(cls, session_id: str) -> str:
        return f"{cls.PREFIX}:sessions:{session_id}:lock"


class RedisCache:
    """JSON values in Redis, degrading to a no-op when Redis is unreachable."""

    def __init__(self):
        self.client: Optional[Redis] = None
        self.pool: Optional[redis.ConnectionPool] = None

    @property
    def available(self) -> bool:
        return self.client is not None

    async def initialize(self) -> None:
        """Open the connection pool and check the server answers."""
        settings = get_settings()

        self.pool = redis.ConnectionPool.from_url(
            settings.redis_url,
            max_connections=settings.redis_max_connections,
            socket_connect_timeout=2,
            health_check_interval=30
        )
        client = Redis(connection_pool=self.pool)

        try:
            await client.ping()
        except RedisConnectionError:
            await self.pool.disconnect()
            self.pool = None
            raise

        self.client = client
        logger.info("Redis connected at %s", settings.redis_url.rsplit("@", 1)[-1])

    async def close(self) -> None:
        if self.client:
            await self.client.aclose()
        if self.pool:
            await self.pool.disconnect()
        self.client = None
        self.pool = None

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the decoded value under key, or None on a miss or any Redis failure."""
        if not self.client:
            return None

        try:
            raw = await self.client.get(key)
        except RedisError as e:
            logger.warning("Cache read failed for %s: %s", key, e)
            return None

        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry %s", key)
            await self.delete(key)
            return None

    async def set(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> bool:
        if not self.client:
            return False

        try:
            await self.client.set(key, json.dumps(value, default=str), ex=ttl)
        except RedisError as e:
            logger.warning("Cache write failed for %s: %s", key, e)
            return False
        return True

    async def delete(self, key: str) -> bool:
        if not self.client:
            return False

        try:
            await self.client.delete(key)
        except RedisError as e:
            logger.warning("Cache delete failed for %s: %s", key, e)
            return False
        return True


class SessionLock:
    """
    Mutual exclusion for booking writes on one session across API instances.

    The lock is a Redis key set with NX and an expiry, holding a random token
    so only the owner can release it. Waiting longer than wait_timeout raises
    ConflictError, which callers treat like any other lost race.
    """

    POLL_INTERVAL = 0.05

    def __init__(self, cache: RedisCache, key: str, ttl: int = 10, wait_timeout: Optional[float] = None):
        self.cache = cache
        self.key = key
        self.ttl = ttl
        self.wait_timeout = ttl if wait_timeout is None else wait_timeout
        self.token = uuid4().hex
        self.held = False

    async def acquire(self) -> None:
        deadline = time.monotonic() + self.wait_timeout

        while True:
            try:
                self.held = bool(await self.cache.client.set(self.key, self.token, nx=True, ex=self.ttl))
            except RedisError as e:
                # The database guard still applies, so proceed unlocked
                logger.warning("Could not take lock %s, continuing without it: %s", self.key, e)
                return

            if self.held:
                return
            if time.monotonic() >= deadline:
                raise ConflictError(f"Timed out waiting for booking lock {self.key}", retry_after=1)
            await asyncio.sleep(self.POLL_INTERVAL)

    async def release(self) -> None:
        if not self.held:
            return
        try:
            await self.cache.client.eval(RELEASE_SCRIPT, 1, self.key, self.token)
        except RedisError as e:
            logger.warning("Failed to release lock %s, it will expire: %s", self.key, e)
        finally:
            self.held = False


# Global cache instance
cache = RedisCache()


async def init_cache() -> None:
    await cache.initialize()


async def close_cache() -> None:
    await cache.close()


def get_cache() -> RedisCache:
    return cache


@asynccontextmanager
async def session_lock(session_id: str, ttl: int = 10):
    """
    Hold the booking lock of a session for the duration of the block.

    Usage:
        async with session_lock(str(session.id)):
            ...
    """
    if not cache.available:
        yield None
        return

    lock = SessionLock(cache, CacheKeyBuilder.session_lock(session_id), ttl=ttl)
    await lock.acquire()
    try:
        yield lock
    finally:
        await lock.release()


class CacheInvalidator:
    """Drops cached projections after the data behind them changed."""

    @staticmethod
    async def invalidate_session_caches(session_id: str) -> None:
        await cache.delete(CacheKeyBuilder.session_availability(session_id))
        logger.debug("Invalidated availability cache for session %s", session_id)
