"""
Redis client shared by the read-through cache and change notifications.

The cache is advisory: a Redis failure is logged and reported as a miss or
a no-op, never raised to the caller.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from redis import asyncio as aioredis
from redis.asyncio import Redis

from tripshare.config.settings import settings

T = TypeVar("T")

DELETE_BATCH_SIZE = 500


class CacheClient:
    """
    Thin async wrapper over Redis with lazy connection and bounded reconnects.

    An already-built ``redis_client`` may be injected (tests pass a fakeredis
    instance). An injected client is never closed or replaced on error; one
    the wrapper created itself is dropped and rebuilt on the next call.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        redis_client: Optional[Redis] = None,
        enabled: bool = True,
        max_reconnects: int = 3,
    ):
        """
        Args:
            redis_url: Redis connection URL, defaults to the configured one
            redis_client: Pre-built async Redis client to use instead of connecting
            enabled: When False every operation is a no-op miss
            max_reconnects: Failed connection attempts before giving up
        """
        self.redis_url = redis_url or settings.redis.url
        self.redis_client: Optional[Redis] = redis_client
        self.enabled = enabled
        self.logger = logging.getLogger(__name__)
        self._lock = asyncio.Lock()
        self._owns_client = redis_client is None
        self._failed_connects = 0
        self._max_reconnects = max_reconnects

        if not enabled:
            self.logger.info("Cache disabled by configuration")

    @property
    def is_connected(self) -> bool:
        return self.redis_client is not None

    async def connect(self) -> bool:
        """
        Open the Redis connection if it is not open yet.

        Returns:
            True when a usable client is available
        """
        if not self.enabled:
            return False

        async with self._lock:
            if self.redis_client is not None:
                return True
            if self._failed_connects >= self._max_reconnects:
                return False

            client = None
            try:
                client = aioredis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_timeout=float(settings.redis.socket_timeout),
                    socket_connect_timeout=float(settings.redis.socket_timeout),
                    retry_on_timeout=True,
                    health_check_interval=30,
                    max_connections=settings.redis.max_connections,
                )
                await client.ping()
            except Exception as e:
                self._failed_connects += 1
                level = logging.ERROR if self._failed_connects < self._max_reconnects else logging.WARNING
                self.logger.log(
                    level,
                    f"Redis connection failed ({self._failed_connects}/{self._max_reconnects}): {e}",
                    extra={"redis_url": self.redis_url},
                )
                if client is not None:
                    await self._close(client)
                return False

            self.redis_client = client
            self._failed_connects = 0
            self.logger.info(f"Connected to Redis at {self.redis_url}")
            return True

    async def disconnect(self) -> None:
        async with self._lock:
            client, self.redis_client = self.redis_client, None
            if client is not None and self._owns_client:
                await self._close(client)
                self.logger.info("Disconnected from Redis")

    async def _guarded(
        self, description: str, default: T, command: Callable[[Redis], Awaitable[T]]
    ) -> T:
        """Run one Redis command, turning any failure into ``default``."""
        if not await self.connect():
            return default
        try:
            return await command(self.redis_client)
        except Exception as e:
            self.logger.warning(f"Redis {description} failed: {e}")
            if self._owns_client:
                client, self.redis_client = self.redis_client, None
                await self._close(client)
            return default

    async def get(self, key: str) -> Optional[str]:
        """Cached string for ``key``, or None on a miss or error."""
        value = await self._guarded(f"GET {key}", None, lambda r: r.get(key))
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        self.logger.debug(f"Cache {'hit' if value is not None else 'miss'}: {key}")
        return value

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        async def command(r: Redis) -> bool:
            if ttl_seconds:
                return bool(await r.setex(key, ttl_seconds, value))
            return bool(await r.set(key, value))

        return await self._guarded(f"SET {key}", False, command)

    async def delete(self, *keys: str) -> bool:
        """
        Delete keys. Absent keys are ignored.

        Returns:
            True if the command ran, False if the cache was unreachable
        """
        if not keys:
            return True

        async def command(r: Redis) -> bool:
            await r.delete(*keys)
            return True

        return await self._guarded(f"DEL {list(keys)}", False, command)

    async def delete_pattern(self, pattern: str) -> bool:
        """
        Delete every key matching a glob pattern.

        Walks the keyspace with SCAN so a large keyspace is not blocked.
        """

        async def command(r: Redis) -> bool:
            batch = []
            removed = 0
            async for key in r.scan_iter(match=pattern, count=DELETE_BATCH_SIZE):
                batch.append(key)
                if len(batch) >= DELETE_BATCH_SIZE:
                    removed += await r.delete(*batch)
                    batch = []
            if batch:
                removed += await r.delete(*batch)
            self.logger.debug(f"Pattern delete '{pattern}' removed {removed} keys")
            return True

        return await self._guarded(f"pattern delete '{pattern}'", False, command)

    async def ttl(self, key: str) -> Optional[int]:
        """Remaining lifetime of ``key`` in seconds, None when unknown."""
        remaining = await self._guarded(f"TTL {key}", None, lambda r: r.ttl(key))
        return remaining if remaining is not None and remaining >= 0 else None

    async def publish(self, channel: str, message: str) -> bool:
        async def command(r: Redis) -> bool:
            await r.publish(channel, message)
            return True

        return await self._guarded(f"PUBLISH {channel}", False, command)

    async def ping(self) -> bool:
        async def command(r: Redis) -> bool:
            return bool(await r.ping())

        return await self._guarded("PING", False, command)

    async def _close(self, client: Any) -> None:
        try:
            await client.aclose()
        except Exception as e:
            self.logger.debug(f"Ignoring error while closing Redis client: {e}")


# Global cache client instance
cache_client: Optional[CacheClient] = None


async def get_cache_client() -> CacheClient:
    """
    Get or create the global cache client instance.

    Returns:
        CacheClient instance (disabled when caching is turned off)
    """
    global cache_client

    if cache_client is None:
        cache_client = CacheClient(enabled=settings.cache.enabled)
        await cache_client.connect()

    return cache_client


async def close_cache_client() -> None:
    """Close the global cache client connection."""
    global cache_client

    if cache_client:
        await cache_client.disconnect()
        cache_client = None
