"""
Cache Coordinator - read-through caching and fan-out invalidation

Values are pydantic models stored as JSON under namespaced keys. The cache is
advisory: a miss, a corrupt entry or an unreachable Redis all fall back to the
loader, and invalidation never raises into the caller. TTLs bound staleness
whenever an invalidation is lost.
"""
import logging
import re
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from tripshare.config.settings import CacheSettings, settings
from tripshare.core.cache_client import CacheClient

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


class CacheNamespace(str, Enum):
    TRIP = "trip"
    USER_TRIPS = "user:trips"
    USER_SEARCH = "user:search"
    PERMISSION = "permission"


def cache_key(namespace: CacheNamespace, *parts: str) -> str:
    return ":".join([namespace.value, *(str(p) for p in parts)])


def escape_glob(value: str) -> str:
    """Escape Redis glob metacharacters so ids match literally in SCAN patterns."""
    return _GLOB_SPECIAL.sub(r"\\\1", value)


class CacheCoordinator:
    """Namespaced read-through cache on top of ``CacheClient``"""

    def __init__(
        self,
        cache_client: CacheClient,
        cache_settings: Optional[CacheSettings] = None,
        enabled: Optional[bool] = None,
    ):
        self.cache = cache_client
        self.cache_settings = cache_settings or settings.cache
        self.enabled = self.cache_settings.enabled if enabled is None else enabled

    def ttl_for(self, namespace: CacheNamespace) -> int:
        return {
            CacheNamespace.TRIP: self.cache_settings.trip_ttl_seconds,
            CacheNamespace.USER_TRIPS: self.cache_settings.trip_list_ttl_seconds,
            CacheNamespace.USER_SEARCH: self.cache_settings.search_ttl_seconds,
            CacheNamespace.PERMISSION: self.cache_settings.permission_ttl_seconds,
        }[namespace]

    async def get_or_load(
        self,
        namespace: CacheNamespace,
        key: str,
        loader: Callable[[], Awaitable[Optional[M]]],
        model: Type[M],
        ttl: Optional[int] = None,
    ) -> Optional[M]:
        """
        Return the cached value for ``key`` or load and cache it

        Args:
            namespace: Key namespace, also selects the default TTL
            key: Key suffix inside the namespace
            loader: Coroutine factory producing the authoritative value
            model: Pydantic model used to decode the cached JSON
            ttl: Override for the namespace TTL

        Returns:
            The value, or None when the loader found nothing (not cached)
        """
        if not self.enabled:
            return await loader()

        full_key = cache_key(namespace, key)
        raw = await self.cache.get(full_key)
        if raw is not None:
            try:
                return model.model_validate_json(raw)
            except ValidationError:
                logger.warning(
                    f"Discarding corrupt cache entry: {full_key}",
                    extra={"cache_key": full_key},
                )
                await self.cache.delete(full_key)

        value = await loader()
        if value is not None:
            await self.cache.set(full_key, value.model_dump_json(), ttl or self.ttl_for(namespace))
        return value

    async def invalidate(self, namespace: CacheNamespace, key: str) -> None:
        if not self.enabled:
            return
        await self.cache.delete(cache_key(namespace, key))

    async def invalidate_for_users(self, namespace: CacheNamespace, user_ids: Iterable[str]) -> None:
        """Drop every cached page of a per-user namespace for each user."""
        if not self.enabled:
            return
        for user_id in dict.fromkeys(user_ids):
            await self.cache.delete_pattern(f"{namespace.value}:{escape_glob(user_id)}:*")

    async def invalidate_permissions(self, trip_id: str, user_id: Optional[str] = None) -> None:
        if not self.enabled:
            return
        if user_id is None:
            pattern = f"{CacheNamespace.PERMISSION.value}:{escape_glob(trip_id)}:*"
        else:
            pattern = f"{CacheNamespace.PERMISSION.value}:{escape_glob(trip_id)}:{escape_glob(user_id)}:*"
        await self.cache.delete_pattern(pattern)

    async def invalidate_trip_and_fan_out(self, trip_id: str, user_ids: Iterable[str]) -> None:
        """Drop the trip document plus the list and search pages of ``user_ids``."""
        if not self.enabled:
            return
        user_ids = list(dict.fromkeys(user_ids))
        await self.invalidate(CacheNamespace.TRIP, trip_id)
        await self.invalidate_for_users(CacheNamespace.USER_TRIPS, user_ids)
        await self.invalidate_for_users(CacheNamespace.USER_SEARCH, user_ids)
        logger.debug(
            f"Invalidated trip {trip_id} for {len(user_ids)} users",
            extra={"trip_id": trip_id, "user_count": len(user_ids)},
        )
