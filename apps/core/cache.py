"""
Caching utilities for persisted authorization state.

Provides centralized key templates, TTLs and an async wrapper around a
Django cache alias with consistent logging.
"""
import logging
from typing import Any, Iterable, Optional

from django.conf import settings
from django.core.cache import caches

logger = logging.getLogger(__name__)


class CacheKeys:
    """Centralized cache key definitions with consistent naming."""

    # Persisted snapshot per (actor, tenant), no expiry
    AUTHZ_SNAPSHOT = "authz:snapshot:{actor_id}:{tenant_id}"

    # Tenants holding a persisted snapshot for an actor
    AUTHZ_ACTOR_INDEX = "authz:actor:{actor_id}:tenants"

    # Last active tenant for an actor
    AUTHZ_ACTIVE_TENANT = "authz:actor:{actor_id}:active_tenant"

    @classmethod
    def format(cls, key_template: str, **kwargs) -> str:
        """Format a cache key with provided parameters."""
        return key_template.format(**kwargs)


class CacheTTL:
    """Cache TTL (Time To Live) constants in seconds."""

    AUTHZ_SNAPSHOT = 300  # 5 minutes freshness bound for resolved grants
    AUTHZ_REFETCH_COOLDOWN = 5
    PERSISTED = None  # durable until logout


def snapshot_cache_alias() -> str:
    return getattr(settings, 'AUTHZ_SNAPSHOT_CACHE_ALIAS', 'authz')


class CacheService:
    """
    Async access to one Django cache alias.

    Backend errors propagate: persisted state is the last-known-good copy
    and a silently failed write would resurrect revoked permissions later.
    """

    def __init__(self, alias: Optional[str] = None):
        self.alias = alias or snapshot_cache_alias()

    @property
    def backend(self):
        return caches[self.alias]

    async def get(self, key: str, default: Any = None) -> Any:
        value = await self.backend.aget(key, default)
        if value is not None:
            logger.debug(f"Cache HIT: {key}")
        else:
            logger.debug(f"Cache MISS: {key}")
        return value

    async def get_many(self, keys: Iterable[str]) -> dict:
        keys = list(keys)
        if not keys:
            return {}
        return await self.backend.aget_many(keys)

    async def set(self, key: str, value: Any, ttl: Optional[int] = CacheTTL.PERSISTED) -> None:
        await self.backend.aset(key, value, timeout=ttl)
        logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")

    async def delete(self, key: str) -> None:
        await self.backend.adelete(key)
        logger.debug(f"Cache DELETE: {key}")

    async def delete_many(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if keys:
            await self.backend.adelete_many(keys)
            logger.debug(f"Cache DELETE_MANY: {len(keys)} keys")
