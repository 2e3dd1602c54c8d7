"""
Resolved grant snapshots and their durable, per-actor persistence.
"""
import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Iterable, List, Optional

from django.utils.dateparse import parse_datetime

from apps.core.cache import CacheKeys, CacheService
from apps.rbac.permissions import DEFAULT_CAPABILITY_SET, PermissionCode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizationSnapshot:
    """
    Grant state for one (actor, tenant) key at ``fetched_at``.

    ``granted_permission_codes`` holds explicit effective grants only.
    Default capabilities are added for members when reading
    ``active_permission_codes``. A ``degraded`` snapshot stands in for a
    failed fetch and is never persisted.
    """
    actor_id: str
    tenant_id: str
    granted_permission_codes: FrozenSet[PermissionCode]
    fetched_at: datetime
    is_member: bool = True
    degraded: bool = False
    version: int = 0

    @property
    def key(self):
        return (self.actor_id, self.tenant_id)

    @property
    def active_permission_codes(self) -> FrozenSet[PermissionCode]:
        if not self.is_member:
            return frozenset()
        return self.granted_permission_codes | DEFAULT_CAPABILITY_SET

    @property
    def permission_count(self) -> int:
        return len(self.granted_permission_codes)

    def age(self, now: datetime) -> timedelta:
        return now - self.fetched_at

    def with_changes(self, added: Iterable[PermissionCode] = (), removed: Iterable[PermissionCode] = (),
                     version: Optional[int] = None) -> 'AuthorizationSnapshot':
        codes = (self.granted_permission_codes | frozenset(added)) - frozenset(removed)
        return replace(
            self,
            granted_permission_codes=codes,
            version=self.version if version is None else version,
        )

    @classmethod
    def resolved(cls, actor_id, tenant_id, codes, fetched_at: datetime) -> 'AuthorizationSnapshot':
        return cls(
            actor_id=str(actor_id),
            tenant_id=str(tenant_id),
            granted_permission_codes=frozenset(codes) - DEFAULT_CAPABILITY_SET,
            fetched_at=fetched_at,
        )

    @classmethod
    def not_member(cls, actor_id, tenant_id, fetched_at: datetime) -> 'AuthorizationSnapshot':
        return cls(str(actor_id), str(tenant_id), frozenset(), fetched_at, is_member=False)

    @classmethod
    def zero_permissions(cls, actor_id, tenant_id, fetched_at: datetime) -> 'AuthorizationSnapshot':
        """Stand-in after a failed or timed-out fetch. Membership is assumed."""
        return cls(str(actor_id), str(tenant_id), frozenset(), fetched_at, degraded=True)

    def to_payload(self) -> dict:
        return {
            'actor_id': self.actor_id,
            'tenant_id': self.tenant_id,
            'granted_permission_codes': sorted(code.value for code in self.granted_permission_codes),
            'fetched_at': self.fetched_at.isoformat(),
            'is_member': self.is_member,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> 'AuthorizationSnapshot':
        fetched_at = parse_datetime(payload['fetched_at'])
        if fetched_at is None:
            raise ValueError(f"Invalid fetched_at: {payload['fetched_at']!r}")
        return cls(
            actor_id=str(payload['actor_id']),
            tenant_id=str(payload['tenant_id']),
            granted_permission_codes=frozenset(
                PermissionCode(code) for code in payload['granted_permission_codes']
            ),
            fetched_at=fetched_at,
            is_member=bool(payload.get('is_member', True)),
        )


class SnapshotStore:
    """
    Last-known-good snapshots, namespaced by actor id.

    Each snapshot lives under its own key. A per-actor index lists the
    tenants so that ``load_all`` and ``purge`` need no key scans.

    Every ``purge`` bumps the actor's generation. A write that started
    under an older generation is undone instead of outliving the purge.
    """

    def __init__(self, cache_service: Optional[CacheService] = None):
        self.cache = cache_service or CacheService()
        # Serializes index read-modify-write within one event loop
        self._index_lock = asyncio.Lock()
        self._generations: Dict[str, int] = {}

    def generation(self, actor_id) -> int:
        return self._generations.get(str(actor_id), 0)

    async def _discard_if_purged(self, actor_id, generation: int, key: str, value) -> bool:
        """Delete ``key`` if ``actor_id`` was purged since ``generation``. Call under ``_index_lock``."""
        if self.generation(actor_id) == generation:
            return False
        # A newer session may have rewritten the key already
        if await self.cache.get(key) == value:
            await self.cache.delete(key)
        logger.debug("Dropped a write that raced a purge", extra={'actor_id': str(actor_id)})
        return True

    @staticmethod
    def _snapshot_key(actor_id, tenant_id) -> str:
        return CacheKeys.format(CacheKeys.AUTHZ_SNAPSHOT, actor_id=actor_id, tenant_id=tenant_id)

    @staticmethod
    def _index_key(actor_id) -> str:
        return CacheKeys.format(CacheKeys.AUTHZ_ACTOR_INDEX, actor_id=actor_id)

    @staticmethod
    def _active_tenant_key(actor_id) -> str:
        return CacheKeys.format(CacheKeys.AUTHZ_ACTIVE_TENANT, actor_id=actor_id)

    async def save(self, snapshot: AuthorizationSnapshot, generation: Optional[int] = None) -> bool:
        """
        Persist ``snapshot``. Returns False when the actor was purged after
        ``generation`` (default: the current one) and nothing was kept.
        """
        if snapshot.degraded:
            raise ValueError("Degraded snapshots are not persisted")
        if generation is None:
            generation = self.generation(snapshot.actor_id)
        if self.generation(snapshot.actor_id) != generation:
            return False
        key = self._snapshot_key(snapshot.actor_id, snapshot.tenant_id)
        payload = snapshot.to_payload()
        await self.cache.set(key, payload)
        async with self._index_lock:
            if await self._discard_if_purged(snapshot.actor_id, generation, key, payload):
                return False
            tenant_ids = await self.cache.get(self._index_key(snapshot.actor_id)) or []
            if snapshot.tenant_id not in tenant_ids:
                await self.cache.set(self._index_key(snapshot.actor_id), tenant_ids + [snapshot.tenant_id])
        return True

    async def tenant_ids(self, actor_id) -> List[str]:
        return list(await self.cache.get(self._index_key(actor_id)) or [])

    async def load(self, actor_id, tenant_id) -> Optional[AuthorizationSnapshot]:
        payload = await self.cache.get(self._snapshot_key(actor_id, tenant_id))
        return self._parse(payload)

    async def load_all(self, actor_id) -> List[AuthorizationSnapshot]:
        tenant_ids = await self.tenant_ids(actor_id)
        keys = [self._snapshot_key(actor_id, tenant_id) for tenant_id in tenant_ids]
        payloads = await self.cache.get_many(keys)
        snapshots = []
        for key in keys:
            snapshot = self._parse(payloads.get(key))
            if snapshot is not None:
                snapshots.append(snapshot)
        return snapshots

    async def save_active_tenant(self, actor_id, tenant_id: Optional[str],
                                 generation: Optional[int] = None) -> bool:
        """Remember the active tenant. Skipped once ``actor_id`` was purged after ``generation``."""
        if generation is None:
            generation = self.generation(actor_id)
        if self.generation(actor_id) != generation:
            return False
        key = self._active_tenant_key(actor_id)
        if tenant_id is None:
            await self.cache.delete(key)
            return True
        await self.cache.set(key, str(tenant_id))
        async with self._index_lock:
            return not await self._discard_if_purged(actor_id, generation, key, str(tenant_id))

    async def load_active_tenant(self, actor_id) -> Optional[str]:
        return await self.cache.get(self._active_tenant_key(actor_id))

    async def purge(self, actor_id) -> int:
        """Remove every persisted key for ``actor_id``. Returns the snapshot count removed."""
        actor_id = str(actor_id)
        self._generations[actor_id] = self.generation(actor_id) + 1
        async with self._index_lock:
            tenant_ids = await self.tenant_ids(actor_id)
            keys = [self._snapshot_key(actor_id, tenant_id) for tenant_id in tenant_ids]
            await self.cache.delete_many(keys + [self._index_key(actor_id), self._active_tenant_key(actor_id)])
        logger.info(
            f"Purged {len(tenant_ids)} persisted snapshot(s)",
            extra={'actor_id': actor_id}
        )
        return len(tenant_ids)

    @staticmethod
    def _parse(payload) -> Optional[AuthorizationSnapshot]:
        if payload is None:
            return None
        try:
            return AuthorizationSnapshot.from_payload(payload)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable persisted snapshot: {e}")
            return None
