"""
In-process Grant Store.

Implements the same record semantics as the remote store so the engine
can run locally and in tests without a network:

- grants are never deleted, revocation stamps ``revoked_at``/``revoked_by``
- at most one effective grant per (actor, tenant, code)
- granting after a revoke creates a new record
"""
import asyncio
import logging
import uuid
from collections import Counter
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from django.utils import timezone

from apps.core.exceptions import NotAMember
from apps.integrations.services.grant_store_service import GrantStore
from apps.rbac.permissions import PermissionCode, parse_permission_code
from apps.rbac.types import Grant
from apps.tenants.types import TenantMembership

logger = logging.getLogger(__name__)


class InMemoryGrantStore(GrantStore):

    def __init__(self, latency: float = 0.0, clock: Optional[Callable] = None):
        self.latency = latency
        self._clock = clock or timezone.now
        self._grants: List[Grant] = []
        self._memberships: Dict[Tuple[str, str], TenantMembership] = {}
        self.call_counts = Counter()

    def add_membership(self, actor_id: str, tenant_id: str, tenant_name: str = '',
                       local_membership_id: Optional[str] = None, is_active: bool = True) -> TenantMembership:
        membership = TenantMembership(
            actor_id=str(actor_id),
            tenant_id=str(tenant_id),
            tenant_name=tenant_name,
            local_membership_id=local_membership_id or f"emp-{actor_id}-{tenant_id}",
            is_active=is_active,
        )
        self._memberships[(membership.actor_id, membership.tenant_id)] = membership
        return membership

    def remove_membership(self, actor_id: str, tenant_id: str) -> None:
        self._memberships.pop((str(actor_id), str(tenant_id)), None)

    def records(self, tenant_id: str = None, actor_id: str = None) -> List[Grant]:
        """Every stored record, optionally filtered. Includes revoked ones."""
        return [
            grant for grant in self._grants
            if (tenant_id is None or grant.tenant_id == str(tenant_id))
            and (actor_id is None or grant.actor_id == str(actor_id))
        ]

    def _require_membership(self, tenant_id: str, actor_id: str) -> TenantMembership:
        membership = self._memberships.get((str(actor_id), str(tenant_id)))
        if membership is None or not membership.is_active:
            raise NotAMember(
                f"Actor {actor_id} is not a member of tenant {tenant_id}",
                details={'actor_id': str(actor_id), 'tenant_id': str(tenant_id)}
            )
        return membership

    async def _suspend(self):
        await asyncio.sleep(self.latency)

    async def fetch_grants(self, tenant_id: str, actor_id: str) -> List[Grant]:
        self.call_counts['fetch_grants'] += 1
        await self._suspend()
        self._require_membership(tenant_id, actor_id)
        return self.records(tenant_id=tenant_id, actor_id=actor_id)

    async def grant(self, tenant_id: str, actor_id: str, permission_codes: Iterable[PermissionCode],
                    notes: Optional[str] = None, granted_by: Optional[str] = None) -> List[Grant]:
        self.call_counts['grant'] += 1
        await self._suspend()
        self._require_membership(tenant_id, actor_id)
        now = self._clock()
        created = []
        for code in map(parse_permission_code, permission_codes):
            existing = self.records(tenant_id=tenant_id, actor_id=actor_id)
            if any(g.permission_code == code and g.is_effective for g in existing):
                continue
            # Close out inactive records that were never stamped
            for index, grant in enumerate(self._grants):
                if (grant.tenant_id == str(tenant_id) and grant.actor_id == str(actor_id)
                        and grant.permission_code == code and not grant.is_active
                        and grant.revoked_at is None):
                    self._grants[index] = replace(grant, revoked_at=now, revoked_by=granted_by)
            record = Grant(
                id=str(uuid.uuid4()),
                tenant_id=str(tenant_id),
                actor_id=str(actor_id),
                permission_code=code,
                granted_by=granted_by,
                granted_at=now,
                is_active=True,
                notes=notes,
            )
            self._grants.append(record)
            created.append(record)
        logger.debug(f"Granted {len(created)} permission(s) in tenant {tenant_id}")
        return created

    async def revoke(self, tenant_id: str, actor_id: str, permission_codes: Iterable[PermissionCode],
                     reason: Optional[str] = None, revoked_by: Optional[str] = None) -> None:
        self.call_counts['revoke'] += 1
        await self._suspend()
        self._require_membership(tenant_id, actor_id)
        now = self._clock()
        codes = {parse_permission_code(code) for code in permission_codes}
        for index, grant in enumerate(self._grants):
            if (grant.tenant_id == str(tenant_id) and grant.actor_id == str(actor_id)
                    and grant.permission_code in codes and grant.is_effective):
                self._grants[index] = replace(
                    grant,
                    is_active=False,
                    revoked_at=now,
                    revoked_by=revoked_by,
                    notes=reason or grant.notes,
                )

    async def fetch_memberships(self, actor_id: str) -> List[TenantMembership]:
        self.call_counts['fetch_memberships'] += 1
        await self._suspend()
        return [m for (member_id, _), m in self._memberships.items() if member_id == str(actor_id)]
