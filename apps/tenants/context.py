"""
Tenant Context Resolver.

Determines which tenant is active for an actor with several memberships
and loads grant snapshots for each of them through the Authorization
Cache. Per-tenant failures degrade that tenant to zero permissions; they
never fail the whole resolution.
"""
import asyncio
import logging
from typing import Callable, List, Optional, Sequence

from django.conf import settings
from django.utils import timezone

from apps.core.exceptions import AuthExpired, AuthorizationError, NotAMember
from apps.core.logging import SecurityLogger
from apps.core.retry import RetryStrategy
from apps.rbac.snapshots import AuthorizationSnapshot
from apps.rbac.types import effective_codes
from apps.tenants.types import TenantContext, TenantMembership

logger = logging.getLogger(__name__)


def select_active_tenant(contexts: Sequence[TenantContext],
                         previous_tenant_id: Optional[str] = None) -> Optional[TenantContext]:
    """
    Pick the active tenant.

    Precedence:
        1. the previously active tenant, if it is still among ``contexts``
        2. the tenant with the most effective grants (first one on ties)
        3. the first tenant
    """
    if not contexts:
        return None
    if previous_tenant_id is not None:
        for context in contexts:
            if context.tenant_id == str(previous_tenant_id):
                return context
    best = contexts[0]
    for context in contexts[1:]:
        if context.permission_count > best.permission_count:
            best = context
    return best


class TenantContextResolver:
    """
    Resolves memberships and the active tenant for one actor.

    The resolver never writes snapshots itself: ``load_snapshot`` is the
    cache's loader, and fan-out goes through ``cache.refresh``.
    """

    def __init__(self, actor_id: str, grant_store, *, fetch_timeout: Optional[float] = None,
                 retry_strategy: Optional[RetryStrategy] = None,
                 clock: Optional[Callable] = None):
        """
        Args:
            actor_id: The authenticated actor
            grant_store: GrantStore implementation
            fetch_timeout: Bound in seconds on each tenant's grant fetch,
                retries included
            retry_strategy: Backoff policy for NetworkError
            clock: Callable returning an aware datetime
        """
        self.actor_id = str(actor_id)
        self.grant_store = grant_store
        self.fetch_timeout = fetch_timeout if fetch_timeout is not None else getattr(
            settings, 'AUTHZ_FETCH_TIMEOUT', 5
        )
        self.retry_strategy = retry_strategy or RetryStrategy.from_settings()
        self._clock = clock or timezone.now
        self.cache = None
        self._memberships: Optional[List[TenantMembership]] = None
        self._membership_task: Optional[asyncio.Task] = None
        self._active_tenant_id: Optional[str] = None

    # Memberships

    @property
    def memberships(self) -> List[TenantMembership]:
        return list(self._memberships or [])

    def active_memberships(self) -> List[TenantMembership]:
        return [m for m in self.memberships if m.is_active]

    def membership_for(self, tenant_id: str) -> Optional[TenantMembership]:
        for membership in self.memberships:
            if membership.tenant_id == str(tenant_id):
                return membership
        return None

    async def load_memberships(self, force: bool = False) -> List[TenantMembership]:
        """
        Fetch the actor's memberships, sharing one request between
        concurrent callers.

        On transient failure the previously known list is kept.

        Raises:
            AuthExpired: If the credentials are no longer valid
        """
        if self._memberships is not None and not force:
            return self.memberships
        if self._membership_task is None or self._membership_task.done():
            self._membership_task = asyncio.get_running_loop().create_task(self._fetch_memberships())
        return await asyncio.shield(self._membership_task)

    async def _fetch_memberships(self) -> List[TenantMembership]:
        try:
            memberships = await self.retry_strategy.run(
                lambda: self.grant_store.fetch_memberships(self.actor_id),
                description='membership fetch',
            )
        except AuthExpired:
            raise
        except AuthorizationError as e:
            logger.warning(
                f"Membership fetch failed, keeping {len(self.memberships)} known membership(s): {e.message}",
                extra={'actor_id': self.actor_id}
            )
            if self._memberships is None:
                self._memberships = []
            return self.memberships
        self._memberships = [m for m in memberships if m.actor_id == self.actor_id]
        logger.debug(
            f"Loaded {len(self._memberships)} membership(s)",
            extra={'actor_id': self.actor_id}
        )
        return self.memberships

    # Snapshot loading (cache loader)

    async def load_snapshot(self, actor_id: str, tenant_id: str) -> AuthorizationSnapshot:
        """
        Resolve the grant snapshot for one tenant.

        Timeouts and transient failures give a zero-permission snapshot,
        a missing membership gives a non-member snapshot.

        Raises:
            AuthExpired: If the credentials are no longer valid
        """
        if str(actor_id) == self.actor_id:
            if self._memberships is None:
                await self.load_memberships()
            membership = self.membership_for(tenant_id)
            if membership is None or not membership.is_active:
                return AuthorizationSnapshot.not_member(actor_id, tenant_id, self._clock())

        try:
            grants = await asyncio.wait_for(
                self.retry_strategy.run(
                    lambda: self.grant_store.fetch_grants(str(tenant_id), str(actor_id)),
                    description=f'grant fetch for tenant {tenant_id}',
                ),
                timeout=self.fetch_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Grant fetch timed out after {self.fetch_timeout}s, tenant counted with zero permissions",
                extra={'actor_id': str(actor_id), 'tenant_id': str(tenant_id)}
            )
            return AuthorizationSnapshot.zero_permissions(actor_id, tenant_id, self._clock())
        except NotAMember:
            return AuthorizationSnapshot.not_member(actor_id, tenant_id, self._clock())
        except AuthExpired:
            raise
        except AuthorizationError as e:
            logger.warning(
                f"Grant fetch failed, tenant counted with zero permissions: {e.message}",
                extra={'actor_id': str(actor_id), 'tenant_id': str(tenant_id)}
            )
            return AuthorizationSnapshot.zero_permissions(actor_id, tenant_id, self._clock())

        codes = effective_codes(grants, actor_id, tenant_id)
        return AuthorizationSnapshot.resolved(actor_id, tenant_id, codes, self._clock())

    # Active tenant

    def _context_for(self, membership: TenantMembership) -> TenantContext:
        snapshot = self.cache.current(self.actor_id, membership.tenant_id) if self.cache else None
        return TenantContext(
            tenant_id=membership.tenant_id,
            tenant_name=membership.tenant_name,
            local_membership_id=membership.local_membership_id,
            permission_count=snapshot.permission_count if snapshot else 0,
            is_loading=snapshot is None,
        )

    @property
    def active_tenant_id(self) -> Optional[str]:
        return self._active_tenant_id

    def get_active_tenant(self) -> Optional[TenantContext]:
        if self._active_tenant_id is None:
            return None
        membership = self.membership_for(self._active_tenant_id)
        if membership is None:
            return None
        return self._context_for(membership)

    def available_tenants(self) -> List[TenantContext]:
        return [self._context_for(m) for m in self.active_memberships()]

    def remember_active_tenant(self, tenant_id: Optional[str]) -> None:
        """Seed precedence rule 1 from persisted state before ``resolve``."""
        self._active_tenant_id = str(tenant_id) if tenant_id is not None else None

    async def resolve(self) -> Optional[TenantContext]:
        """
        Reload memberships, fetch every tenant's grants concurrently and
        select the active tenant.

        Raises:
            AuthExpired: If the credentials are no longer valid
        """
        memberships = [m for m in await self.load_memberships(force=True) if m.is_active]
        if not memberships:
            self._active_tenant_id = None
            logger.info("Actor has no active tenant memberships", extra={'actor_id': self.actor_id})
            return None

        snapshots = await asyncio.gather(*(
            self.cache.refresh(self.actor_id, m.tenant_id) for m in memberships
        ))
        contexts = [
            TenantContext(
                tenant_id=m.tenant_id,
                tenant_name=m.tenant_name,
                local_membership_id=m.local_membership_id,
                permission_count=snapshot.permission_count,
            )
            for m, snapshot in zip(memberships, snapshots)
        ]
        selected = select_active_tenant(contexts, self._active_tenant_id)
        self._active_tenant_id = selected.tenant_id
        logger.info(
            f"Active tenant resolved among {len(contexts)} membership(s)",
            extra={'actor_id': self.actor_id, 'tenant_id': selected.tenant_id}
        )
        return selected

    async def set_active_tenant(self, tenant_id: str) -> TenantContext:
        """
        Switch the active tenant after re-resolving its grants.

        The previous active tenant is kept on any failure.

        Raises:
            NotAMember: If the actor has no active membership in the tenant
            AuthExpired: If the credentials are no longer valid
        """
        tenant_id = str(tenant_id)
        membership = self.membership_for(tenant_id)
        if membership is None:
            await self.load_memberships(force=True)
            membership = self.membership_for(tenant_id)
        if membership is None or not membership.is_active:
            SecurityLogger.log_tenant_switch_refused(self.actor_id, tenant_id)
            raise NotAMember(
                f"Actor is not a member of tenant {tenant_id}",
                details={'actor_id': self.actor_id, 'tenant_id': tenant_id}
            )

        snapshot = await self.cache.refresh(self.actor_id, tenant_id, supersede=True)
        if not snapshot.is_member:
            SecurityLogger.log_tenant_switch_refused(self.actor_id, tenant_id)
            raise NotAMember(
                f"Grant Store reports no membership in tenant {tenant_id}",
                details={'actor_id': self.actor_id, 'tenant_id': tenant_id}
            )

        self._active_tenant_id = tenant_id
        logger.info("Active tenant switched", extra={'actor_id': self.actor_id, 'tenant_id': tenant_id})
        return self._context_for(membership)
