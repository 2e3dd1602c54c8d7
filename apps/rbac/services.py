"""
Authorization services.

Implements:
- AuthorizationService: the consumer facade over the Tenant Context
  Resolver, Authorization Cache, Permission Evaluator and Navigation Filter
  for one authenticated actor
"""
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Union

from apps.core.exceptions import AuthExpired, AuthorizationError, PermissionDeniedError
from apps.core.logging import SecurityLogger
from apps.core.retry import RetryStrategy
from apps.integrations.serializers import GrantRequestSerializer, RevokeRequestSerializer, validate_request
from apps.navigation.entries import NavigationEntry
from apps.navigation.services import NavigationFilter, OwnerLevelNavigationPolicy
from apps.rbac.authorization_cache import AuthorizationCache
from apps.rbac.evaluator import PermissionEvaluator
from apps.rbac.permissions import Permission, PermissionCategory, permissions_by_category
from apps.rbac.signals import authorization_session_expired, permissions_changed
from apps.rbac.snapshots import AuthorizationSnapshot, SnapshotStore
from apps.rbac.types import Actor, CapabilityDescriptor, Decision, DenyReason, Grant
from apps.tenants.context import TenantContextResolver
from apps.tenants.types import TenantContext

logger = logging.getLogger(__name__)

ChangeListener = Callable[[Optional[AuthorizationSnapshot]], None]


class AuthorizationService:
    """
    Authorization for one authenticated actor.

    ``evaluate`` and ``check`` are synchronous and never raise. Everything
    that talks to the Grant Store is ``async``.

    Usage:
        service = AuthorizationService(actor, create_grant_store_client(token),
                                       on_session_expired=sign_out)
        await service.start()
        if service.has_permission('MANAGE_APPOINTMENTS'):
            ...
    """

    def __init__(self, actor: Actor, grant_store, *,
                 snapshot_store: Optional[SnapshotStore] = None,
                 on_session_expired: Optional[Callable[[AuthExpired], None]] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 ttl: Optional[float] = None,
                 refetch_cooldown: Optional[float] = None,
                 fetch_timeout: Optional[float] = None,
                 retry_strategy: Optional[RetryStrategy] = None,
                 max_navigation_entries: Optional[int] = None,
                 owner_level_policy: Optional[OwnerLevelNavigationPolicy] = None):
        self.actor = actor
        self.grant_store = grant_store
        self.snapshot_store = snapshot_store or SnapshotStore()
        self._on_session_expired = on_session_expired

        self.resolver = TenantContextResolver(
            actor.id, grant_store,
            fetch_timeout=fetch_timeout,
            retry_strategy=retry_strategy,
            clock=clock,
        )
        self.cache = AuthorizationCache(
            self.resolver.load_snapshot,
            store=self.snapshot_store,
            ttl=ttl,
            refetch_cooldown=refetch_cooldown,
            clock=clock,
            on_auth_expired=self._handle_auth_expired,
        )
        self.resolver.cache = self.cache
        self.evaluator = PermissionEvaluator(self.cache)
        self.navigation = NavigationFilter(
            self.evaluator,
            max_entries=max_navigation_entries,
            owner_level_policy=owner_level_policy,
        )

        self._listeners: List[ChangeListener] = []
        self.cache.subscribe(self._on_cache_change)

    # Session lifecycle

    async def start(self) -> Optional[TenantContext]:
        """
        Serve persisted snapshots, then revalidate memberships and grants.

        Returns None without persisting anything if ``logout`` ran meanwhile.

        Raises:
            AuthExpired: If the credentials are no longer valid
        """
        generation = self.snapshot_store.generation(self.actor.id)
        self.cache.resume()
        await self.cache.restore(self.actor.id)
        self.resolver.remember_active_tenant(await self.snapshot_store.load_active_tenant(self.actor.id))
        self._notify_active()

        try:
            context = await self.resolver.resolve()
        except AuthExpired as e:
            self.cache.expire(e)
            raise

        saved = await self.snapshot_store.save_active_tenant(
            self.actor.id, context.tenant_id if context else None, generation=generation
        )
        if not saved:
            logger.info("Session start superseded by logout", extra={'actor_id': self.actor.id})
            # Fetches issued after the logout resolved under the new generation
            await self.cache.purge(self.actor.id)
            self.resolver.remember_active_tenant(None)
            return None
        self._notify_active()
        return context

    async def logout(self) -> None:
        """Drop every snapshot of the actor, in memory and persisted."""
        await self.cache.purge(self.actor.id)
        self.resolver.remember_active_tenant(None)
        self.navigation.clear()
        logger.info("Authorization state purged on logout", extra={'actor_id': self.actor.id})

    async def on_foreground(self) -> Optional[AuthorizationSnapshot]:
        """Revalidate the active tenant if its snapshot outlived the TTL."""
        tenant_id = self.resolver.active_tenant_id
        if tenant_id is None or self.cache.suspended:
            return None
        snapshot = self.cache.current(self.actor.id, tenant_id)
        if snapshot is not None and not self.cache.is_stale(snapshot):
            return snapshot
        return await self.cache.get(self.actor.id, tenant_id)

    def handle_remote_change(self, tenant_id) -> None:
        """The store reported that grants in ``tenant_id`` changed."""
        logger.debug("Remote grant change", extra={'actor_id': self.actor.id, 'tenant_id': str(tenant_id)})
        self.cache.invalidate(self.actor.id, tenant_id)

    async def drain(self) -> None:
        await self.cache.drain()

    def _handle_auth_expired(self, error: AuthExpired) -> None:
        authorization_session_expired.send(
            sender=self.__class__,
            actor_id=self.actor.id,
            reason=error.message,
        )
        if self._on_session_expired is not None:
            self._on_session_expired(error)

    # Tenant context

    def get_active_tenant(self) -> Optional[TenantContext]:
        return self.resolver.get_active_tenant()

    def available_tenants(self) -> List[TenantContext]:
        return self.resolver.available_tenants()

    async def set_active_tenant(self, tenant_id) -> TenantContext:
        """
        Switch the active tenant.

        Raises:
            NotAMember: The actor has no membership in ``tenant_id``; the
                previous active tenant is kept
            AuthExpired: If the credentials are no longer valid
        """
        generation = self.snapshot_store.generation(self.actor.id)
        try:
            context = await self.resolver.set_active_tenant(tenant_id)
        except AuthExpired as e:
            self.cache.expire(e)
            raise
        await self.snapshot_store.save_active_tenant(self.actor.id, context.tenant_id, generation=generation)
        self._notify_active()
        return context

    def is_loading(self) -> bool:
        """True while the active tenant's first fetch is outstanding."""
        tenant_id = self.resolver.active_tenant_id
        if tenant_id is None or self.actor.bypasses_grants(tenant_id):
            return False
        return self.cache.is_loading(self.actor.id, tenant_id)

    # Evaluation

    def check(self, descriptor: CapabilityDescriptor) -> Decision:
        return self.evaluator.evaluate(self.actor, self.resolver.active_tenant_id, descriptor)

    def evaluate(self, descriptor: CapabilityDescriptor) -> bool:
        return self.check(descriptor).allowed

    def _check_codes(self, factory, codes) -> Decision:
        try:
            descriptor = factory(*codes)
        except AuthorizationError as e:
            logger.warning(f"Unknown permission code in check: {e.message}", extra={'actor_id': self.actor.id})
            return Decision.deny(DenyReason.EVALUATION_ERROR)
        return self.check(descriptor)

    def has_permission(self, code) -> bool:
        return self._check_codes(CapabilityDescriptor.all_of, (code,)).allowed

    def has_any_permission(self, codes: Iterable) -> bool:
        return self._check_codes(CapabilityDescriptor.any_of, tuple(codes)).allowed

    def has_all_permissions(self, codes: Iterable) -> bool:
        return self._check_codes(CapabilityDescriptor.all_of, tuple(codes)).allowed

    def get_visible_navigation(self, role=None,
                               active_tenant: Union[TenantContext, str, None] = None) -> List[NavigationEntry]:
        """
        Visible navigation entries for ``role`` (default: the actor's role)
        in ``active_tenant`` (default: the current active tenant).
        """
        if isinstance(active_tenant, TenantContext):
            tenant_id = active_tenant.tenant_id
        elif active_tenant is not None:
            tenant_id = str(active_tenant)
        else:
            tenant_id = self.resolver.active_tenant_id
        return self.navigation.visible_entries(self.actor, tenant_id, role=role)

    @staticmethod
    def available_permissions() -> Dict[PermissionCategory, List[Permission]]:
        """Grantable permissions grouped by category."""
        return permissions_by_category()

    # Change notification

    def subscribe(self, on_change: ChangeListener) -> Callable[[], None]:
        """
        Call ``on_change(snapshot)`` whenever the active tenant's snapshot
        changes, the active tenant switches, or state is purged (snapshot
        None). Returns an unsubscribe callable.
        """
        self._listeners.append(on_change)

        def unsubscribe():
            if on_change in self._listeners:
                self._listeners.remove(on_change)

        return unsubscribe

    def _on_cache_change(self, key, snapshot: Optional[AuthorizationSnapshot]) -> None:
        actor_id, tenant_id = key
        if actor_id != self.actor.id:
            return
        if snapshot is None or tenant_id == self.resolver.active_tenant_id:
            self._emit(snapshot)

    def _notify_active(self) -> None:
        tenant_id = self.resolver.active_tenant_id
        if tenant_id is not None:
            self._emit(self.cache.current(self.actor.id, tenant_id))

    def _emit(self, snapshot: Optional[AuthorizationSnapshot]) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Authorization subscriber failed", extra={'actor_id': self.actor.id})

    # Grant mutations

    def _authorize_mutation(self, action: str, target_actor_id: str, tenant_id: str) -> None:
        if self.actor.can_manage_grants(tenant_id):
            return
        SecurityLogger.log_unauthorized_grant_attempt(
            performed_by=self.actor.id,
            role=self.actor.role.value,
            tenant_id=tenant_id,
            actor_id=target_actor_id,
        )
        raise PermissionDeniedError(
            f"Permission {action} refused: actor may not manage grants in tenant {tenant_id}",
            details={'performed_by': self.actor.id, 'tenant_id': tenant_id}
        )

    def _reconcile(self, target_actor_id: str, tenant_id: str) -> None:
        # Only keys this session holds or is fetching need reconciling
        if (self.cache.current(target_actor_id, tenant_id) is not None
                or self.cache.is_fetching(target_actor_id, tenant_id)):
            self.cache.invalidate(target_actor_id, tenant_id)

    async def _mutate(self, action: str, target_actor_id: str, tenant_id: str, codes, note: Optional[str],
                      call) -> List[Grant]:
        if action == 'granted':
            previous = self.cache.apply_optimistic(target_actor_id, tenant_id, granted=codes)
        else:
            previous = self.cache.apply_optimistic(target_actor_id, tenant_id, revoked=codes)

        try:
            result = await call()
        except AuthExpired as e:
            if previous is not None:
                self.cache.revert(previous)
            self.cache.expire(e)
            raise
        except AuthorizationError as e:
            logger.warning(
                f"Permissions {action} failed, local change reverted: {e.message}",
                extra={'actor_id': target_actor_id, 'tenant_id': tenant_id}
            )
            if previous is not None:
                self.cache.revert(previous)
            self._reconcile(target_actor_id, tenant_id)
            raise

        self._reconcile(target_actor_id, tenant_id)
        permissions_changed.send(
            sender=self.__class__,
            action=action,
            actor_id=target_actor_id,
            tenant_id=tenant_id,
            permission_codes=list(codes),
            performed_by=self.actor.id,
            note=note,
        )
        return result or []

    async def grant_permissions(self, target_actor_id, tenant_id, permission_codes: Iterable,
                                notes: Optional[str] = None) -> List[Grant]:
        """
        Grant permissions to an actor in a tenant.

        Codes the actor already holds are skipped by the store. The change
        is visible locally right away and reconciled with the store after.

        Raises:
            ValidationError: Empty list, unknown or default codes, notes too long
            PermissionDeniedError: The caller may not manage grants in the tenant
            NetworkError, GrantStoreError: The store call failed; the local
                change is reverted
        """
        target_actor_id, tenant_id = str(target_actor_id), str(tenant_id)
        payload = {'permissions': list(permission_codes)}
        if notes is not None:
            payload['notes'] = notes
        data = validate_request(GrantRequestSerializer, payload)
        self._authorize_mutation('grant', target_actor_id, tenant_id)

        codes = data['permissions']
        note = data.get('notes') or None
        return await self._mutate(
            'granted', target_actor_id, tenant_id, codes, note,
            lambda: self.grant_store.grant(
                tenant_id, target_actor_id, codes, notes=note, granted_by=self.actor.id
            ),
        )

    async def revoke_permissions(self, target_actor_id, tenant_id, permission_codes: Iterable,
                                 reason: Optional[str] = None) -> None:
        """
        Revoke permissions from an actor in a tenant. Records are soft
        revoked by the store.

        Raises:
            ValidationError: Empty list, unknown or default codes, reason too long
            PermissionDeniedError: The caller may not manage grants in the tenant
            NetworkError, GrantStoreError: The store call failed; the local
                change is reverted
        """
        target_actor_id, tenant_id = str(target_actor_id), str(tenant_id)
        payload = {'permissions': list(permission_codes)}
        if reason is not None:
            payload['reason'] = reason
        data = validate_request(RevokeRequestSerializer, payload)
        self._authorize_mutation('revoke', target_actor_id, tenant_id)

        codes = data['permissions']
        note = data.get('reason') or None
        await self._mutate(
            'revoked', target_actor_id, tenant_id, codes, note,
            lambda: self.grant_store.revoke(
                tenant_id, target_actor_id, codes, reason=note, revoked_by=self.actor.id
            ),
        )
