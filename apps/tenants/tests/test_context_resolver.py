"""
Tests for the Tenant Context Resolver.
"""
import asyncio

import pytest

from apps.core.exceptions import AuthExpired, NetworkError, NotAMember
from apps.integrations.services.memory_grant_store import InMemoryGrantStore
from apps.rbac.authorization_cache import AuthorizationCache
from apps.rbac.permissions import PermissionCode as P
from apps.tenants.context import TenantContextResolver, select_active_tenant
from apps.tenants.types import TenantContext


class FlakyGrantStore(InMemoryGrantStore):
    """In-memory store whose grant fetch fails or hangs for chosen tenants."""

    def __init__(self, *args, failing=(), hanging=(), expired=False, **kwargs):
        super().__init__(*args, **kwargs)
        self.failing = set(failing)
        self.hanging = set(hanging)
        self.expired = expired

    async def fetch_grants(self, tenant_id, actor_id):
        if self.expired:
            raise AuthExpired('token expired')
        if tenant_id in self.failing:
            self.call_counts['fetch_grants'] += 1
            raise NetworkError(f'{tenant_id} unreachable')
        if tenant_id in self.hanging:
            await asyncio.Event().wait()
        return await super().fetch_grants(tenant_id, actor_id)

    async def fetch_memberships(self, actor_id):
        if self.expired:
            raise AuthExpired('token expired')
        return await super().fetch_memberships(actor_id)


def build_resolver(grant_store, clock, retry_strategy, fetch_timeout=1):
    resolver = TenantContextResolver(
        'emp-1', grant_store, fetch_timeout=fetch_timeout, retry_strategy=retry_strategy, clock=clock
    )
    resolver.cache = AuthorizationCache(resolver.load_snapshot, ttl=300, refetch_cooldown=5, clock=clock)
    return resolver


def context(tenant_id, count):
    return TenantContext(tenant_id=tenant_id, tenant_name=tenant_id.title(), local_membership_id=None,
                         permission_count=count)


class TestSelectActiveTenant:
    """Precedence: previous tenant, then most grants, then first."""

    def test_previous_tenant_wins(self):
        contexts = [context('salon-1', 5), context('salon-2', 0)]
        assert select_active_tenant(contexts, 'salon-2').tenant_id == 'salon-2'

    def test_most_grants_when_previous_is_gone(self):
        contexts = [context('salon-1', 1), context('salon-2', 3)]
        assert select_active_tenant(contexts, 'salon-9').tenant_id == 'salon-2'

    def test_first_on_ties(self):
        contexts = [context('salon-1', 0), context('salon-2', 0)]
        assert select_active_tenant(contexts).tenant_id == 'salon-1'

    def test_no_memberships(self):
        assert select_active_tenant([], 'salon-1') is None


@pytest.fixture
def two_salons(grant_store):
    grant_store.add_membership('emp-1', 'salon-1', 'Salon One')
    grant_store.add_membership('emp-1', 'salon-2', 'Salon Two')
    return grant_store


class TestResolve:
    """Fan-out across memberships and active tenant selection."""

    @pytest.mark.asyncio
    async def test_selects_tenant_with_most_grants(self, two_salons, clock, retry_strategy):
        await two_salons.grant('salon-2', 'emp-1', [P.MANAGE_SERVICES, P.PROCESS_PAYMENTS])
        resolver = build_resolver(two_salons, clock, retry_strategy)

        active = await resolver.resolve()

        assert active.tenant_id == 'salon-2'
        assert active.permission_count == 2
        assert resolver.active_tenant_id == 'salon-2'
        assert two_salons.call_counts['fetch_grants'] == 2

    @pytest.mark.asyncio
    async def test_previous_active_tenant_is_kept(self, two_salons, clock, retry_strategy):
        await two_salons.grant('salon-2', 'emp-1', [P.MANAGE_SERVICES])
        resolver = build_resolver(two_salons, clock, retry_strategy)
        resolver.remember_active_tenant('salon-1')

        active = await resolver.resolve()

        assert active.tenant_id == 'salon-1'

    @pytest.mark.asyncio
    async def test_inactive_memberships_are_ignored(self, grant_store, clock, retry_strategy):
        grant_store.add_membership('emp-1', 'salon-1', is_active=False)
        grant_store.add_membership('emp-1', 'salon-2')
        resolver = build_resolver(grant_store, clock, retry_strategy)

        active = await resolver.resolve()

        assert active.tenant_id == 'salon-2'
        assert [t.tenant_id for t in resolver.available_tenants()] == ['salon-2']

    @pytest.mark.asyncio
    async def test_no_memberships(self, grant_store, clock, retry_strategy):
        resolver = build_resolver(grant_store, clock, retry_strategy)
        assert await resolver.resolve() is None
        assert resolver.get_active_tenant() is None

    @pytest.mark.asyncio
    async def test_failed_tenant_counts_as_zero_permissions(self, clock, retry_strategy):
        store = FlakyGrantStore(clock=clock, failing={'salon-1'})
        store.add_membership('emp-1', 'salon-1')
        store.add_membership('emp-1', 'salon-2')
        await store.grant('salon-1', 'emp-1', [P.MANAGE_SERVICES, P.PROCESS_PAYMENTS])
        await store.grant('salon-2', 'emp-1', [P.MANAGE_PRODUCTS])
        resolver = build_resolver(store, clock, retry_strategy)

        active = await resolver.resolve()

        assert active.tenant_id == 'salon-2'
        failed = resolver.cache.current('emp-1', 'salon-1')
        assert failed.degraded
        assert failed.permission_count == 0
        # 1 fetch for salon-2, 3 attempts for salon-1
        assert store.call_counts['fetch_grants'] == 4

    @pytest.mark.asyncio
    async def test_timed_out_tenant_counts_as_zero_permissions(self, clock, retry_strategy):
        store = FlakyGrantStore(clock=clock, hanging={'salon-1'})
        store.add_membership('emp-1', 'salon-1')
        store.add_membership('emp-1', 'salon-2')
        await store.grant('salon-1', 'emp-1', [P.MANAGE_SERVICES, P.MANAGE_PRODUCTS])
        await store.grant('salon-2', 'emp-1', [P.MANAGE_SERVICES])
        resolver = build_resolver(store, clock, retry_strategy, fetch_timeout=0.05)

        active = await resolver.resolve()

        assert active.tenant_id == 'salon-2'
        assert resolver.cache.current('emp-1', 'salon-1').permission_count == 0
        assert resolver.cache.current('emp-1', 'salon-1').degraded
        assert not resolver.cache.current('emp-1', 'salon-2').degraded

    @pytest.mark.asyncio
    async def test_expired_credentials_propagate(self, clock, retry_strategy):
        store = FlakyGrantStore(clock=clock, expired=True)
        store.add_membership('emp-1', 'salon-1')
        resolver = build_resolver(store, clock, retry_strategy)

        with pytest.raises(AuthExpired):
            await resolver.resolve()


class TestSetActiveTenant:
    """Switching tenants is all-or-nothing."""

    @pytest.mark.asyncio
    async def test_switch_to_member_tenant(self, two_salons, clock, retry_strategy):
        await two_salons.grant('salon-2', 'emp-1', [P.MANAGE_SERVICES])
        resolver = build_resolver(two_salons, clock, retry_strategy)
        resolver.remember_active_tenant('salon-1')
        await resolver.resolve()

        switched = await resolver.set_active_tenant('salon-2')

        assert switched.tenant_id == 'salon-2'
        assert switched.tenant_name == 'Salon Two'
        assert switched.permission_count == 1
        assert resolver.active_tenant_id == 'salon-2'

    @pytest.mark.asyncio
    async def test_non_member_keeps_previous_tenant(self, two_salons, clock, retry_strategy):
        resolver = build_resolver(two_salons, clock, retry_strategy)
        await resolver.resolve()
        previous = resolver.active_tenant_id

        with pytest.raises(NotAMember):
            await resolver.set_active_tenant('salon-9')

        assert resolver.active_tenant_id == previous
        assert resolver.cache.current('emp-1', 'salon-9') is None

    @pytest.mark.asyncio
    async def test_membership_revoked_remotely(self, two_salons, clock, retry_strategy):
        resolver = build_resolver(two_salons, clock, retry_strategy)
        resolver.remember_active_tenant('salon-1')
        await resolver.resolve()
        two_salons.remove_membership('emp-1', 'salon-2')

        with pytest.raises(NotAMember):
            await resolver.set_active_tenant('salon-2')

        assert resolver.active_tenant_id == 'salon-1'
        assert not resolver.cache.current('emp-1', 'salon-2').is_member

    @pytest.mark.asyncio
    async def test_newly_added_membership_is_discovered(self, two_salons, clock, retry_strategy):
        resolver = build_resolver(two_salons, clock, retry_strategy)
        await resolver.resolve()
        two_salons.add_membership('emp-1', 'salon-3', 'Salon Three')

        switched = await resolver.set_active_tenant('salon-3')

        assert switched.tenant_id == 'salon-3'


class TestMemberships:
    """Membership loading."""

    @pytest.mark.asyncio
    async def test_concurrent_loads_share_one_request(self, two_salons, clock, retry_strategy):
        resolver = build_resolver(two_salons, clock, retry_strategy)

        results = await asyncio.gather(*(resolver.load_memberships(force=True) for _ in range(5)))

        assert two_salons.call_counts['fetch_memberships'] == 1
        assert all(len(memberships) == 2 for memberships in results)

    @pytest.mark.asyncio
    async def test_failed_reload_keeps_known_memberships(self, two_salons, clock, retry_strategy):
        resolver = build_resolver(two_salons, clock, retry_strategy)
        await resolver.load_memberships()

        async def unreachable(actor_id):
            raise NetworkError('down')

        two_salons.fetch_memberships = unreachable
        memberships = await resolver.load_memberships(force=True)

        assert [m.tenant_id for m in memberships] == ['salon-1', 'salon-2']
