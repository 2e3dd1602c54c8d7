"""
Tests for the Authorization Cache: single-flight, TTL, cooldown, request
ordering, optimistic writes, persistence and notification.
"""
import asyncio

import pytest

from apps.core.exceptions import AuthExpired, NetworkError
from apps.rbac.authorization_cache import AuthorizationCache
from apps.rbac.permissions import PermissionCode as P
from apps.rbac.snapshots import AuthorizationSnapshot, SnapshotStore


class StubLoader:
    """Loader returning ``codes``; optionally gated or failing."""

    def __init__(self, clock, codes=()):
        self.clock = clock
        self.codes = set(codes)
        self.calls = 0
        self.error = None
        self.gate = None

    async def __call__(self, actor_id, tenant_id):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return AuthorizationSnapshot.resolved(actor_id, tenant_id, self.codes, self.clock())


class ControlledLoader:
    """Each call blocks until released individually."""

    def __init__(self, clock):
        self.clock = clock
        self.calls = []

    async def __call__(self, actor_id, tenant_id):
        call = {'release': asyncio.Event(), 'codes': set()}
        self.calls.append(call)
        await call['release'].wait()
        return AuthorizationSnapshot.resolved(actor_id, tenant_id, call['codes'], self.clock())

    def release(self, index, codes):
        self.calls[index]['codes'] = set(codes)
        self.calls[index]['release'].set()


async def settle():
    """Let scheduled tasks run up to their next suspension point."""
    for _ in range(5):
        await asyncio.sleep(0)


def make_cache(loader, clock, **kwargs):
    kwargs.setdefault('ttl', 300)
    kwargs.setdefault('refetch_cooldown', 5)
    return AuthorizationCache(loader, clock=clock, **kwargs)


class TestSingleFlight:
    """Concurrent requests for one key share one fetch."""

    @pytest.mark.asyncio
    async def test_concurrent_peeks_issue_one_fetch(self, clock):
        loader = StubLoader(clock, {P.MANAGE_APPOINTMENTS})
        loader.gate = asyncio.Event()
        cache = make_cache(loader, clock)

        results = [cache.peek('emp-1', 'salon-1') for _ in range(25)]
        await asyncio.sleep(0)
        loader.gate.set()
        await cache.drain()

        assert results == [None] * 25
        assert loader.calls == 1
        assert cache.current('emp-1', 'salon-1').granted_permission_codes == {P.MANAGE_APPOINTMENTS}

    @pytest.mark.asyncio
    async def test_concurrent_gets_share_the_result(self, clock):
        loader = StubLoader(clock, {P.PROCESS_PAYMENTS})
        loader.gate = asyncio.Event()
        cache = make_cache(loader, clock)

        pending = [asyncio.ensure_future(cache.get('emp-1', 'salon-1')) for _ in range(10)]
        await asyncio.sleep(0)
        loader.gate.set()
        snapshots = await asyncio.gather(*pending)

        assert loader.calls == 1
        assert len({id(snapshot) for snapshot in snapshots}) == 1

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, clock):
        loader = StubLoader(clock)
        cache = make_cache(loader, clock)

        cache.peek('emp-1', 'salon-1')
        cache.peek('emp-1', 'salon-2')
        await cache.drain()

        assert loader.calls == 2


class TestStaleness:
    """TTL and refetch cooldown."""

    @pytest.mark.asyncio
    async def test_ttl_boundary(self, clock):
        loader = StubLoader(clock, {P.MANAGE_SERVICES})
        cache = make_cache(loader, clock)

        assert cache.peek('emp-1', 'salon-1') is None
        await cache.drain()
        cached = cache.current('emp-1', 'salon-1')
        assert loader.calls == 1

        clock.advance(4 * 60 + 59)
        assert cache.peek('emp-1', 'salon-1') is cached
        await cache.drain()
        assert loader.calls == 1

        clock.advance(2)
        assert cache.peek('emp-1', 'salon-1') is cached
        assert cache.is_fetching('emp-1', 'salon-1')
        assert cache.peek('emp-1', 'salon-1') is cached
        await cache.drain()
        assert loader.calls == 2
        assert cache.current('emp-1', 'salon-1').fetched_at == clock()

    @pytest.mark.asyncio
    async def test_cooldown_suppresses_refetch_storm(self, clock):
        loader = StubLoader(clock)
        cache = make_cache(loader, clock, ttl=1, refetch_cooldown=5)

        await cache.get('emp-1', 'salon-1')
        clock.advance(2)
        for _ in range(10):
            cache.peek('emp-1', 'salon-1')
        await cache.drain()

        assert loader.calls == 1
        assert cache.stats['cooldown_skips'] == 10

        clock.advance(3)
        cache.peek('emp-1', 'salon-1')
        await cache.drain()
        assert loader.calls == 2

    @pytest.mark.asyncio
    async def test_get_serves_stale_snapshot_during_cooldown(self, clock):
        loader = StubLoader(clock)
        cache = make_cache(loader, clock, ttl=1, refetch_cooldown=5)

        first = await cache.get('emp-1', 'salon-1')
        clock.advance(2)

        assert await cache.get('emp-1', 'salon-1') is first
        assert loader.calls == 1

    @pytest.mark.asyncio
    async def test_failed_fetch_degrades_and_retries_after_cooldown(self, clock):
        loader = StubLoader(clock, {P.MANAGE_SERVICES})
        loader.error = NetworkError('store down')
        cache = make_cache(loader, clock)

        snapshot = await cache.get('emp-1', 'salon-1')
        assert snapshot.degraded
        assert snapshot.granted_permission_codes == frozenset()

        clock.advance(3)
        cache.peek('emp-1', 'salon-1')
        await cache.drain()
        assert loader.calls == 1

        loader.error = None
        clock.advance(2)
        cache.peek('emp-1', 'salon-1')
        await cache.drain()
        assert loader.calls == 2
        assert cache.current('emp-1', 'salon-1').granted_permission_codes == {P.MANAGE_SERVICES}


class TestRequestOrdering:
    """Responses are applied in request order, not completion order."""

    @pytest.mark.asyncio
    async def test_superseded_response_is_discarded(self, clock):
        loader = ControlledLoader(clock)
        cache = make_cache(loader, clock)

        older = asyncio.ensure_future(cache.refresh('emp-1', 'salon-1'))
        await settle()
        newer = asyncio.ensure_future(cache.refresh('emp-1', 'salon-1', supersede=True))
        await settle()
        assert len(loader.calls) == 2

        loader.release(1, {P.PROCESS_PAYMENTS})
        newest = await newer
        loader.release(0, {P.MANAGE_SERVICES})
        from_older = await older

        current = cache.current('emp-1', 'salon-1')
        assert current.granted_permission_codes == {P.PROCESS_PAYMENTS}
        assert from_older is current
        assert newest is current
        assert cache.stats['discarded'] == 1

    @pytest.mark.asyncio
    async def test_optimistic_write_supersedes_in_flight_fetch(self, clock):
        loader = StubLoader(clock, {P.MANAGE_SERVICES})
        cache = make_cache(loader, clock)
        await cache.get('emp-1', 'salon-1')

        loader.gate = asyncio.Event()
        cache.invalidate('emp-1', 'salon-1')
        await asyncio.sleep(0)
        cache.apply_optimistic('emp-1', 'salon-1', granted=[P.PROCESS_PAYMENTS])
        loader.gate.set()
        await cache.drain()

        assert cache.current('emp-1', 'salon-1').granted_permission_codes == {
            P.MANAGE_SERVICES, P.PROCESS_PAYMENTS,
        }
        assert cache.stats['discarded'] == 1

    @pytest.mark.asyncio
    async def test_invalidate_keeps_serving_until_new_snapshot_lands(self, clock):
        loader = StubLoader(clock, {P.MANAGE_SERVICES})
        cache = make_cache(loader, clock)
        first = await cache.get('emp-1', 'salon-1')

        loader.codes = {P.MANAGE_PRODUCTS}
        cache.invalidate('emp-1', 'salon-1')
        assert cache.current('emp-1', 'salon-1') is first

        await cache.drain()
        assert cache.current('emp-1', 'salon-1').granted_permission_codes == {P.MANAGE_PRODUCTS}
        assert cache.current('emp-1', 'salon-1').version > first.version


class TestOptimisticWrites:
    """Test apply_optimistic and revert."""

    @pytest.mark.asyncio
    async def test_apply_and_revert(self, clock):
        cache = make_cache(StubLoader(clock, {P.MANAGE_SERVICES}), clock)
        await cache.get('emp-1', 'salon-1')

        previous = cache.apply_optimistic('emp-1', 'salon-1', revoked=[P.MANAGE_SERVICES])
        assert cache.current('emp-1', 'salon-1').granted_permission_codes == frozenset()

        cache.revert(previous)
        assert cache.current('emp-1', 'salon-1').granted_permission_codes == {P.MANAGE_SERVICES}

    def test_unresolved_key_is_left_alone(self, clock):
        cache = make_cache(StubLoader(clock), clock)
        assert cache.apply_optimistic('emp-1', 'salon-1', granted=[P.MANAGE_SERVICES]) is None
        assert cache.current('emp-1', 'salon-1') is None


class TestAuthExpired:
    """Expired credentials suspend the cache instead of denying."""

    @pytest.mark.asyncio
    async def test_expiry_is_reported_once_and_suspends_fetching(self, clock):
        expired = []
        loader = StubLoader(clock)
        loader.error = AuthExpired('token expired')
        cache = make_cache(loader, clock, on_auth_expired=expired.append)

        with pytest.raises(AuthExpired):
            await cache.refresh('emp-1', 'salon-1')
        with pytest.raises(AuthExpired):
            await cache.refresh('emp-1', 'salon-2')
        cache.peek('emp-1', 'salon-3')
        await cache.drain()

        assert len(expired) == 1
        assert cache.suspended
        assert loader.calls == 1
        assert cache.current('emp-1', 'salon-1') is None

    @pytest.mark.asyncio
    async def test_resume_allows_fetches_again(self, clock):
        loader = StubLoader(clock)
        loader.error = AuthExpired('token expired')
        cache = make_cache(loader, clock)
        with pytest.raises(AuthExpired):
            await cache.refresh('emp-1', 'salon-1')

        loader.error = None
        cache.resume()
        snapshot = await cache.refresh('emp-1', 'salon-1')

        assert snapshot.is_member


class TestPersistence:
    """Snapshots are persisted, restored and purged through the store."""

    @pytest.mark.asyncio
    async def test_resolved_snapshots_are_persisted(self, clock):
        store = SnapshotStore()
        cache = make_cache(StubLoader(clock, {P.MANAGE_SERVICES}), clock, store=store)

        await cache.get('emp-1', 'salon-1')

        persisted = await store.load('emp-1', 'salon-1')
        assert persisted.granted_permission_codes == {P.MANAGE_SERVICES}

    @pytest.mark.asyncio
    async def test_degraded_snapshots_are_not_persisted(self, clock):
        store = SnapshotStore()
        loader = StubLoader(clock)
        loader.error = NetworkError('store down')
        cache = make_cache(loader, clock, store=store)

        await cache.get('emp-1', 'salon-1')

        assert await store.load('emp-1', 'salon-1') is None

    @pytest.mark.asyncio
    async def test_restore_serves_last_known_good(self, clock):
        store = SnapshotStore()
        await store.save(AuthorizationSnapshot.resolved('emp-1', 'salon-1', {P.PROCESS_PAYMENTS}, clock()))
        loader = StubLoader(clock)
        cache = make_cache(loader, clock, store=store)

        restored = await cache.restore('emp-1')

        assert len(restored) == 1
        assert cache.current('emp-1', 'salon-1').granted_permission_codes == {P.PROCESS_PAYMENTS}
        assert loader.calls == 0

    @pytest.mark.asyncio
    async def test_restore_does_not_override_resolved_keys(self, clock):
        store = SnapshotStore()
        cache = make_cache(StubLoader(clock, {P.MANAGE_SERVICES}), clock, store=store)
        await cache.get('emp-1', 'salon-1')
        await store.save(AuthorizationSnapshot.resolved('emp-1', 'salon-1', {P.VOID_TRANSACTIONS}, clock()))

        assert await cache.restore('emp-1') == []
        assert cache.current('emp-1', 'salon-1').granted_permission_codes == {P.MANAGE_SERVICES}

    @pytest.mark.asyncio
    async def test_purge_drops_memory_and_store(self, clock):
        store = SnapshotStore()
        loader = StubLoader(clock)
        cache = make_cache(loader, clock, store=store)
        await cache.get('emp-1', 'salon-1')
        await cache.get('emp-2', 'salon-1')

        loader.gate = asyncio.Event()
        cache.invalidate('emp-1', 'salon-1')
        await cache.purge('emp-1')
        loader.gate.set()
        await cache.drain()

        assert cache.current('emp-1', 'salon-1') is None
        assert cache.current('emp-2', 'salon-1') is not None
        assert await store.load_all('emp-1') == []


class TestSubscribe:
    """Change notification."""

    @pytest.mark.asyncio
    async def test_listener_sees_changes_until_unsubscribed(self, clock):
        cache = make_cache(StubLoader(clock), clock)
        seen = []
        unsubscribe = cache.subscribe(lambda key, snapshot: seen.append((key, snapshot)))

        await cache.get('emp-1', 'salon-1')
        await cache.purge('emp-1')
        unsubscribe()
        await cache.get('emp-1', 'salon-1')

        assert [key for key, _ in seen] == [('emp-1', 'salon-1'), ('emp-1', 'salon-1')]
        assert seen[0][1] is not None
        assert seen[1][1] is None

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_others(self, clock):
        cache = make_cache(StubLoader(clock), clock)
        seen = []

        def broken(key, snapshot):
            raise RuntimeError('listener bug')

        cache.subscribe(broken)
        cache.subscribe(lambda key, snapshot: seen.append(key))
        await cache.get('emp-1', 'salon-1')

        assert seen == [('emp-1', 'salon-1')]
