"""
Pytest configuration and fixtures.
"""
from datetime import datetime, timedelta, timezone as dt_timezone

import pytest
from django.conf import settings


def pytest_configure(config):
    """Keep persisted snapshots in memory during tests."""
    settings.CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'test-default',
        },
        'authz': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'test-authz',
            'TIMEOUT': None,
        },
    }
    settings.AUTHZ_SNAPSHOT_CACHE_ALIAS = 'authz'
    settings.AUTHZ_OWNER_LEVEL_NAVIGATION = {'ENABLED': False}


class FakeClock:
    """Aware clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=dt_timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)
        return self.now


async def _no_sleep(delay):
    return None


@pytest.fixture(autouse=True)
def clear_authz_cache():
    """Isolate persisted snapshots between tests."""
    from django.core.cache import caches
    caches['authz'].clear()
    yield
    caches['authz'].clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def retry_strategy():
    """Retry policy that does not wait between attempts."""
    from apps.core.retry import RetryStrategy
    return RetryStrategy(max_attempts=3, base_delay=0.01, jitter=False, sleep=_no_sleep)


@pytest.fixture
def grant_store(clock):
    from apps.integrations.services.memory_grant_store import InMemoryGrantStore
    return InMemoryGrantStore(clock=clock)


@pytest.fixture
def snapshot_store():
    from apps.rbac.snapshots import SnapshotStore
    return SnapshotStore()


@pytest.fixture
def employee():
    from apps.rbac.types import Actor
    return Actor('emp-1', 'salon_employee')


@pytest.fixture
def owner():
    """Owner of salon-1."""
    from apps.rbac.types import Actor
    return Actor('owner-1', 'salon_owner', owned_tenant_ids={'salon-1'})


@pytest.fixture
def super_admin():
    from apps.rbac.types import Actor
    return Actor('admin-1', 'super_admin')


@pytest.fixture
def make_service(grant_store, snapshot_store, clock, retry_strategy):
    """Build an AuthorizationService wired to the in-memory store."""
    from apps.rbac.services import AuthorizationService

    def _make(actor, **kwargs):
        kwargs.setdefault('snapshot_store', snapshot_store)
        kwargs.setdefault('clock', clock)
        kwargs.setdefault('retry_strategy', retry_strategy)
        kwargs.setdefault('ttl', 300)
        kwargs.setdefault('refetch_cooldown', 5)
        kwargs.setdefault('fetch_timeout', 1)
        return AuthorizationService(actor, kwargs.pop('grant_store', grant_store), **kwargs)

    return _make
