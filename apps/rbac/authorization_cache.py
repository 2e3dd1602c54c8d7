"""
Authorization Cache: resolved grant snapshots per (actor, tenant).

The cache is the only writer of snapshot state. It owns:

- single-flight: concurrent misses or stale reads for one key share one fetch
- a refetch cooldown that rate limits background refreshes per key
- per-key request sequence numbers, so a response is applied only if no
  newer request (fetch, optimistic write, purge) was issued after it
- last-known-good persistence through a SnapshotStore
- change notification to subscribers

All scheduling happens on the running asyncio loop. ``peek`` is
synchronous and never waits; the ``async`` methods suspend.
"""
import asyncio
import itertools
import logging
from collections import Counter
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Iterable, List, NamedTuple, Optional, Set, Tuple

from django.conf import settings
from django.utils import timezone

from apps.core.cache import CacheTTL
from apps.core.exceptions import AuthExpired, AuthorizationError
from apps.rbac.permissions import PermissionCode
from apps.rbac.snapshots import AuthorizationSnapshot, SnapshotStore

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]
Loader = Callable[[str, str], Awaitable[AuthorizationSnapshot]]
Listener = Callable[[CacheKey, Optional[AuthorizationSnapshot]], None]


class _Flight(NamedTuple):
    seq: int
    task: asyncio.Task


class AuthorizationCache:
    """
    Keyed, TTL-bound, single-flight snapshot cache.

    Args:
        loader: ``async (actor_id, tenant_id) -> AuthorizationSnapshot``
        store: Durable snapshot persistence (optional)
        ttl: Seconds before a snapshot is stale
        refetch_cooldown: Minimum seconds between fetches issued for one key
        clock: Callable returning an aware datetime
        on_auth_expired: Called once with the AuthExpired error
    """

    def __init__(self, loader: Loader, store: Optional[SnapshotStore] = None,
                 ttl: Optional[float] = None, refetch_cooldown: Optional[float] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 on_auth_expired: Optional[Callable[[AuthExpired], None]] = None):
        if ttl is None:
            ttl = getattr(settings, 'AUTHZ_CACHE_TTL', CacheTTL.AUTHZ_SNAPSHOT)
        if refetch_cooldown is None:
            refetch_cooldown = getattr(settings, 'AUTHZ_REFETCH_COOLDOWN', CacheTTL.AUTHZ_REFETCH_COOLDOWN)
        self._loader = loader
        self.store = store
        self.ttl = timedelta(seconds=ttl)
        self.refetch_cooldown = timedelta(seconds=refetch_cooldown)
        self._clock = clock or timezone.now
        self._on_auth_expired = on_auth_expired

        self._entries: Dict[CacheKey, AuthorizationSnapshot] = {}
        self._inflight: Dict[CacheKey, _Flight] = {}
        self._issued: Dict[CacheKey, int] = {}
        self._last_issued_at: Dict[CacheKey, datetime] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: Dict[int, Listener] = {}
        self._listener_ids = itertools.count(1)
        self._suspended = False
        self.stats = Counter()

    @staticmethod
    def key(actor_id, tenant_id) -> CacheKey:
        return (str(actor_id), str(tenant_id))

    # Reads

    def current(self, actor_id, tenant_id) -> Optional[AuthorizationSnapshot]:
        """Best known snapshot, without scheduling anything."""
        return self._entries.get(self.key(actor_id, tenant_id))

    def peek(self, actor_id, tenant_id) -> Optional[AuthorizationSnapshot]:
        """
        Best known snapshot. Schedules a background refresh if it is
        missing or stale; never waits for it.
        """
        key = self.key(actor_id, tenant_id)
        snapshot = self._entries.get(key)
        if snapshot is None or self.is_stale(snapshot):
            self._schedule_refresh(key)
        return snapshot

    def is_stale(self, snapshot: AuthorizationSnapshot, now: Optional[datetime] = None) -> bool:
        now = now or self._clock()
        # A stand-in for a failed fetch is retried once the cooldown passes
        limit = self.refetch_cooldown if snapshot.degraded else self.ttl
        return snapshot.age(now) >= limit

    def is_loading(self, actor_id, tenant_id) -> bool:
        return self.key(actor_id, tenant_id) not in self._entries

    def is_fetching(self, actor_id, tenant_id) -> bool:
        return self.key(actor_id, tenant_id) in self._inflight

    @property
    def suspended(self) -> bool:
        return self._suspended

    async def get(self, actor_id, tenant_id) -> AuthorizationSnapshot:
        """Fresh snapshot, fetching (or joining the in-flight fetch) if needed."""
        key = self.key(actor_id, tenant_id)
        snapshot = self._entries.get(key)
        if snapshot is not None and not self.is_stale(snapshot):
            return snapshot
        if (snapshot is not None and key not in self._inflight
                and self._cooling_down(key, self._clock())):
            return snapshot
        return await self.refresh(actor_id, tenant_id)

    async def refresh(self, actor_id, tenant_id, supersede: bool = False) -> AuthorizationSnapshot:
        """
        Fetch the key now.

        Joins an in-flight fetch unless ``supersede`` is set, in which case
        a new request is issued and the older response will be discarded.

        Raises:
            AuthExpired: If the credentials are no longer valid
        """
        if self._suspended:
            raise AuthExpired("Authorization session expired")
        key = self.key(actor_id, tenant_id)
        flight = self._inflight.get(key)
        if flight is None or supersede:
            flight = self._start_fetch(key)
        return await self._await_latest(key, flight)

    async def _await_latest(self, key: CacheKey, flight: _Flight) -> AuthorizationSnapshot:
        while True:
            result = await asyncio.shield(flight.task)
            current = self._inflight.get(key)
            if current is None or current.seq <= flight.seq:
                return self._entries.get(key, result)
            flight = current

    # Fetching

    def _next_seq(self, key: CacheKey) -> int:
        seq = self._issued.get(key, 0) + 1
        self._issued[key] = seq
        return seq

    def _cooling_down(self, key: CacheKey, now: datetime) -> bool:
        last = self._last_issued_at.get(key)
        return last is not None and now - last < self.refetch_cooldown

    def _schedule_refresh(self, key: CacheKey) -> None:
        if self._suspended or key in self._inflight:
            return
        if self._cooling_down(key, self._clock()):
            self.stats['cooldown_skips'] += 1
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop, background refresh skipped for {key}")
            return
        self._start_fetch(key)

    def _start_fetch(self, key: CacheKey) -> _Flight:
        seq = self._next_seq(key)
        self._last_issued_at[key] = self._clock()
        task = asyncio.get_running_loop().create_task(self._fetch(key, seq))
        flight = _Flight(seq, task)
        self._inflight[key] = flight
        self._tasks.add(task)
        task.add_done_callback(lambda done, key=key, flight=flight: self._on_flight_done(key, flight))
        self.stats['fetches'] += 1
        return flight

    def _on_flight_done(self, key: CacheKey, flight: _Flight) -> None:
        self._tasks.discard(flight.task)
        if self._inflight.get(key) is flight:
            del self._inflight[key]
        if flight.task.cancelled():
            return
        error = flight.task.exception()
        if error is not None and not isinstance(error, AuthExpired):
            logger.error(
                f"Authorization fetch failed: {error}",
                exc_info=error,
                extra={'actor_id': key[0], 'tenant_id': key[1]}
            )

    async def _fetch(self, key: CacheKey, seq: int) -> AuthorizationSnapshot:
        actor_id, tenant_id = key
        generation = self.store.generation(actor_id) if self.store is not None else 0
        try:
            snapshot = await self._loader(actor_id, tenant_id)
        except AuthExpired as e:
            self.expire(e)
            raise
        except AuthorizationError as e:
            logger.warning(
                f"Authorization fetch degraded to zero permissions: {e.message}",
                extra={'actor_id': actor_id, 'tenant_id': tenant_id}
            )
            snapshot = AuthorizationSnapshot.zero_permissions(actor_id, tenant_id, self._clock())

        snapshot = replace(snapshot, version=seq)
        if seq != self._issued.get(key):
            self.stats['discarded'] += 1
            logger.debug(
                f"Discarding superseded response #{seq} (latest #{self._issued.get(key)})",
                extra={'actor_id': actor_id, 'tenant_id': tenant_id}
            )
            return snapshot

        self._entries[key] = snapshot
        self._notify(key, snapshot)
        if self.store is not None and not snapshot.degraded:
            try:
                await self.store.save(snapshot, generation=generation)
            except Exception:
                logger.exception(
                    "Failed to persist authorization snapshot",
                    extra={'actor_id': actor_id, 'tenant_id': tenant_id}
                )
        return snapshot

    def expire(self, error: AuthExpired) -> None:
        """Suspend fetching and report the expiry once."""
        if self._suspended:
            return
        self._suspended = True
        logger.warning(f"Credentials expired, authorization fetches suspended: {error.message}")
        if self._on_auth_expired is not None:
            self._on_auth_expired(error)

    def resume(self) -> None:
        """Allow fetches again after a new authentication."""
        self._suspended = False

    async def drain(self) -> None:
        """Wait until no fetch is outstanding."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # Mutations

    def invalidate(self, actor_id, tenant_id) -> None:
        """
        Supersede any in-flight fetch and refetch in the background.

        The current snapshot keeps being served until the new one lands.
        """
        key = self.key(actor_id, tenant_id)
        if self._suspended:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop, invalidation of {key} deferred to next read")
            self._last_issued_at.pop(key, None)
            snapshot = self._entries.get(key)
            if snapshot is not None:
                self._entries[key] = replace(snapshot, fetched_at=snapshot.fetched_at - self.ttl)
            return
        self._start_fetch(key)

    def apply_optimistic(self, actor_id, tenant_id, granted: Iterable[PermissionCode] = (),
                         revoked: Iterable[PermissionCode] = ()) -> Optional[AuthorizationSnapshot]:
        """
        Apply a grant/revoke locally ahead of the store's confirmation.

        Returns the snapshot that was replaced, for ``revert``. Keys that
        were never resolved are left alone.
        """
        key = self.key(actor_id, tenant_id)
        previous = self._entries.get(key)
        if previous is None:
            return None
        updated = previous.with_changes(granted, revoked, version=self._next_seq(key))
        self._entries[key] = updated
        self._notify(key, updated)
        return previous

    def revert(self, previous: AuthorizationSnapshot) -> None:
        """Put back a snapshot replaced by ``apply_optimistic``."""
        key = previous.key
        restored = replace(previous, version=self._next_seq(key))
        self._entries[key] = restored
        self._notify(key, restored)

    async def restore(self, actor_id) -> List[AuthorizationSnapshot]:
        """Load persisted snapshots for keys that have not been resolved yet."""
        if self.store is None:
            return []
        restored = []
        for snapshot in await self.store.load_all(actor_id):
            key = snapshot.key
            if key in self._entries:
                continue
            snapshot = replace(snapshot, version=self._issued.get(key, 0))
            self._entries[key] = snapshot
            restored.append(snapshot)
            self._notify(key, snapshot)
        logger.info(
            f"Restored {len(restored)} persisted snapshot(s)",
            extra={'actor_id': str(actor_id)}
        )
        return restored

    async def purge(self, actor_id) -> None:
        """Drop every key of ``actor_id`` in memory and in the store."""
        actor_id = str(actor_id)
        keys = {key for key in list(self._entries) + list(self._inflight) if key[0] == actor_id}
        for key in keys:
            # Pending responses for these keys are now stale
            self._next_seq(key)
            self._entries.pop(key, None)
            self._inflight.pop(key, None)
            self._last_issued_at.pop(key, None)
            self._notify(key, None)
        if self.store is not None:
            await self.store.purge(actor_id)

    # Notification

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Call ``listener(key, snapshot)`` on every change. ``snapshot`` is
        None when the key was purged. Returns an unsubscribe callable.
        """
        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = listener

        def unsubscribe():
            self._listeners.pop(listener_id, None)

        return unsubscribe

    def _notify(self, key: CacheKey, snapshot: Optional[AuthorizationSnapshot]) -> None:
        for listener in list(self._listeners.values()):
            try:
                listener(key, snapshot)
            except Exception:
                logger.exception(
                    "Authorization change listener failed",
                    extra={'actor_id': key[0], 'tenant_id': key[1]}
                )
