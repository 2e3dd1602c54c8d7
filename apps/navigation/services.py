"""
Navigation Filter.

Turns a role's navigation table and evaluator decisions into the visible
entries, in declared order, capped for bounded surfaces.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence

from django.conf import settings

from apps.navigation.entries import (
    NAVIGATION_PRIORITY, NAVIGATION_TABLES, SALON_OWNER, NavigationEntry, table_for_role,
)
from apps.rbac.evaluator import PermissionEvaluator
from apps.rbac.permissions import PermissionCode, parse_permission_code
from apps.rbac.roles import Role, parse_role
from apps.rbac.snapshots import AuthorizationSnapshot
from apps.rbac.types import Actor

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 5


def filter_entries(entries: Sequence[NavigationEntry],
                   is_allowed: Callable[[NavigationEntry], bool],
                   max_entries: Optional[int] = None,
                   priority: Sequence[str] = ()) -> List[NavigationEntry]:
    """
    Visible subset of ``entries``, in declared order.

    When more than ``max_entries`` are visible, the ones ranked lowest in
    ``priority`` are dropped. Ids missing from ``priority`` rank below all
    listed ids, in declared order.
    """
    visible = [entry for entry in entries if entry.is_unconditional or is_allowed(entry)]
    if max_entries is None or len(visible) <= max_entries:
        return visible

    rank = {entry_id: index for index, entry_id in enumerate(priority)}
    ranked = sorted(
        enumerate(visible),
        key=lambda item: (rank.get(item[1].id, len(rank)), item[0])
    )
    kept = {index for index, _ in ranked[:max(max_entries, 0)]}
    return [entry for index, entry in enumerate(visible) if index in kept]


@dataclass(frozen=True)
class OwnerLevelNavigationPolicy:
    """
    Offers the owner table to employees with broad grants.

    Disabled unless configured. The owner table is still filtered by the
    employee's own permissions, so the policy changes the menu layout and
    never what the employee may do.
    """
    enabled: bool = False
    min_permissions: int = 5
    key_permissions: FrozenSet[PermissionCode] = field(default_factory=frozenset)

    @classmethod
    def from_settings(cls) -> 'OwnerLevelNavigationPolicy':
        config = getattr(settings, 'AUTHZ_OWNER_LEVEL_NAVIGATION', None) or {}
        return cls(
            enabled=bool(config.get('ENABLED', False)),
            min_permissions=int(config.get('MIN_PERMISSIONS', 5)),
            key_permissions=frozenset(
                parse_permission_code(code) for code in config.get('KEY_PERMISSIONS', ())
            ),
        )

    def applies(self, snapshot: Optional[AuthorizationSnapshot]) -> bool:
        if not self.enabled or snapshot is None or not snapshot.is_member:
            return False
        granted = snapshot.granted_permission_codes
        return len(granted) >= self.min_permissions or bool(granted & self.key_permissions)


class NavigationFilter:
    """
    Visible navigation for an actor in a tenant.

    Results are memoized on (table, tenant, snapshot), so they are stable
    for an unchanged snapshot and recomputed as soon as the snapshot
    changes.
    """

    MEMO_SIZE = 64

    def __init__(self, evaluator: PermissionEvaluator, max_entries: Optional[int] = None,
                 owner_level_policy: Optional[OwnerLevelNavigationPolicy] = None):
        self.evaluator = evaluator
        self.max_entries = max_entries if max_entries is not None else getattr(
            settings, 'AUTHZ_NAVIGATION_MAX_ENTRIES', DEFAULT_MAX_ENTRIES
        )
        self.owner_level_policy = owner_level_policy or OwnerLevelNavigationPolicy.from_settings()
        self._memo: Dict[tuple, List[NavigationEntry]] = {}

    def clear(self) -> None:
        self._memo.clear()

    def _table_name(self, actor: Actor, role: Role, snapshot: Optional[AuthorizationSnapshot]) -> str:
        name = table_for_role(role)
        if role == Role.SALON_EMPLOYEE and self.owner_level_policy.applies(snapshot):
            logger.debug("Owner-level navigation policy applied", extra={'actor_id': actor.id})
            return SALON_OWNER
        return name

    def visible_entries(self, actor: Actor, tenant_id: Optional[str], role=None) -> List[NavigationEntry]:
        """
        Args:
            actor: The evaluated actor
            tenant_id: Active tenant id, or None outside any tenant
            role: Table to render (defaults to the actor's role)
        """
        role = parse_role(role) if role is not None else actor.role
        cache = self.evaluator.cache
        snapshot = None
        if tenant_id is not None and cache is not None and not actor.bypasses_grants(tenant_id):
            # peek also schedules a refresh when the snapshot is stale
            snapshot = cache.peek(actor.id, tenant_id)

        table = self._table_name(actor, role, snapshot)
        memo_key = (table, actor, tenant_id, snapshot, self.max_entries)
        cached = self._memo.get(memo_key)
        if cached is not None:
            return list(cached)

        def is_allowed(entry: NavigationEntry) -> bool:
            return self.evaluator.decide(actor, tenant_id, entry.descriptor, snapshot).allowed

        entries = filter_entries(
            NAVIGATION_TABLES[table],
            is_allowed,
            max_entries=self.max_entries,
            priority=NAVIGATION_PRIORITY[table],
        )
        if len(self._memo) >= self.MEMO_SIZE:
            self._memo.clear()
        self._memo[memo_key] = entries
        return list(entries)


def entry_ids(entries: Iterable[NavigationEntry]) -> List[str]:
    return [entry.id for entry in entries]
