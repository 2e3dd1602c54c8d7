"""
Tenant value types used by the context resolver.
"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Tenant:
    id: str
    name: str = ''


@dataclass(frozen=True)
class TenantMembership:
    """An actor's membership in one tenant, as reported by the Grant Store."""
    actor_id: str
    tenant_id: str
    tenant_name: str = ''
    local_membership_id: Optional[str] = None
    is_active: bool = True

    @property
    def tenant(self) -> Tenant:
        return Tenant(id=self.tenant_id, name=self.tenant_name)


@dataclass(frozen=True)
class TenantContext:
    """
    The tenant an actor currently operates under.

    ``permission_count`` is the number of effective explicit grants in
    the latest snapshot (defaults excluded). ``is_loading`` is True until
    that snapshot has been resolved once.
    """
    tenant_id: str
    tenant_name: str
    local_membership_id: Optional[str]
    permission_count: int = 0
    is_loading: bool = False

    @property
    def tenant(self) -> Tenant:
        return Tenant(id=self.tenant_id, name=self.tenant_name)
