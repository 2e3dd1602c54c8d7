"""
Value types shared by the authorization engine.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional, Tuple

from apps.rbac.permissions import PermissionCode, parse_permission_code
from apps.rbac.roles import Capability, Role, is_elevated_admin, parse_role


@dataclass(frozen=True)
class Actor:
    """
    The authenticated subject.

    ``owned_tenant_ids`` lists the tenants the actor owns. A salon owner
    only bypasses grant checks inside those tenants.
    """
    id: str
    role: Role
    owned_tenant_ids: FrozenSet[str] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, 'id', str(self.id))
        object.__setattr__(self, 'role', parse_role(self.role))
        object.__setattr__(self, 'owned_tenant_ids', frozenset(str(t) for t in self.owned_tenant_ids))

    def owns(self, tenant_id: Optional[str]) -> bool:
        return (
            self.role == Role.SALON_OWNER
            and tenant_id is not None
            and str(tenant_id) in self.owned_tenant_ids
        )

    def bypasses_grants(self, tenant_id: Optional[str]) -> bool:
        """Owner-of-tenant and elevated admins skip every grant check."""
        return is_elevated_admin(self.role) or self.owns(tenant_id)

    def can_manage_grants(self, tenant_id: str) -> bool:
        return self.bypasses_grants(tenant_id)


@dataclass(frozen=True)
class Grant:
    """A per-tenant permission record. Revocation is a state transition."""
    id: str
    tenant_id: str
    actor_id: str
    permission_code: PermissionCode
    granted_by: Optional[str] = None
    granted_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None
    is_active: bool = True
    notes: Optional[str] = None

    @property
    def is_effective(self) -> bool:
        return self.is_active and self.revoked_at is None


def effective_codes(grants, actor_id: str, tenant_id: str) -> FrozenSet[PermissionCode]:
    """Codes of the effective grants that belong to (actor_id, tenant_id)."""
    return frozenset(
        grant.permission_code for grant in grants
        if grant.is_effective
        and grant.actor_id == str(actor_id)
        and grant.tenant_id == str(tenant_id)
    )


class RequirementMode(str, Enum):
    ANY = 'any'
    ALL = 'all'


@dataclass(frozen=True)
class CapabilityDescriptor:
    """
    What a consumer asks about.

    ``permissions`` empty and ``capability`` None means public. A role
    capability is checked against the Role Registry first; permissions
    are tested against the cached grant snapshot per ``mode``.
    """
    permissions: Tuple[PermissionCode, ...] = ()
    mode: RequirementMode = RequirementMode.ALL
    capability: Optional[Capability] = None

    def __post_init__(self):
        object.__setattr__(
            self, 'permissions', tuple(parse_permission_code(code) for code in self.permissions)
        )
        object.__setattr__(self, 'mode', RequirementMode(self.mode))

    @property
    def is_public(self) -> bool:
        return not self.permissions and self.capability is None

    @property
    def requires_permissions(self) -> bool:
        return bool(self.permissions)

    def is_satisfied_by(self, codes: FrozenSet[PermissionCode]) -> bool:
        if not self.permissions:
            return True
        if self.mode == RequirementMode.ANY:
            return any(code in codes for code in self.permissions)
        return all(code in codes for code in self.permissions)

    @classmethod
    def public(cls) -> 'CapabilityDescriptor':
        return cls()

    @classmethod
    def requires(cls, code) -> 'CapabilityDescriptor':
        return cls(permissions=(code,))

    @classmethod
    def any_of(cls, *codes) -> 'CapabilityDescriptor':
        return cls(permissions=codes, mode=RequirementMode.ANY)

    @classmethod
    def all_of(cls, *codes) -> 'CapabilityDescriptor':
        return cls(permissions=codes, mode=RequirementMode.ALL)

    @classmethod
    def for_capability(cls, capability: Capability, *codes, mode=RequirementMode.ANY) -> 'CapabilityDescriptor':
        return cls(permissions=codes, mode=mode, capability=capability)


class DecisionStatus(str, Enum):
    ALLOW = 'allow'
    DENY = 'deny'
    PENDING = 'pending'


class DenyReason:
    MISSING_PERMISSION = 'missing_permission'
    NOT_A_MEMBER = 'not_a_member'
    NO_TENANT_CONTEXT = 'no_tenant_context'
    ROLE_NOT_PERMITTED = 'role_not_permitted'
    EVALUATION_ERROR = 'evaluation_error'


@dataclass(frozen=True)
class Decision:
    """
    Outcome of an evaluation.

    PENDING means no snapshot has been resolved yet for the key. It is
    not a denial and must not be rendered as one.
    """
    status: DecisionStatus
    reason: Optional[str] = None
    missing: Tuple[PermissionCode, ...] = field(default=())

    @property
    def allowed(self) -> bool:
        return self.status == DecisionStatus.ALLOW

    @property
    def pending(self) -> bool:
        return self.status == DecisionStatus.PENDING

    def __bool__(self):
        return self.allowed

    @classmethod
    def allow(cls) -> 'Decision':
        return ALLOW

    @classmethod
    def deny(cls, reason: str, missing=()) -> 'Decision':
        return cls(DecisionStatus.DENY, reason, tuple(missing))

    @classmethod
    def pending_decision(cls) -> 'Decision':
        return PENDING


ALLOW = Decision(DecisionStatus.ALLOW)
PENDING = Decision(DecisionStatus.PENDING)
