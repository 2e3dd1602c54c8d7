"""
Permission Evaluator.

Combines the Role Registry with cached grant snapshots to answer
allow/deny for a capability descriptor. Evaluation is synchronous: it
reads the best known snapshot and lets the cache refresh it in the
background. It never raises.
"""
import logging
from typing import Optional

from apps.rbac.authorization_cache import AuthorizationCache
from apps.rbac.roles import allowed_by_role
from apps.rbac.snapshots import AuthorizationSnapshot
from apps.rbac.types import Actor, CapabilityDescriptor, Decision, DenyReason

logger = logging.getLogger(__name__)


class PermissionEvaluator:

    def __init__(self, cache: Optional[AuthorizationCache] = None):
        self.cache = cache

    @staticmethod
    def decide(actor: Actor, tenant_id: Optional[str], descriptor: CapabilityDescriptor,
               snapshot: Optional[AuthorizationSnapshot]) -> Decision:
        """
        Decision for a given snapshot. Deterministic: the same inputs give
        the same Decision.

        Order:
            1. owner-of-tenant and elevated admins are allowed
            2. a role capability the role always has is allowed
            3. public descriptors are allowed
            4. without a tenant, permission requirements are denied
            5. without a snapshot, the decision is pending
            6. the requirement is tested against the snapshot per its mode
        """
        if actor.bypasses_grants(tenant_id):
            return Decision.allow()

        if descriptor.capability is not None and allowed_by_role(actor.role, descriptor.capability):
            return Decision.allow()

        if not descriptor.requires_permissions:
            if descriptor.capability is None:
                return Decision.allow()
            return Decision.deny(DenyReason.ROLE_NOT_PERMITTED)

        if tenant_id is None:
            return Decision.deny(DenyReason.NO_TENANT_CONTEXT, descriptor.permissions)

        if snapshot is None:
            return Decision.pending_decision()

        if not snapshot.is_member:
            return Decision.deny(DenyReason.NOT_A_MEMBER, descriptor.permissions)

        codes = snapshot.active_permission_codes
        if descriptor.is_satisfied_by(codes):
            return Decision.allow()
        missing = tuple(code for code in descriptor.permissions if code not in codes)
        return Decision.deny(DenyReason.MISSING_PERMISSION, missing)

    def evaluate(self, actor: Actor, tenant_id: Optional[str], descriptor: CapabilityDescriptor) -> Decision:
        """
        Evaluate against the cache's best known snapshot.

        A missing or stale snapshot schedules a background refresh; the
        call itself never waits.
        """
        try:
            snapshot = None
            if tenant_id is not None and self.cache is not None and not actor.bypasses_grants(tenant_id):
                snapshot = self.cache.peek(actor.id, tenant_id)
            return self.decide(actor, tenant_id, descriptor, snapshot)
        except Exception:
            logger.exception(
                "Permission evaluation failed, denying",
                extra={'actor_id': actor.id, 'tenant_id': tenant_id}
            )
            return Decision.deny(DenyReason.EVALUATION_ERROR)
