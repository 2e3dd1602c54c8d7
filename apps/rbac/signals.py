"""
Authorization signals and their audit receivers.

``permissions_changed`` is sent after the Grant Store confirmed a grant or
revoke. ``authorization_session_expired`` is sent once when the store
rejected the actor's credentials.
"""
from django.dispatch import Signal, receiver

from apps.core.logging import SecurityLogger

# kwargs: action ('granted' | 'revoked'), actor_id, tenant_id,
# permission_codes, performed_by, note
permissions_changed = Signal()

# kwargs: actor_id, reason
authorization_session_expired = Signal()


@receiver(permissions_changed, dispatch_uid='rbac.audit_permissions_changed')
def audit_permissions_changed(sender, action, actor_id, tenant_id, permission_codes,
                              performed_by=None, note=None, **kwargs):
    """Write grant and revoke operations to the security log."""
    SecurityLogger.log_permissions_changed(
        action,
        actor_id=actor_id,
        tenant_id=tenant_id,
        permission_codes=permission_codes,
        performed_by=performed_by,
        note=note,
    )


@receiver(authorization_session_expired, dispatch_uid='rbac.audit_session_expired')
def audit_session_expired(sender, actor_id, reason=None, **kwargs):
    SecurityLogger.log_session_expired(actor_id, reason=reason)
