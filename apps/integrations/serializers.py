"""
Serializers for the Grant Store wire format.

Inbound payloads use the store's camelCase field names; ``source`` maps
them onto the engine's snake_case attributes.
"""
from rest_framework import serializers

from apps.core.exceptions import ValidationError
from apps.rbac.permissions import parse_grantable_codes


class GrantSerializer(serializers.Serializer):
    """A grant record returned by the store."""

    id = serializers.CharField()
    salonId = serializers.CharField(source='tenant_id', required=False)
    permissionCode = serializers.CharField(source='permission_code')
    grantedBy = serializers.CharField(source='granted_by', required=False, allow_null=True)
    grantedAt = serializers.DateTimeField(source='granted_at', required=False, allow_null=True)
    revokedAt = serializers.DateTimeField(source='revoked_at', required=False, allow_null=True)
    revokedBy = serializers.CharField(source='revoked_by', required=False, allow_null=True)
    isActive = serializers.BooleanField(source='is_active', default=True)
    notes = serializers.CharField(required=False, allow_null=True, allow_blank=True)


class GrantListSerializer(serializers.Serializer):
    permissions = GrantSerializer(many=True)


class MembershipSerializer(serializers.Serializer):
    """A tenant membership returned by the store."""

    salonId = serializers.CharField(source='tenant_id')
    salonName = serializers.CharField(source='tenant_name', required=False, allow_blank=True, default='')
    employeeId = serializers.CharField(source='local_membership_id', required=False, allow_null=True)
    isActive = serializers.BooleanField(source='is_active', default=True)


class MembershipListSerializer(serializers.Serializer):
    memberships = MembershipSerializer(many=True)


class _PermissionChangeSerializer(serializers.Serializer):
    permissions = serializers.ListField(
        child=serializers.CharField(max_length=64),
        allow_empty=False,
    )

    def validate_permissions(self, value):
        try:
            return parse_grantable_codes(value)
        except ValidationError as e:
            raise serializers.ValidationError(e.message)


class GrantRequestSerializer(_PermissionChangeSerializer):
    """Body of a grant request."""

    notes = serializers.CharField(required=False, allow_blank=True, max_length=500)


class RevokeRequestSerializer(_PermissionChangeSerializer):
    """Body of a revoke request."""

    reason = serializers.CharField(required=False, allow_blank=True, max_length=500)


def _flatten_errors(errors):
    if isinstance(errors, dict):
        for value in errors.values():
            yield from _flatten_errors(value)
    elif isinstance(errors, (list, tuple)):
        for value in errors:
            yield from _flatten_errors(value)
    else:
        yield str(errors)


def validate_request(serializer_class, data) -> dict:
    """
    Run a request serializer and raise the engine's ValidationError on failure.

    Returns:
        dict: validated data with ``permissions`` as PermissionCode list
    """
    serializer = serializer_class(data=data)
    if not serializer.is_valid():
        errors = {field: list(_flatten_errors(messages)) for field, messages in serializer.errors.items()}
        first = next(iter(errors.values()))[0]
        raise ValidationError(first, details={'errors': errors})
    return serializer.validated_data
