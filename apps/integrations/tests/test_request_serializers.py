"""
Tests for grant and revoke request validation.
"""
import pytest

from apps.core.exceptions import ValidationError
from apps.integrations.serializers import (
    GrantRequestSerializer, GrantSerializer, RevokeRequestSerializer, validate_request,
)
from apps.rbac.permissions import PermissionCode as P


class TestGrantRequest:
    """Test GrantRequestSerializer through validate_request."""

    def test_valid_request(self):
        data = validate_request(GrantRequestSerializer, {
            'permissions': ['manage_services', 'PROCESS_PAYMENTS', 'MANAGE_SERVICES'],
            'notes': 'Covers Saturdays',
        })

        assert data['permissions'] == [P.MANAGE_SERVICES, P.PROCESS_PAYMENTS]
        assert data['notes'] == 'Covers Saturdays'

    def test_empty_list(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_request(GrantRequestSerializer, {'permissions': []})

        assert 'permissions' in exc_info.value.details['errors']

    def test_missing_permissions(self):
        with pytest.raises(ValidationError):
            validate_request(GrantRequestSerializer, {'notes': 'nothing to grant'})

    def test_default_capability(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_request(GrantRequestSerializer, {'permissions': ['VIEW_OWN_COMMISSIONS']})

        assert 'cannot be granted' in exc_info.value.message

    def test_notes_too_long(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_request(GrantRequestSerializer, {'permissions': ['MANAGE_SERVICES'], 'notes': 'x' * 501})

        assert list(exc_info.value.details['errors']) == ['notes']


class TestRevokeRequest:
    """Test RevokeRequestSerializer."""

    def test_reason_is_optional(self):
        data = validate_request(RevokeRequestSerializer, {'permissions': ['VOID_TRANSACTIONS']})

        assert data['permissions'] == [P.VOID_TRANSACTIONS]
        assert 'reason' not in data

    def test_unknown_code(self):
        with pytest.raises(ValidationError):
            validate_request(RevokeRequestSerializer, {'permissions': ['FLY_TO_MOON']})


class TestGrantSerializer:
    """Test the inbound grant record layout."""

    def test_camel_case_fields_map_to_attributes(self):
        serializer = GrantSerializer(data={
            'id': 'g-1',
            'salonId': 'salon-1',
            'permissionCode': 'MANAGE_SERVICES',
            'revokedAt': None,
        })

        assert serializer.is_valid(), serializer.errors
        assert serializer.validated_data['tenant_id'] == 'salon-1'
        assert serializer.validated_data['permission_code'] == 'MANAGE_SERVICES'
        assert serializer.validated_data['is_active'] is True
