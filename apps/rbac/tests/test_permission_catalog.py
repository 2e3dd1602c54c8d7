"""
Tests for the permission catalog and request code validation.
"""
import pytest

from apps.core.exceptions import ValidationError
from apps.rbac.permissions import (
    DEFAULT_CAPABILITY_SET, GRANTABLE_PERMISSIONS, PERMISSION_CATALOG, PermissionCategory,
    PermissionCode, get_permission, parse_grantable_codes, parse_permission_code,
    permissions_by_category,
)


class TestCatalog:
    """Test the catalog contents."""

    def test_every_code_has_a_catalog_entry(self):
        assert set(PERMISSION_CATALOG) == set(PermissionCode)

    def test_default_capabilities(self):
        assert DEFAULT_CAPABILITY_SET == {
            PermissionCode.VIEW_OWN_APPOINTMENTS,
            PermissionCode.VIEW_OWN_SALES,
            PermissionCode.VIEW_OWN_COMMISSIONS,
        }
        for code in DEFAULT_CAPABILITY_SET:
            assert get_permission(code).is_default

    def test_defaults_are_not_grantable(self):
        assert not GRANTABLE_PERMISSIONS & DEFAULT_CAPABILITY_SET
        assert PermissionCode.MODIFY_APPOINTMENT_STATUS in GRANTABLE_PERMISSIONS

    def test_grouped_by_category(self):
        grouped = permissions_by_category()
        assert set(grouped) == set(PermissionCategory)
        appointment_codes = [p.code for p in grouped[PermissionCategory.APPOINTMENTS]]
        assert PermissionCode.MANAGE_APPOINTMENTS in appointment_codes
        assert PermissionCode.VIEW_OWN_APPOINTMENTS not in appointment_codes

    def test_grouped_with_defaults(self):
        grouped = permissions_by_category(include_defaults=True)
        staff_codes = [p.code for p in grouped[PermissionCategory.STAFF]]
        assert PermissionCode.VIEW_OWN_COMMISSIONS in staff_codes


class TestParsing:
    """Test code parsing for grant and revoke requests."""

    def test_parse_is_case_insensitive(self):
        assert parse_permission_code('manage_appointments') is PermissionCode.MANAGE_APPOINTMENTS

    def test_parse_unknown_code(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_permission_code('FLY_TO_MOON')
        assert exc_info.value.details == {'permission_code': 'FLY_TO_MOON'}

    def test_grantable_codes_dedupe_in_order(self):
        codes = parse_grantable_codes(['PROCESS_PAYMENTS', 'MANAGE_SERVICES', 'process_payments'])
        assert codes == [PermissionCode.PROCESS_PAYMENTS, PermissionCode.MANAGE_SERVICES]

    def test_default_capability_is_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_grantable_codes(['VIEW_OWN_SALES'])
        assert 'cannot be granted' in exc_info.value.message

    def test_empty_list_is_rejected(self):
        with pytest.raises(ValidationError):
            parse_grantable_codes([])
