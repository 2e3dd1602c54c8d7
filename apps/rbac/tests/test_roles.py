"""
Tests for the Role Registry.
"""
import pytest

from apps.rbac.roles import (
    Action, DEFAULT_HOME_SCREENS, Feature, ROLE_CAPABILITIES, ROLE_RANKS, Role, Screen,
    actions_for_role, allowed_by_role, default_home_screen, features_for_role,
    is_elevated_admin, parse_role, role_includes, role_outranks, screens_for_role,
)


class TestRoleTables:
    """Every role has an entry in every table."""

    def test_capability_table_is_exhaustive(self):
        assert set(ROLE_CAPABILITIES) == set(Role)
        for role in Role:
            assert set(ROLE_CAPABILITIES[role]) == {'screens', 'actions', 'features'}

    def test_rank_and_home_tables_are_exhaustive(self):
        assert set(ROLE_RANKS) == set(Role)
        assert set(DEFAULT_HOME_SCREENS) == set(Role)

    def test_default_home_screens(self):
        assert default_home_screen(Role.CUSTOMER) == Screen.HOME
        assert default_home_screen(Role.SALON_EMPLOYEE) == Screen.STAFF_DASHBOARD
        assert default_home_screen(Role.SALON_OWNER) == Screen.OWNER_DASHBOARD
        assert default_home_screen(Role.SUPER_ADMIN) == Screen.ADMIN_DASHBOARD


class TestAllowedByRole:
    """Test allowed_by_role."""

    @pytest.mark.parametrize('capability', list(Screen) + list(Action) + list(Feature))
    def test_top_tier_role_is_allowed_everything(self, capability):
        assert allowed_by_role(Role.SUPER_ADMIN, capability) is True

    def test_customer_screens(self):
        assert allowed_by_role(Role.CUSTOMER, Screen.BOOKINGS) is True
        assert allowed_by_role(Role.CUSTOMER, Screen.OWNER_DASHBOARD) is False

    def test_employee_actions(self):
        assert allowed_by_role(Role.SALON_EMPLOYEE, Action.CLOCK_IN_OUT) is True
        assert allowed_by_role(Role.SALON_EMPLOYEE, Action.GRANT_PERMISSIONS) is False

    def test_owner_features(self):
        assert allowed_by_role(Role.SALON_OWNER, Feature.BUSINESS_METRICS) is True
        assert allowed_by_role(Role.SALON_OWNER, Feature.LOYALTY_POINTS) is False

    def test_unknown_capability_type_raises(self):
        with pytest.raises(TypeError):
            allowed_by_role(Role.CUSTOMER, 'HOME')

    def test_helpers_match_table(self):
        for role in Role:
            assert screens_for_role(role) == ROLE_CAPABILITIES[role]['screens']
            assert actions_for_role(role) == ROLE_CAPABILITIES[role]['actions']
            assert features_for_role(role) == ROLE_CAPABILITIES[role]['features']


class TestRoleHierarchy:
    """Test rank ordering helpers."""

    def test_parse_role(self):
        assert parse_role('SALON_OWNER') is Role.SALON_OWNER
        assert parse_role(' customer ') is Role.CUSTOMER
        assert parse_role(Role.SUPER_ADMIN) is Role.SUPER_ADMIN

    def test_parse_unknown_role_raises(self):
        with pytest.raises(ValueError):
            parse_role('janitor')

    def test_outranks(self):
        assert role_outranks(Role.SUPER_ADMIN, Role.ASSOCIATION_ADMIN)
        assert role_outranks(Role.SALON_OWNER, Role.SALON_EMPLOYEE)
        assert not role_outranks(Role.SALON_EMPLOYEE, Role.SALON_EMPLOYEE)
        assert not role_outranks(Role.CUSTOMER, Role.SALON_EMPLOYEE)

    def test_includes(self):
        assert role_includes(Role.SALON_OWNER, Role.SALON_EMPLOYEE)
        assert role_includes(Role.SALON_EMPLOYEE, Role.SALON_EMPLOYEE)
        assert not role_includes(Role.SALON_EMPLOYEE, Role.SALON_OWNER)

    def test_elevated_admins(self):
        assert is_elevated_admin(Role.SUPER_ADMIN)
        assert is_elevated_admin(Role.ASSOCIATION_ADMIN)
        assert not is_elevated_admin(Role.DISTRICT_LEADER)
        assert not is_elevated_admin(Role.SALON_OWNER)
