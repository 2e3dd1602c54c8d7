"""
Role Registry: static capability tables per role.

Every role maps to the screens, actions and features it always has,
independent of any tenant. The mapping is checked for exhaustiveness at
import time so a new role cannot silently fall through to "no access".
"""
from enum import Enum
from typing import Dict, FrozenSet, Union

from django.core.exceptions import ImproperlyConfigured


class Role(str, Enum):
    CUSTOMER = 'customer'
    SALON_EMPLOYEE = 'salon_employee'
    SALON_OWNER = 'salon_owner'
    DISTRICT_LEADER = 'district_leader'
    ASSOCIATION_ADMIN = 'association_admin'
    SUPER_ADMIN = 'super_admin'

    def __str__(self):
        return self.value


class Screen(str, Enum):
    HOME = 'HOME'
    EXPLORE = 'EXPLORE'
    BOOKINGS = 'BOOKINGS'
    PROFILE = 'PROFILE'
    NOTIFICATIONS = 'NOTIFICATIONS'
    CHAT = 'CHAT'

    # Customer screens
    SEARCH = 'SEARCH'
    LOYALTY = 'LOYALTY'
    WALLET = 'WALLET'
    OFFERS = 'OFFERS'
    MEMBERSHIP_INFO = 'MEMBERSHIP_INFO'
    MEMBERSHIP_APPLICATION = 'MEMBERSHIP_APPLICATION'

    # Salon staff screens
    STAFF_DASHBOARD = 'STAFF_DASHBOARD'
    WORK_LOG = 'WORK_LOG'
    MY_SCHEDULE = 'MY_SCHEDULE'
    ATTENDANCE = 'ATTENDANCE'
    CUSTOMER_MANAGEMENT = 'CUSTOMER_MANAGEMENT'
    COMMISSIONS = 'COMMISSIONS'
    SALES = 'SALES'
    SALON_APPOINTMENTS = 'SALON_APPOINTMENTS'
    MORE_MENU = 'MORE_MENU'

    # Salon owner screens
    OWNER_DASHBOARD = 'OWNER_DASHBOARD'
    OPERATIONS = 'OPERATIONS'
    STAFF_MANAGEMENT = 'STAFF_MANAGEMENT'
    FINANCE = 'FINANCE'
    SALON_SETTINGS = 'SALON_SETTINGS'
    BUSINESS_ANALYTICS = 'BUSINESS_ANALYTICS'
    INVENTORY_MANAGEMENT = 'INVENTORY_MANAGEMENT'
    SALON_LIST = 'SALON_LIST'
    SALON_DETAIL = 'SALON_DETAIL'
    ADD_EMPLOYEE = 'ADD_EMPLOYEE'
    ADD_SERVICE = 'ADD_SERVICE'

    # Admin screens
    ADMIN_DASHBOARD = 'ADMIN_DASHBOARD'
    SALON_MANAGEMENT = 'SALON_MANAGEMENT'
    USER_MANAGEMENT = 'USER_MANAGEMENT'
    SYSTEM_REPORTS = 'SYSTEM_REPORTS'
    MEMBERSHIP_APPROVALS = 'MEMBERSHIP_APPROVALS'


class Action(str, Enum):
    # Booking actions
    CREATE_BOOKING = 'CREATE_BOOKING'
    VIEW_OWN_BOOKINGS = 'VIEW_OWN_BOOKINGS'
    VIEW_SALON_BOOKINGS = 'VIEW_SALON_BOOKINGS'
    VIEW_ALL_BOOKINGS = 'VIEW_ALL_BOOKINGS'
    CANCEL_BOOKING = 'CANCEL_BOOKING'
    MODIFY_BOOKING = 'MODIFY_BOOKING'

    # Staff actions
    CLOCK_IN_OUT = 'CLOCK_IN_OUT'
    VIEW_OWN_SCHEDULE = 'VIEW_OWN_SCHEDULE'
    MARK_APPOINTMENT_COMPLETE = 'MARK_APPOINTMENT_COMPLETE'
    VIEW_CUSTOMER_DETAILS = 'VIEW_CUSTOMER_DETAILS'

    # Owner actions
    MANAGE_STAFF = 'MANAGE_STAFF'
    MANAGE_SERVICES = 'MANAGE_SERVICES'
    MANAGE_SALON_SETTINGS = 'MANAGE_SALON_SETTINGS'
    VIEW_BUSINESS_METRICS = 'VIEW_BUSINESS_METRICS'
    MANAGE_INVENTORY = 'MANAGE_INVENTORY'
    ASSIGN_APPOINTMENTS = 'ASSIGN_APPOINTMENTS'
    GRANT_PERMISSIONS = 'GRANT_PERMISSIONS'
    CREATE_SALON = 'CREATE_SALON'
    UPDATE_SALON = 'UPDATE_SALON'
    DELETE_SALON = 'DELETE_SALON'

    # Admin actions
    APPROVE_SALONS = 'APPROVE_SALONS'
    SUSPEND_USERS = 'SUSPEND_USERS'
    VIEW_ALL_DATA = 'VIEW_ALL_DATA'
    MANAGE_MEMBERSHIPS = 'MANAGE_MEMBERSHIPS'
    SYSTEM_CONFIGURATION = 'SYSTEM_CONFIGURATION'

    # Common actions
    VIEW_PROFILE = 'VIEW_PROFILE'
    EDIT_OWN_PROFILE = 'EDIT_OWN_PROFILE'
    SEND_MESSAGES = 'SEND_MESSAGES'
    VIEW_NOTIFICATIONS = 'VIEW_NOTIFICATIONS'
    ADD_NOTES = 'ADD_NOTES'
    PROCESS_PAYMENT = 'PROCESS_PAYMENT'


class Feature(str, Enum):
    QUICK_ACTIONS_CUSTOMER = 'QUICK_ACTIONS_CUSTOMER'
    QUICK_ACTIONS_STAFF = 'QUICK_ACTIONS_STAFF'
    QUICK_ACTIONS_OWNER = 'QUICK_ACTIONS_OWNER'
    UPCOMING_APPOINTMENTS = 'UPCOMING_APPOINTMENTS'
    TOP_SALONS = 'TOP_SALONS'
    BUSINESS_METRICS = 'BUSINESS_METRICS'
    STAFF_PERFORMANCE = 'STAFF_PERFORMANCE'
    LOYALTY_POINTS = 'LOYALTY_POINTS'
    MEMBERSHIP_STATUS = 'MEMBERSHIP_STATUS'
    EARNINGS_SUMMARY = 'EARNINGS_SUMMARY'
    ATTENDANCE_HISTORY = 'ATTENDANCE_HISTORY'
    BUSINESS_SETTINGS = 'BUSINESS_SETTINGS'
    BOOK_APPOINTMENT = 'BOOK_APPOINTMENT'
    VIEW_CUSTOMER_INFO = 'VIEW_CUSTOMER_INFO'
    REASSIGN_APPOINTMENT = 'REASSIGN_APPOINTMENT'


Capability = Union[Screen, Action, Feature]

TOP_TIER_ROLE = Role.SUPER_ADMIN

ELEVATED_ADMIN_ROLES = frozenset({Role.SUPER_ADMIN, Role.ASSOCIATION_ADMIN})

# Lowest to highest. A role includes every role at or below its rank.
ROLE_RANKS: Dict[Role, int] = {
    Role.CUSTOMER: 0,
    Role.SALON_EMPLOYEE: 1,
    Role.SALON_OWNER: 2,
    Role.DISTRICT_LEADER: 3,
    Role.ASSOCIATION_ADMIN: 4,
    Role.SUPER_ADMIN: 5,
}


ROLE_CAPABILITIES: Dict[Role, Dict[str, FrozenSet]] = {
    Role.CUSTOMER: {
        'screens': frozenset({
            Screen.HOME, Screen.EXPLORE, Screen.BOOKINGS, Screen.PROFILE,
            Screen.NOTIFICATIONS, Screen.SEARCH, Screen.LOYALTY, Screen.WALLET,
            Screen.OFFERS, Screen.CHAT, Screen.MEMBERSHIP_INFO,
            Screen.MEMBERSHIP_APPLICATION,
        }),
        'actions': frozenset({
            Action.CREATE_BOOKING, Action.VIEW_OWN_BOOKINGS, Action.CANCEL_BOOKING,
            Action.VIEW_PROFILE, Action.EDIT_OWN_PROFILE, Action.SEND_MESSAGES,
            Action.VIEW_NOTIFICATIONS,
        }),
        'features': frozenset({
            Feature.QUICK_ACTIONS_CUSTOMER, Feature.UPCOMING_APPOINTMENTS,
            Feature.TOP_SALONS, Feature.LOYALTY_POINTS, Feature.MEMBERSHIP_STATUS,
            Feature.BOOK_APPOINTMENT,
        }),
    },
    Role.SALON_EMPLOYEE: {
        'screens': frozenset({
            Screen.HOME, Screen.STAFF_DASHBOARD, Screen.WORK_LOG, Screen.MY_SCHEDULE,
            Screen.ATTENDANCE, Screen.BOOKINGS, Screen.PROFILE, Screen.NOTIFICATIONS,
            Screen.CHAT, Screen.COMMISSIONS, Screen.EXPLORE, Screen.MORE_MENU,
        }),
        'actions': frozenset({
            Action.CLOCK_IN_OUT, Action.VIEW_OWN_SCHEDULE, Action.VIEW_OWN_BOOKINGS,
            Action.MARK_APPOINTMENT_COMPLETE, Action.VIEW_PROFILE,
            Action.EDIT_OWN_PROFILE, Action.SEND_MESSAGES, Action.VIEW_NOTIFICATIONS,
            Action.ADD_NOTES,
        }),
        'features': frozenset({
            Feature.QUICK_ACTIONS_STAFF, Feature.UPCOMING_APPOINTMENTS,
            Feature.EARNINGS_SUMMARY, Feature.ATTENDANCE_HISTORY,
        }),
    },
    Role.SALON_OWNER: {
        'screens': frozenset({
            Screen.OWNER_DASHBOARD, Screen.OPERATIONS, Screen.STAFF_MANAGEMENT,
            Screen.FINANCE, Screen.MORE_MENU, Screen.SALON_SETTINGS,
            Screen.BUSINESS_ANALYTICS, Screen.INVENTORY_MANAGEMENT, Screen.SALON_LIST,
            Screen.SALON_DETAIL, Screen.ADD_EMPLOYEE, Screen.ADD_SERVICE,
            Screen.BOOKINGS, Screen.PROFILE, Screen.NOTIFICATIONS, Screen.CHAT,
            Screen.MY_SCHEDULE, Screen.CUSTOMER_MANAGEMENT, Screen.EXPLORE,
            Screen.SALES, Screen.SALON_APPOINTMENTS,
        }),
        'actions': frozenset({
            Action.MANAGE_STAFF, Action.MANAGE_SERVICES, Action.MANAGE_SALON_SETTINGS,
            Action.VIEW_BUSINESS_METRICS, Action.MANAGE_INVENTORY,
            Action.ASSIGN_APPOINTMENTS, Action.GRANT_PERMISSIONS, Action.CREATE_SALON,
            Action.UPDATE_SALON, Action.DELETE_SALON, Action.VIEW_SALON_BOOKINGS,
            Action.MODIFY_BOOKING, Action.CANCEL_BOOKING, Action.VIEW_CUSTOMER_DETAILS,
            Action.CLOCK_IN_OUT, Action.VIEW_OWN_SCHEDULE,
            Action.MARK_APPOINTMENT_COMPLETE, Action.VIEW_PROFILE,
            Action.EDIT_OWN_PROFILE, Action.SEND_MESSAGES, Action.VIEW_NOTIFICATIONS,
            Action.ADD_NOTES, Action.PROCESS_PAYMENT,
        }),
        'features': frozenset({
            Feature.QUICK_ACTIONS_OWNER, Feature.BUSINESS_METRICS,
            Feature.STAFF_PERFORMANCE, Feature.UPCOMING_APPOINTMENTS,
            Feature.BUSINESS_SETTINGS, Feature.VIEW_CUSTOMER_INFO,
            Feature.REASSIGN_APPOINTMENT, Feature.EARNINGS_SUMMARY,
        }),
    },
    Role.DISTRICT_LEADER: {
        'screens': frozenset({
            Screen.HOME, Screen.ADMIN_DASHBOARD, Screen.SALON_MANAGEMENT,
            Screen.MEMBERSHIP_APPROVALS, Screen.SYSTEM_REPORTS, Screen.PROFILE,
            Screen.NOTIFICATIONS,
        }),
        'actions': frozenset({
            Action.APPROVE_SALONS, Action.VIEW_ALL_BOOKINGS, Action.VIEW_ALL_DATA,
            Action.MANAGE_MEMBERSHIPS, Action.VIEW_PROFILE, Action.EDIT_OWN_PROFILE,
            Action.VIEW_NOTIFICATIONS,
        }),
        'features': frozenset({
            Feature.BUSINESS_METRICS,
        }),
    },
    Role.ASSOCIATION_ADMIN: {
        'screens': frozenset({
            Screen.HOME, Screen.ADMIN_DASHBOARD, Screen.SALON_MANAGEMENT,
            Screen.USER_MANAGEMENT, Screen.MEMBERSHIP_APPROVALS, Screen.SYSTEM_REPORTS,
            Screen.PROFILE, Screen.NOTIFICATIONS,
        }),
        'actions': frozenset({
            Action.APPROVE_SALONS, Action.SUSPEND_USERS, Action.VIEW_ALL_BOOKINGS,
            Action.VIEW_ALL_DATA, Action.MANAGE_MEMBERSHIPS, Action.GRANT_PERMISSIONS,
            Action.SYSTEM_CONFIGURATION, Action.VIEW_PROFILE, Action.EDIT_OWN_PROFILE,
            Action.VIEW_NOTIFICATIONS,
        }),
        'features': frozenset({
            Feature.BUSINESS_METRICS,
        }),
    },
    Role.SUPER_ADMIN: {
        'screens': frozenset(Screen),
        'actions': frozenset(Action),
        'features': frozenset(Feature),
    },
}

DEFAULT_HOME_SCREENS: Dict[Role, Screen] = {
    Role.CUSTOMER: Screen.HOME,
    Role.SALON_EMPLOYEE: Screen.STAFF_DASHBOARD,
    Role.SALON_OWNER: Screen.OWNER_DASHBOARD,
    Role.DISTRICT_LEADER: Screen.ADMIN_DASHBOARD,
    Role.ASSOCIATION_ADMIN: Screen.ADMIN_DASHBOARD,
    Role.SUPER_ADMIN: Screen.ADMIN_DASHBOARD,
}

_CAPABILITY_KINDS = {
    Screen: 'screens',
    Action: 'actions',
    Feature: 'features',
}


def _check_exhaustive():
    for table_name, table in (
        ('ROLE_CAPABILITIES', ROLE_CAPABILITIES),
        ('ROLE_RANKS', ROLE_RANKS),
        ('DEFAULT_HOME_SCREENS', DEFAULT_HOME_SCREENS),
    ):
        missing = set(Role) - set(table)
        if missing:
            raise ImproperlyConfigured(
                f"{table_name} has no entry for role(s): "
                f"{', '.join(sorted(role.value for role in missing))}"
            )
    for role, kinds in ROLE_CAPABILITIES.items():
        missing_kinds = set(_CAPABILITY_KINDS.values()) - set(kinds)
        if missing_kinds:
            raise ImproperlyConfigured(
                f"ROLE_CAPABILITIES[{role.value}] is missing: {', '.join(sorted(missing_kinds))}"
            )


_check_exhaustive()


def parse_role(value) -> Role:
    """Coerce a role value (case-insensitive) into a Role, raising ValueError if unknown."""
    if isinstance(value, Role):
        return value
    return Role(str(value).strip().lower())


def allowed_by_role(role: Role, capability: Capability) -> bool:
    """
    Whether ``role`` always has ``capability``, regardless of tenant.

    Pure and synchronous. The top-tier role is allowed everything.
    """
    if role == TOP_TIER_ROLE:
        return True
    kind = _CAPABILITY_KINDS.get(type(capability))
    if kind is None:
        raise TypeError(f"Unsupported capability type: {type(capability).__name__}")
    return capability in ROLE_CAPABILITIES[role][kind]


def is_elevated_admin(role: Role) -> bool:
    return role in ELEVATED_ADMIN_ROLES


def role_includes(role: Role, required: Role) -> bool:
    """Whether ``role`` is at or above ``required`` in the hierarchy."""
    return ROLE_RANKS[role] >= ROLE_RANKS[required]


def role_outranks(role: Role, other: Role) -> bool:
    return ROLE_RANKS[role] > ROLE_RANKS[other]


def screens_for_role(role: Role) -> FrozenSet[Screen]:
    return ROLE_CAPABILITIES[role]['screens']


def actions_for_role(role: Role) -> FrozenSet[Action]:
    return ROLE_CAPABILITIES[role]['actions']


def features_for_role(role: Role) -> FrozenSet[Feature]:
    return ROLE_CAPABILITIES[role]['features']


def default_home_screen(role: Role) -> Screen:
    return DEFAULT_HOME_SCREENS[role]
