"""
Navigation tables per role.

Each table is ordered as it should render. An entry is either
unconditional or requires ANY of its permissions. ``NAVIGATION_PRIORITY``
lists entry ids from most to least important; when the visible set
exceeds the cap, entries are dropped from the end of that list.
"""
from dataclasses import dataclass
from typing import Dict, List, Tuple

from django.core.exceptions import ImproperlyConfigured

from apps.rbac.permissions import PermissionCode as P
from apps.rbac.roles import Role, Screen
from apps.rbac.types import CapabilityDescriptor


@dataclass(frozen=True)
class NavigationEntry:
    id: str
    label: str
    icon: str
    screen: Screen
    required_permissions: Tuple[P, ...] = ()

    @property
    def is_unconditional(self) -> bool:
        return not self.required_permissions

    @property
    def descriptor(self) -> CapabilityDescriptor:
        if self.is_unconditional:
            return CapabilityDescriptor.public()
        return CapabilityDescriptor.any_of(*self.required_permissions)


CUSTOMER = 'customer'
SALON_EMPLOYEE = 'salon_employee'
SALON_OWNER = 'salon_owner'
ADMIN = 'admin'

NAVIGATION_TABLES: Dict[str, List[NavigationEntry]] = {
    CUSTOMER: [
        NavigationEntry('home', 'Home', 'home', Screen.HOME),
        NavigationEntry('bookings', 'Bookings', 'event', Screen.BOOKINGS),
        NavigationEntry('explore', 'Explore', 'explore', Screen.EXPLORE),
        NavigationEntry('notifications', 'Alerts', 'notifications', Screen.NOTIFICATIONS),
        NavigationEntry('profile', 'Profile', 'person', Screen.PROFILE),
    ],
    SALON_EMPLOYEE: [
        NavigationEntry('home', 'Home', 'home', Screen.STAFF_DASHBOARD),
        NavigationEntry('schedule', 'My Schedule', 'event-note', Screen.MY_SCHEDULE,
                        (P.VIEW_OWN_APPOINTMENTS,)),
        NavigationEntry('appointments', 'Appointments', 'event', Screen.SALON_APPOINTMENTS,
                        (P.VIEW_ALL_APPOINTMENTS, P.MANAGE_APPOINTMENTS)),
        NavigationEntry('customers', 'Customers', 'people', Screen.CUSTOMER_MANAGEMENT,
                        (P.MANAGE_CUSTOMERS, P.VIEW_CUSTOMER_HISTORY)),
        NavigationEntry('sales', 'Sales', 'point-of-sale', Screen.SALES,
                        (P.PROCESS_PAYMENTS, P.VIEW_SALES_REPORTS)),
        NavigationEntry('inventory', 'Inventory', 'inventory-2', Screen.INVENTORY_MANAGEMENT,
                        (P.MANAGE_INVENTORY, P.VIEW_INVENTORY_REPORTS, P.PROCESS_STOCK_ADJUSTMENTS)),
        NavigationEntry('commissions', 'Commissions', 'payments', Screen.COMMISSIONS,
                        (P.VIEW_OWN_COMMISSIONS,)),
        NavigationEntry('chat', 'Chat', 'chat', Screen.CHAT),
        NavigationEntry('profile', 'Profile', 'person', Screen.PROFILE),
    ],
    SALON_OWNER: [
        NavigationEntry('dashboard', 'Dashboard', 'dashboard', Screen.OWNER_DASHBOARD,
                        (P.MANAGE_SALON_PROFILE, P.MANAGE_APPOINTMENTS, P.MANAGE_SERVICES,
                         P.MANAGE_PRODUCTS, P.VIEW_SALES_REPORTS, P.VIEW_ALL_APPOINTMENTS)),
        NavigationEntry('operations', 'Operations', 'work', Screen.OPERATIONS,
                        (P.MANAGE_APPOINTMENTS, P.VIEW_ALL_APPOINTMENTS, P.MANAGE_SERVICES,
                         P.MANAGE_PRODUCTS, P.ASSIGN_APPOINTMENTS)),
        NavigationEntry('salon', 'Salon', 'store', Screen.SALON_LIST,
                        (P.MANAGE_SALON_PROFILE, P.MANAGE_BUSINESS_HOURS,
                         P.VIEW_SALON_SETTINGS, P.UPDATE_SALON_SETTINGS)),
        NavigationEntry('finance', 'Finance', 'account-balance-wallet', Screen.FINANCE,
                        (P.PROCESS_PAYMENTS, P.VIEW_SALES_REPORTS, P.MANAGE_INVENTORY)),
        NavigationEntry('more', 'More', 'more-horiz', Screen.MORE_MENU,
                        (P.MANAGE_SALON_PROFILE, P.MANAGE_APPOINTMENTS, P.MANAGE_SERVICES,
                         P.MANAGE_PRODUCTS, P.VIEW_SALON_SETTINGS, P.VIEW_ALL_APPOINTMENTS)),
    ],
    ADMIN: [
        NavigationEntry('dashboard', 'Dashboard', 'dashboard', Screen.ADMIN_DASHBOARD),
        NavigationEntry('salons', 'Salons', 'store', Screen.SALON_MANAGEMENT),
        NavigationEntry('members', 'Members', 'card-membership', Screen.MEMBERSHIP_APPROVALS),
        NavigationEntry('reports', 'Reports', 'assessment', Screen.SYSTEM_REPORTS),
        NavigationEntry('profile', 'Profile', 'person', Screen.PROFILE),
    ],
}

NAVIGATION_PRIORITY: Dict[str, Tuple[str, ...]] = {
    CUSTOMER: ('home', 'bookings', 'profile', 'explore', 'notifications'),
    SALON_EMPLOYEE: (
        'home', 'profile', 'appointments', 'customers', 'sales',
        'inventory', 'schedule', 'commissions', 'chat',
    ),
    SALON_OWNER: ('dashboard', 'operations', 'finance', 'salon', 'more'),
    ADMIN: ('dashboard', 'salons', 'members', 'reports', 'profile'),
}

ROLE_TABLES: Dict[Role, str] = {
    Role.CUSTOMER: CUSTOMER,
    Role.SALON_EMPLOYEE: SALON_EMPLOYEE,
    Role.SALON_OWNER: SALON_OWNER,
    Role.DISTRICT_LEADER: ADMIN,
    Role.ASSOCIATION_ADMIN: ADMIN,
    Role.SUPER_ADMIN: ADMIN,
}


def _check_tables():
    missing_roles = set(Role) - set(ROLE_TABLES)
    if missing_roles:
        raise ImproperlyConfigured(
            f"ROLE_TABLES has no entry for: {', '.join(sorted(r.value for r in missing_roles))}"
        )
    for name, entries in NAVIGATION_TABLES.items():
        ids = [entry.id for entry in entries]
        if len(ids) != len(set(ids)):
            raise ImproperlyConfigured(f"Navigation table '{name}' has duplicate entry ids")
        if set(NAVIGATION_PRIORITY.get(name, ())) != set(ids):
            raise ImproperlyConfigured(
                f"NAVIGATION_PRIORITY['{name}'] must rank exactly the entries of its table"
            )


_check_tables()


def table_for_role(role: Role) -> str:
    return ROLE_TABLES[role]
