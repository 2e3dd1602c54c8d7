"""
Catalog of fine-grained permission codes.

Grantable codes live in the Grant Store as per-tenant records. The
default capability codes are held implicitly by every active member and
are never stored as grants.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List

from django.core.exceptions import ImproperlyConfigured

from apps.core.exceptions import ValidationError


class PermissionCategory(str, Enum):
    APPOINTMENTS = 'APPOINTMENTS'
    SERVICES = 'SERVICES'
    CUSTOMERS = 'CUSTOMERS'
    SALES = 'SALES'
    STAFF = 'STAFF'
    INVENTORY = 'INVENTORY'
    EXPENSES = 'EXPENSES'
    SALON = 'SALON'


class PermissionCode(str, Enum):
    # Appointments
    MANAGE_APPOINTMENTS = 'MANAGE_APPOINTMENTS'
    ASSIGN_APPOINTMENTS = 'ASSIGN_APPOINTMENTS'
    VIEW_ALL_APPOINTMENTS = 'VIEW_ALL_APPOINTMENTS'
    MODIFY_APPOINTMENT_STATUS = 'MODIFY_APPOINTMENT_STATUS'
    VIEW_OWN_APPOINTMENTS = 'VIEW_OWN_APPOINTMENTS'

    # Services and products
    MANAGE_SERVICES = 'MANAGE_SERVICES'
    MANAGE_PRODUCTS = 'MANAGE_PRODUCTS'
    UPDATE_SERVICE_PRICING = 'UPDATE_SERVICE_PRICING'
    UPDATE_PRODUCT_PRICING = 'UPDATE_PRODUCT_PRICING'

    # Customers
    MANAGE_CUSTOMERS = 'MANAGE_CUSTOMERS'
    VIEW_CUSTOMER_HISTORY = 'VIEW_CUSTOMER_HISTORY'
    VIEW_CUSTOMER_LOYALTY = 'VIEW_CUSTOMER_LOYALTY'
    UPDATE_CUSTOMER_INFO = 'UPDATE_CUSTOMER_INFO'

    # Sales
    PROCESS_PAYMENTS = 'PROCESS_PAYMENTS'
    APPLY_DISCOUNTS = 'APPLY_DISCOUNTS'
    VIEW_SALES_REPORTS = 'VIEW_SALES_REPORTS'
    EXPORT_SALES_DATA = 'EXPORT_SALES_DATA'
    VOID_TRANSACTIONS = 'VOID_TRANSACTIONS'
    VIEW_OWN_SALES = 'VIEW_OWN_SALES'

    # Staff
    MANAGE_EMPLOYEE_SCHEDULES = 'MANAGE_EMPLOYEE_SCHEDULES'
    VIEW_EMPLOYEE_PERFORMANCE = 'VIEW_EMPLOYEE_PERFORMANCE'
    VIEW_EMPLOYEE_COMMISSIONS = 'VIEW_EMPLOYEE_COMMISSIONS'
    VIEW_OWN_COMMISSIONS = 'VIEW_OWN_COMMISSIONS'

    # Inventory
    MANAGE_INVENTORY = 'MANAGE_INVENTORY'
    VIEW_INVENTORY_REPORTS = 'VIEW_INVENTORY_REPORTS'
    PROCESS_STOCK_ADJUSTMENTS = 'PROCESS_STOCK_ADJUSTMENTS'
    VIEW_LOW_STOCK_ALERTS = 'VIEW_LOW_STOCK_ALERTS'

    # Salon
    VIEW_SALON_SETTINGS = 'VIEW_SALON_SETTINGS'
    UPDATE_SALON_SETTINGS = 'UPDATE_SALON_SETTINGS'
    MANAGE_BUSINESS_HOURS = 'MANAGE_BUSINESS_HOURS'
    MANAGE_SALON_PROFILE = 'MANAGE_SALON_PROFILE'

    # Expenses
    MANAGE_EXPENSES = 'MANAGE_EXPENSES'
    CREATE_EXPENSES = 'CREATE_EXPENSES'
    VIEW_EXPENSE_REPORTS = 'VIEW_EXPENSE_REPORTS'
    APPROVE_EXPENSES = 'APPROVE_EXPENSES'

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class Permission:
    code: PermissionCode
    category: PermissionCategory
    description: str
    is_default: bool = False


P = PermissionCode
C = PermissionCategory

# Held by every active member without a Grant record.
DEFAULT_CAPABILITY_SET: FrozenSet[PermissionCode] = frozenset({
    P.VIEW_OWN_APPOINTMENTS,
    P.VIEW_OWN_SALES,
    P.VIEW_OWN_COMMISSIONS,
})

_CATALOG_ROWS = [
    (P.MANAGE_APPOINTMENTS, C.APPOINTMENTS, 'Create, update, and cancel any appointment in the salon'),
    (P.ASSIGN_APPOINTMENTS, C.APPOINTMENTS, 'Assign appointments to employees'),
    (P.VIEW_ALL_APPOINTMENTS, C.APPOINTMENTS, 'View all salon appointments (not just assigned ones)'),
    (P.MODIFY_APPOINTMENT_STATUS, C.APPOINTMENTS, 'Change appointment status (pending, confirmed, completed, cancelled)'),
    (P.VIEW_OWN_APPOINTMENTS, C.APPOINTMENTS, 'View appointments assigned to yourself'),
    (P.MANAGE_SERVICES, C.SERVICES, 'Create, update, delete salon services'),
    (P.MANAGE_PRODUCTS, C.SERVICES, 'Create, update, delete products and inventory items'),
    (P.UPDATE_SERVICE_PRICING, C.SERVICES, 'Modify service prices'),
    (P.UPDATE_PRODUCT_PRICING, C.SERVICES, 'Modify product prices'),
    (P.MANAGE_CUSTOMERS, C.CUSTOMERS, 'Create, update customer records'),
    (P.VIEW_CUSTOMER_HISTORY, C.CUSTOMERS, 'View full customer transaction history'),
    (P.VIEW_CUSTOMER_LOYALTY, C.CUSTOMERS, 'View customer loyalty points and rewards'),
    (P.UPDATE_CUSTOMER_INFO, C.CUSTOMERS, 'Modify customer information'),
    (P.PROCESS_PAYMENTS, C.SALES, 'Process payments and refunds'),
    (P.APPLY_DISCOUNTS, C.SALES, 'Apply discounts and promotions to sales'),
    (P.VIEW_SALES_REPORTS, C.SALES, 'View sales analytics and reports'),
    (P.EXPORT_SALES_DATA, C.SALES, 'Export sales data for reporting'),
    (P.VOID_TRANSACTIONS, C.SALES, 'Void or cancel completed transactions'),
    (P.VIEW_OWN_SALES, C.SALES, 'View sales you recorded'),
    (P.MANAGE_EMPLOYEE_SCHEDULES, C.STAFF, 'Create and edit employee schedules'),
    (P.VIEW_EMPLOYEE_PERFORMANCE, C.STAFF, 'View employee metrics and performance'),
    (P.VIEW_EMPLOYEE_COMMISSIONS, C.STAFF, 'View all employee commissions (not just own)'),
    (P.VIEW_OWN_COMMISSIONS, C.STAFF, 'View your own commissions'),
    (P.MANAGE_INVENTORY, C.INVENTORY, 'Add and remove stock, adjust quantities'),
    (P.VIEW_INVENTORY_REPORTS, C.INVENTORY, 'View inventory analytics'),
    (P.PROCESS_STOCK_ADJUSTMENTS, C.INVENTORY, 'Make inventory adjustments'),
    (P.VIEW_LOW_STOCK_ALERTS, C.INVENTORY, 'Access inventory alerts'),
    (P.VIEW_SALON_SETTINGS, C.SALON, 'View salon settings (read-only)'),
    (P.UPDATE_SALON_SETTINGS, C.SALON, 'Modify salon settings'),
    (P.MANAGE_BUSINESS_HOURS, C.SALON, 'Update salon operating hours'),
    (P.MANAGE_SALON_PROFILE, C.SALON, 'Update salon profile information'),
    (P.MANAGE_EXPENSES, C.EXPENSES, 'Full access to create, update, and delete expenses'),
    (P.CREATE_EXPENSES, C.EXPENSES, 'Create new expense records for the salon'),
    (P.VIEW_EXPENSE_REPORTS, C.EXPENSES, 'View expense reports and analytics'),
    (P.APPROVE_EXPENSES, C.EXPENSES, 'Approve or reject expense submissions'),
]

PERMISSION_CATALOG: Dict[PermissionCode, Permission] = {
    code: Permission(code, category, description, code in DEFAULT_CAPABILITY_SET)
    for code, category, description in _CATALOG_ROWS
}

_missing = set(PermissionCode) - set(PERMISSION_CATALOG)
if _missing:
    raise ImproperlyConfigured(
        f"Permission catalog has no entry for: {', '.join(sorted(code.value for code in _missing))}"
    )

GRANTABLE_PERMISSIONS: FrozenSet[PermissionCode] = frozenset(PermissionCode) - DEFAULT_CAPABILITY_SET

del P, C, _missing


def get_permission(code) -> Permission:
    return PERMISSION_CATALOG[parse_permission_code(code)]


def parse_permission_code(value) -> PermissionCode:
    """
    Coerce a raw code into a PermissionCode.

    Raises:
        ValidationError: If the code is not in the catalog
    """
    if isinstance(value, PermissionCode):
        return value
    try:
        return PermissionCode(str(value).strip().upper())
    except ValueError:
        raise ValidationError(
            f"Unknown permission code: {value}",
            details={'permission_code': str(value)}
        )


def parse_grantable_codes(values: Iterable) -> List[PermissionCode]:
    """
    Validate codes for a grant or revoke request.

    Preserves first-seen order and drops duplicates.

    Raises:
        ValidationError: If the list is empty, contains an unknown code,
            or names a default capability
    """
    codes: List[PermissionCode] = []
    for value in values:
        code = parse_permission_code(value)
        if code in DEFAULT_CAPABILITY_SET:
            raise ValidationError(
                f"{code.value} is held by every member and cannot be granted or revoked",
                details={'permission_code': code.value}
            )
        if code not in codes:
            codes.append(code)
    if not codes:
        raise ValidationError("At least one permission code is required")
    return codes


def permissions_by_category(include_defaults: bool = False) -> Dict[PermissionCategory, List[Permission]]:
    """Grantable permissions grouped by category, in catalog order."""
    grouped: Dict[PermissionCategory, List[Permission]] = {category: [] for category in PermissionCategory}
    for permission in PERMISSION_CATALOG.values():
        if permission.is_default and not include_defaults:
            continue
        grouped[permission.category].append(permission)
    return grouped
