# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- CUSTOMERS --

CUSTOMER_PERMISSIONS = [
    (
        "VIEW_CUSTOMERS",
        "View Customers",
        "View customers and their credit position",
        PermissionCategory.CUSTOMERS,
    ),
    (
        "MANAGE_CUSTOMERS",
        "Manage Customers",
        "Create, edit and remove customers",
        PermissionCategory.CUSTOMERS,
    ),
    (
        "MANAGE_CREDIT",
        "Manage Credit",
        "Change credit limits and block or unblock credit",
        PermissionCategory.CUSTOMERS,
    ),
    (
        "APPROVE_CREDIT_LIMIT",
        "Approve Credit Limit",
        "Sign off credit limit increases above the approval threshold",
        PermissionCategory.CUSTOMERS,
    ),
]


# -- SALES --

SALES_PERMISSIONS = [
    (
        "VIEW_SALES_ORDERS",
        "View Sales Orders",
        "View sales orders and their lines",
        PermissionCategory.SALES,
    ),
    (
        "CREATE_SALES_ORDER",
        "Create Sales Order",
        "Book new sales orders",
        PermissionCategory.SALES,
    ),
    (
        "MODIFY_SALES_ORDER",
        "Modify Sales Order",
        "Edit order details before approval",
        PermissionCategory.SALES,
    ),
    (
        "APPROVE_SALES_ORDER",
        "Approve Sales Order",
        "Approve or reject pending sales orders",
        PermissionCategory.SALES,
    ),
    (
        "FULFILL_SALES_ORDER",
        "Fulfill Sales Order",
        "Update fulfillment status of approved orders",
        PermissionCategory.SALES,
    ),
    (
        "COLLECT_PAYMENT",
        "Collect Payment",
        "Record customer payments against orders and credit",
        PermissionCategory.SALES,
    ),
]


# -- PURCHASING --

PURCHASING_PERMISSIONS = [
    (
        "CREATE_PURCHASE_ORDER",
        "Create Purchase Order",
        "Raise purchase orders to suppliers",
        PermissionCategory.PURCHASING,
    ),
    (
        "APPROVE_PURCHASE_ORDER",
        "Approve Purchase Order",
        "Approve purchase orders above the threshold",
        PermissionCategory.PURCHASING,
    ),
    (
        "RECEIVE_PURCHASE_ORDER",
        "Receive Purchase Order",
        "Mark purchase orders as received",
        PermissionCategory.PURCHASING,
    ),
]


# -- USERS --

USER_PERMISSIONS = [
    (
        "VIEW_USERS",
        "View Users",
        "View user list and roles",
        PermissionCategory.USERS,
    ),
    (
        "ASSIGN_ROLES",
        "Assign Roles",
        "Assign and remove user roles",
        PermissionCategory.USERS,
    ),
]


# -- SYSTEM --

SYSTEM_PERMISSIONS = [
    (
        "VIEW_AUDIT_LOG",
        "View Audit Log",
        "View the business audit trail",
        PermissionCategory.SYSTEM,
    ),
    (
        "MANAGE_SETTINGS",
        "Manage Settings",
        "Change credit, approval and role separation policy",
        PermissionCategory.SYSTEM,
    ),
    (
        "SYSTEM_ADMIN",
        "System Administrator",
        "Full system access",
        PermissionCategory.SYSTEM,
    ),
]


# Combined list of all permissions
PERMISSION_DEFINITIONS = (
    CUSTOMER_PERMISSIONS
    + SALES_PERMISSIONS
    + PURCHASING_PERMISSIONS
    + USER_PERMISSIONS
    + SYSTEM_PERMISSIONS
)
