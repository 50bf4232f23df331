# Overview: Default roles and their permission sets.

from .definitions import PERMISSION_DEFINITIONS


DEFAULT_ROLES = [
    ("admin", "Full system access"),
    ("approver", "Approves orders and credit changes"),
    ("booking_officer", "Books sales orders and edits order details"),
    ("cashier", "Collects payments"),
    ("accountant", "Credit control and reconciliation"),
]


DEFAULT_ROLE_PERMISSIONS = {
    "admin": [perm[0] for perm in PERMISSION_DEFINITIONS],

    "approver": [
        "VIEW_CUSTOMERS",
        "VIEW_SALES_ORDERS",
        "APPROVE_SALES_ORDER",
        "APPROVE_PURCHASE_ORDER",
        "APPROVE_CREDIT_LIMIT",
        "VIEW_AUDIT_LOG",
    ],

    "booking_officer": [
        "VIEW_CUSTOMERS",
        "MANAGE_CUSTOMERS",
        "VIEW_SALES_ORDERS",
        "CREATE_SALES_ORDER",
        "MODIFY_SALES_ORDER",
        "FULFILL_SALES_ORDER",
        "CREATE_PURCHASE_ORDER",
    ],

    "cashier": [
        "VIEW_CUSTOMERS",
        "VIEW_SALES_ORDERS",
        "COLLECT_PAYMENT",
    ],

    "accountant": [
        "VIEW_CUSTOMERS",
        "MANAGE_CREDIT",
        "VIEW_SALES_ORDERS",
        "RECEIVE_PURCHASE_ORDER",
        "VIEW_AUDIT_LOG",
    ],
}
