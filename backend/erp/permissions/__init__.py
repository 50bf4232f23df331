# Overview: Permission system package.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    CUSTOMER_PERMISSIONS,
    SALES_PERMISSIONS,
    PURCHASING_PERMISSIONS,
    USER_PERMISSIONS,
    SYSTEM_PERMISSIONS,
)
from .roles import DEFAULT_ROLES, DEFAULT_ROLE_PERMISSIONS
from .helpers import (
    get_all_permission_codes,
    validate_permission_code,
)

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "CUSTOMER_PERMISSIONS",
    "SALES_PERMISSIONS",
    "PURCHASING_PERMISSIONS",
    "USER_PERMISSIONS",
    "SYSTEM_PERMISSIONS",
    "DEFAULT_ROLES",
    "DEFAULT_ROLE_PERMISSIONS",
    "get_all_permission_codes",
    "validate_permission_code",
]
