# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    CUSTOMERS = "CUSTOMERS"
    SALES = "SALES"
    PURCHASING = "PURCHASING"
    USERS = "USERS"
    SYSTEM = "SYSTEM"
