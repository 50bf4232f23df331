from .tenancy import Organization, OrganizationSetting
from .auth import User, Role, UserRole, Permission, RolePermission, SessionToken
from .security import SecurityEvent
from .customers import Customer, CreditTransaction, CreditPayment, CreditLimitChange
from .sales import SalesOrder, SalesOrderLine
from .purchasing import PurchaseOrder
from .documents import DocumentSequence
from .audit import AuditLog, AuditLogImmutableError

__all__ = [
    'Organization', 'OrganizationSetting',
    'User', 'Role', 'UserRole', 'Permission', 'RolePermission', 'SessionToken',
    'SecurityEvent',
    'Customer', 'CreditTransaction', 'CreditPayment', 'CreditLimitChange',
    'SalesOrder', 'SalesOrderLine',
    'PurchaseOrder',
    'DocumentSequence',
    'AuditLog', 'AuditLogImmutableError',
]
