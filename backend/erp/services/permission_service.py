# Overview: Role-based permission resolution and security event logging.

"""
Permission Checking and Security Event Logging

MULTI-TENANT: Roles belong to one organization. A user only ever resolves the
roles of their own organization; security events carry org_id.

DESIGN PRINCIPLES:
- Fail closed: deny by default, require an explicit grant through a role
- Log denials only: permission grants are not logged
"""

from __future__ import annotations

from ..extensions import db
from ..models import User, UserRole, Role, RolePermission, Permission, SecurityEvent
from ..permissions import PERMISSION_DEFINITIONS, DEFAULT_ROLE_PERMISSIONS
from ..time_utils import utcnow


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission."""
    pass


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    org_id: int | None = None,
) -> SecurityEvent:
    """
    Append a security event.

    event_type examples:
    - PERMISSION_DENIED
    - LOGIN_FAILED
    - CROSS_TENANT_ACCESS_DENIED
    """
    event = SecurityEvent(
        user_id=user_id,
        org_id=org_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )

    db.session.add(event)
    db.session.commit()

    return event


def get_user_permissions(user_id: int) -> set[str]:
    """Union of the permission codes of all the user's roles."""
    rows = (
        db.session.query(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .join(Role, Role.id == UserRole.role_id)
        .join(User, User.id == UserRole.user_id)
        .filter(UserRole.user_id == user_id, Role.org_id == User.org_id)
        .all()
    )
    return {code for (code,) in rows}


def user_has_permission(user_id: int, permission_code: str) -> bool:
    user_permissions = get_user_permissions(user_id)
    return "SYSTEM_ADMIN" in user_permissions or permission_code in user_permissions


def require_permission(
    user_id: int,
    permission_code: str,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    org_id: int | None = None,
) -> None:
    """
    Require user to have permission, raise PermissionDeniedError if not.

    Denials are written to security_events.
    """
    if not user_has_permission(user_id, permission_code):
        log_security_event(
            user_id=user_id,
            event_type="PERMISSION_DENIED",
            success=False,
            resource=resource,
            action=permission_code,
            reason=f"Missing permission: {permission_code}",
            ip_address=ip_address,
            user_agent=user_agent,
            org_id=org_id,
        )
        raise PermissionDeniedError(f"Permission denied: {permission_code}")


def get_user_role_names(user_id: int) -> list[str]:
    """Get list of role names for a user."""
    rows = (
        db.session.query(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .order_by(Role.name)
        .all()
    )
    return [name for (name,) in rows]


def initialize_permissions() -> int:
    """
    Create Permission records for all codes in PERMISSION_DEFINITIONS.

    Idempotent: safe to run multiple times.
    """
    existing = {code for (code,) in db.session.query(Permission.code).all()}
    created_count = 0

    for code, name, description, category in PERMISSION_DEFINITIONS:
        if code in existing:
            continue
        db.session.add(Permission(code=code, name=name, description=description, category=category))
        created_count += 1

    db.session.commit()
    return created_count


def assign_default_role_permissions(org_id: int) -> int:
    """
    Link an organization's default roles to their default permission sets.

    Idempotent: skips grants that already exist.
    """
    permissions = {p.code: p for p in db.session.query(Permission).all()}
    created_count = 0

    for role_name, permission_codes in DEFAULT_ROLE_PERMISSIONS.items():
        role = db.session.query(Role).filter_by(org_id=org_id, name=role_name).first()
        if not role:
            continue

        granted = {
            permission_id
            for (permission_id,) in db.session.query(RolePermission.permission_id).filter_by(role_id=role.id).all()
        }
        for permission_code in permission_codes:
            permission = permissions.get(permission_code)
            if not permission or permission.id in granted:
                continue
            db.session.add(RolePermission(role_id=role.id, permission_id=permission.id))
            created_count += 1

    db.session.commit()
    return created_count
