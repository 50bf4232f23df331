# Overview: Authentication, user creation and role assignment with separation-of-duties checks.

"""
Authentication Service

MULTI-TENANT: Users belong to exactly one organization (org_id).
Username/email uniqueness is tenant-scoped.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, mixed case, digit and special character
- Session tokens managed separately (see session_service.py)

ROLE SEPARATION: assign_role refuses a role that the tenant policy declares
mutually exclusive with a role the user already holds.
"""

from __future__ import annotations

import re

import bcrypt

from ..context import ActorContext
from ..extensions import db
from ..models import User, Role, UserRole, Organization
from ..permissions import DEFAULT_ROLES
from ..time_utils import utcnow
from . import audit_service, permission_service, settings_service
from .role_separation_service import ensure_roles_compatible


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt (cost factor 12)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def build_actor_context(user: User, ip_address: str | None = None, user_agent: str | None = None) -> ActorContext:
    return ActorContext(
        org_id=user.org_id,
        user_id=user.id,
        user_email=user.email,
        roles=frozenset(permission_service.get_user_role_names(user.id)),
        permissions=frozenset(permission_service.get_user_permissions(user.id)),
        ip_address=ip_address,
        user_agent=user_agent,
    )


def create_user(
    username: str,
    email: str,
    password: str,
    org_id: int,
    full_name: str | None = None,
    ctx: ActorContext | None = None,
) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises:
        ValueError: organization missing/inactive, or username/email taken
        PasswordValidationError: weak password
    """
    org = db.session.get(Organization, org_id)
    if not org:
        raise ValueError("Organization not found")
    if not org.is_active:
        raise ValueError("Organization is not active")

    existing = db.session.query(User).filter(
        User.org_id == org_id,
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ValueError("Username or email already exists in this organization")

    user = User(
        org_id=org_id,
        username=username,
        email=email,
        full_name=full_name,
        password_hash=hash_password(password),
    )
    audit_service.create_entity(user, ctx or ActorContext.system(org_id))
    db.session.commit()
    return user


def change_password(user: User, new_password: str, ctx: ActorContext, reason: str | None = None) -> None:
    audit_service.update_entity(user, {"password_hash": hash_password(new_password)}, ctx, reason)
    db.session.commit()


def authenticate(username: str, password: str, org_id: int | None = None) -> User | None:
    """
    Authenticate by username or email.

    Returns the User on success (and stamps last_login_at), None otherwise.
    Users of inactive organizations cannot log in.
    """
    query = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    )
    if org_id is not None:
        query = query.filter(User.org_id == org_id)

    user = query.first()
    if not user:
        return None

    org = db.session.get(Organization, user.org_id)
    if not org or not org.is_active:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def create_default_roles(org_id: int) -> int:
    """Create the standard roles for an organization if they don't exist."""
    created = 0
    for name, desc in DEFAULT_ROLES:
        existing = db.session.query(Role).filter_by(org_id=org_id, name=name).first()
        if not existing:
            db.session.add(Role(org_id=org_id, name=name, description=desc))
            created += 1

    db.session.commit()
    return created


def _get_org_role(org_id: int, role_name: str) -> Role:
    role = db.session.query(Role).filter_by(org_id=org_id, name=role_name).first()
    if not role:
        raise ValueError(f"Role {role_name} not found")
    return role


def assign_role(user_id: int, role_name: str, ctx: ActorContext, reason: str | None = None) -> UserRole:
    """
    Assign a role to a user of the actor's organization.

    Raises RoleSeparationViolation when the role conflicts with one already held.
    """
    user = db.session.query(User).filter_by(id=user_id, org_id=ctx.org_id).first()
    if not user:
        raise ValueError("User not found")

    role = _get_org_role(user.org_id, role_name)

    existing = db.session.query(UserRole).filter_by(user_id=user.id, role_id=role.id).first()
    if existing:
        return existing

    policy = settings_service.load_policy(user.org_id)
    ensure_roles_compatible(permission_service.get_user_role_names(user.id), role_name, policy.role_separation)

    user_role = UserRole(user_id=user.id, role_id=role.id)
    audit_service.create_entity(user_role, ctx, reason)
    db.session.commit()
    return user_role


def remove_role(user_id: int, role_name: str, ctx: ActorContext, reason: str | None = None) -> bool:
    user = db.session.query(User).filter_by(id=user_id, org_id=ctx.org_id).first()
    if not user:
        raise ValueError("User not found")

    role = _get_org_role(user.org_id, role_name)
    user_role = db.session.query(UserRole).filter_by(user_id=user.id, role_id=role.id).first()
    if not user_role:
        return False

    audit_service.delete_entity(user_role, ctx, reason)
    db.session.commit()
    return True
