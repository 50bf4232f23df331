# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/erp/cli.py
# Commands Legend (run from the backend directory, FLASK_APP=erp):
#
# System bootstrap:
# - flask system init [--org "Org Name"] [--org-code CODE]
#   Idempotent bootstrap: organization, permissions, roles and one user per role.
#
# Organization management:
# - flask orgs list
# - flask orgs create --name "Acme Agro" --code "ACME"
#
# Users:
# - flask users list [--org-id 1]
# - flask users create --org-id 1 --username ada --email ada@example.com --password "Password123!" --role cashier
# - flask users assign-role --org-id 1 --username ada --role accountant
#
# Credit control:
# - flask credit alerts --org-id 1
#   Mark overdue credit transactions, then list near-limit, over-limit, blocked and overdue customers.
#
# Audit:
# - flask audit prune [--retention-days N] [--org-id 1]
#   Delete audit entries older than the retention window (defaults to AUDIT_RETENTION_DAYS).

import click
from flask import current_app
from flask.cli import with_appcontext

from .context import ActorContext
from .exceptions import BusinessRuleViolation
from .extensions import db
from .models import Organization, User
from .permissions import DEFAULT_ROLES
from .services import audit_service, credit_service, permission_service, settings_service
from .services.auth_service import create_user, create_default_roles, assign_role, PasswordValidationError


DEFAULT_PASSWORD = "Password123!"


def _init_org_security(org_id: int) -> tuple[int, int]:
    create_default_roles(org_id)
    perm_count = permission_service.initialize_permissions()
    assignment_count = permission_service.assign_default_role_permissions(org_id)
    return perm_count, assignment_count


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--org', 'org_name', default='Default Organization', help='Organization name')
@click.option('--org-code', default='DEFAULT', help='Organization code')
@with_appcontext
def init_system(org_name, org_code):
    """
    Initialize organization, permissions, roles and default users.

    One user per default role is created, all with password "Password123!".
    Change passwords immediately in production.
    """
    db.create_all()

    org = db.session.query(Organization).filter_by(code=org_code).first()
    if not org:
        org = Organization(name=org_name, code=org_code, is_active=True)
        db.session.add(org)
        db.session.commit()
        click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")
    else:
        click.echo(f"PASS Using existing organization: {org.name} (ID: {org.id})")

    perm_count, assignment_count = _init_org_security(org.id)
    click.echo(f"PASS Created {perm_count} permissions, {assignment_count} role grants")

    ctx = ActorContext.system(org.id)
    for role_name, _ in DEFAULT_ROLES:
        username = role_name
        existing = db.session.query(User).filter_by(org_id=org.id, username=username).first()
        if existing:
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            user = create_user(
                username=username,
                email=f"{username}@{org.code.lower()}.local",
                password=DEFAULT_PASSWORD,
                org_id=org.id,
                ctx=ctx,
            )
            assign_role(user.id, role_name, ctx, reason="System bootstrap")
            click.echo(f"PASS Created user: {username} with role '{role_name}'")
        except (PasswordValidationError, ValueError, BusinessRuleViolation) as e:
            db.session.rollback()
            click.echo(f"FAIL Failed to create user '{username}': {e}")

    click.echo(f"\nDONE Organization {org.name} ready. Default password: {DEFAULT_PASSWORD}")


# =============================================================================
# ORGANIZATION MANAGEMENT COMMANDS
# =============================================================================

@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).order_by(Organization.id).all()
    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Users'}")
    click.echo("="*70)
    for org in orgs:
        user_count = db.session.query(User).filter_by(org_id=org.id).count()
        active_str = "Yes" if org.is_active else "No"
        click.echo(f"{org.id:<5} {org.name:<30} {org.code or '-':<15} {active_str:<8} {user_count}")
    click.echo("="*70 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_org_cli(name, code):
    """Create a new organization with default roles and permissions."""
    existing = db.session.query(Organization).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Organization with code '{code}' already exists")
        return

    org = Organization(name=name, code=code, is_active=True)
    db.session.add(org)
    db.session.commit()
    _init_org_security(org.id)
    click.echo(f"PASS Created organization: {org.name} (ID: {org.id})")


# =============================================================================
# USER COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@click.option('--org-id', type=int, help='Filter by organization ID')
@with_appcontext
def list_users(org_id):
    """List users with their roles."""
    query = db.session.query(User)
    if org_id:
        query = query.filter_by(org_id=org_id)
    users = query.order_by(User.org_id, User.username).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Org':<5} {'Username':<20} {'Email':<30} {'Active':<8} {'Roles'}")
    click.echo("="*100)
    for user in users:
        roles_str = ", ".join(permission_service.get_user_role_names(user.id)) or "none"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.org_id:<5} {user.username:<20} {user.email:<30} {active_str:<8} {roles_str}")
    click.echo("="*100 + "\n")


@users_group.command('create')
@click.option('--org-id', type=int, required=True)
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', 'role_name', default=None, help='Role to assign')
@with_appcontext
def create_user_cli(org_id, username, email, password, role_name):
    """Create a user, optionally with one role."""
    ctx = ActorContext.system(org_id)
    try:
        user = create_user(username=username, email=email, password=password, org_id=org_id, ctx=ctx)
        if role_name:
            assign_role(user.id, role_name, ctx)
    except (PasswordValidationError, ValueError, BusinessRuleViolation) as e:
        db.session.rollback()
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user {user.username} (ID: {user.id})")


@users_group.command('assign-role')
@click.option('--org-id', type=int, required=True)
@click.option('--username', required=True)
@click.option('--role', 'role_name', required=True)
@click.option('--reason', default=None)
@with_appcontext
def assign_role_cli(org_id, username, role_name, reason):
    """Assign a role; mutually exclusive roles are refused."""
    user = db.session.query(User).filter_by(org_id=org_id, username=username).first()
    if not user:
        raise click.ClickException(f"User '{username}' not found")
    try:
        assign_role(user.id, role_name, ActorContext.system(org_id), reason)
    except (ValueError, BusinessRuleViolation) as e:
        db.session.rollback()
        raise click.ClickException(str(e))
    click.echo(f"PASS {username}: {', '.join(permission_service.get_user_role_names(user.id))}")


# =============================================================================
# CREDIT CONTROL
# =============================================================================

@click.group('credit')
def credit_group():
    """Credit control commands."""


@credit_group.command('alerts')
@click.option('--org-id', type=int, required=True)
@with_appcontext
def credit_alerts_cli(org_id):
    """Flag overdue credit and list customers needing attention."""
    flagged = credit_service.mark_overdue_transactions(org_id)
    alerts = credit_service.credit_alerts(org_id)

    click.echo(f"Overdue transactions flagged: {flagged}")
    click.echo(f"Warning threshold: {alerts['warning_threshold_pct']}%")
    for section in ("near_limit", "over_limit", "blocked", "overdue"):
        rows = alerts[section]
        click.echo(f"\n{section.upper()} ({len(rows)})")
        for row in rows:
            click.echo(
                f"  {row['customer_code']:<12} {row['name']:<30} "
                f"{row['current_usage_cents']:>14} / {row['credit_limit_cents']:<14} {row['usage_pct']}%"
            )


# =============================================================================
# AUDIT
# =============================================================================

@click.group('audit')
def audit_group():
    """Audit trail maintenance commands."""


@audit_group.command('prune')
@click.option('--retention-days', type=int, default=None, help='Defaults to the tenant/app retention setting')
@click.option('--org-id', type=int, default=None)
@with_appcontext
def prune_audit_cli(retention_days, org_id):
    """Delete audit entries older than the retention window. 0 keeps everything."""
    if retention_days is None:
        if org_id:
            retention_days = settings_service.load_policy(org_id).audit_retention_days
        else:
            retention_days = current_app.config.get("AUDIT_RETENTION_DAYS", 0)

    deleted = audit_service.prune_audit_logs(retention_days, org_id=org_id)
    click.echo(f"Deleted {deleted} audit entries older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)
    app.cli.add_command(users_group)
    app.cli.add_command(credit_group)
    app.cli.add_command(audit_group)
