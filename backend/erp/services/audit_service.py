# Overview: Audit mirror persistence helpers: create/update/delete with automatic audit entries.

"""
Audit Service

WHY: Every mutation of an auditable entity must leave an immutable trace of
who changed what, from where, and why.

HOOKS (called by the persistence helpers below, never by model events):
- post-create: one CREATE entry with all non-excluded attributes
- post-update: one UPDATE entry with exactly the changed attributes,
  or no entry when the filtered diff is empty
- pre-delete: one DELETE entry with the last known attributes

The actor and the reason are explicit arguments. Nothing here reads request
globals, and the reason of one call is never reused by the next.

Entries are added to the caller's session; they commit or roll back together
with the change they describe.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from ..auditing import (
    DEFAULT_EXCLUDE,
    audit_options,
    audit_reference,
    changed_attributes,
    filter_auditable_attributes,
    snapshot,
)
from ..context import ActorContext
from ..extensions import db
from ..models import AuditLog
from ..time_utils import utcnow


def _write_entry(
    entity,
    action: str,
    ctx: ActorContext,
    *,
    old_values: dict | None = None,
    new_values: dict | None = None,
    reason: str | None = None,
) -> AuditLog:
    options = audit_options(entity)
    entry = AuditLog(
        org_id=getattr(entity, "org_id", None) or ctx.org_id,
        user_id=ctx.user_id,
        user_email=ctx.user_email or "system",
        action=action,
        auditable_type=type(entity).__name__,
        auditable_id=getattr(entity, "id", None),
        auditable_display_type=options.display_name if options else type(entity).__name__,
        auditable_reference=audit_reference(entity, options),
        old_values=old_values,
        new_values=new_values,
        reason=reason,
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
    )
    db.session.add(entry)
    return entry


def _exclude_for(entity) -> frozenset[str]:
    options = audit_options(entity)
    return options.exclude if options else DEFAULT_EXCLUDE


# -----------------------------------------------------------------------------
# Lifecycle hooks
# -----------------------------------------------------------------------------

def record_create(entity, ctx: ActorContext, reason: str | None = None) -> AuditLog | None:
    """Post-create hook. The entity must already be flushed (it needs its id)."""
    if audit_options(entity) is None:
        return None
    return _write_entry(
        entity,
        AuditLog.ACTION_CREATE,
        ctx,
        new_values=filter_auditable_attributes(snapshot(entity), _exclude_for(entity)),
        reason=reason,
    )


def track_changes(entity) -> dict[str, Any]:
    """Capture the pre-update state for a later record_update()."""
    return snapshot(entity)


def record_update(entity, before: dict[str, Any], ctx: ActorContext, reason: str | None = None) -> AuditLog | None:
    """Post-update hook. Writes nothing when no auditable attribute changed."""
    if audit_options(entity) is None:
        return None
    old_values, new_values = changed_attributes(before, snapshot(entity), _exclude_for(entity))
    if not new_values:
        return None
    return _write_entry(
        entity,
        AuditLog.ACTION_UPDATE,
        ctx,
        old_values=old_values,
        new_values=new_values,
        reason=reason,
    )


def record_delete(entity, ctx: ActorContext, reason: str | None = None) -> AuditLog | None:
    """Pre-delete hook: last known attributes become the old values."""
    if audit_options(entity) is None:
        return None
    return _write_entry(
        entity,
        AuditLog.ACTION_DELETE,
        ctx,
        old_values=filter_auditable_attributes(snapshot(entity), _exclude_for(entity)),
        reason=reason,
    )


# -----------------------------------------------------------------------------
# Persistence helpers
# -----------------------------------------------------------------------------

def create_entity(entity, ctx: ActorContext, reason: str | None = None):
    """Add and flush a new entity, then mirror it to the audit log."""
    db.session.add(entity)
    db.session.flush()
    record_create(entity, ctx, reason)
    return entity


def update_entity(entity, changes: dict[str, Any], ctx: ActorContext, reason: str | None = None) -> AuditLog | None:
    """
    Apply attribute changes and mirror the diff.

    Returns the audit entry, or None when the change set was empty after
    filtering (e.g. only updated_at was touched).
    """
    before = track_changes(entity)
    for key, value in changes.items():
        if not hasattr(entity, key):
            raise ValueError(f"{type(entity).__name__} has no attribute {key}")
        setattr(entity, key, value)
    entry = record_update(entity, before, ctx, reason)
    db.session.flush()
    return entry


def delete_entity(entity, ctx: ActorContext, reason: str | None = None) -> AuditLog | None:
    """
    Delete an entity after mirroring its last state.

    Models with a deleted_at column are soft-deleted so that audit entries
    keep pointing at a readable row.
    """
    entry = record_delete(entity, ctx, reason)
    if hasattr(type(entity), "deleted_at"):
        entity.deleted_at = utcnow()
    else:
        db.session.delete(entity)
    db.session.flush()
    return entry


def log_action(
    entity,
    action: str,
    ctx: ActorContext,
    reason: str | None = None,
    data: dict[str, Any] | None = None,
    old_data: dict[str, Any] | None = None,
) -> AuditLog:
    """
    Record a domain action that is not a plain create/update/delete
    (APPROVE, REJECT, PAYMENT, STATUS_CHANGE, ...).

    data/old_data go through the same exclusion and redaction as entity diffs.
    """
    exclude = _exclude_for(entity)
    return _write_entry(
        entity,
        action,
        ctx,
        old_values=filter_auditable_attributes(old_data, exclude) if old_data else None,
        new_values=filter_auditable_attributes(data, exclude) if data else None,
        reason=reason,
    )


# -----------------------------------------------------------------------------
# Reads and maintenance
# -----------------------------------------------------------------------------

def list_audit_logs(
    org_id: int,
    *,
    action: str | None = None,
    user_id: int | None = None,
    auditable_type: str | None = None,
    auditable_id: int | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[dict], int]:
    """List audit entries for one organization, newest first."""
    query = db.session.query(AuditLog).filter(AuditLog.org_id == org_id)

    if action:
        query = query.filter(AuditLog.action == action.upper())
    if user_id:
        query = query.filter(AuditLog.user_id == user_id)
    if auditable_type:
        query = query.filter(AuditLog.auditable_type == auditable_type)
    if auditable_id:
        query = query.filter(AuditLog.auditable_id == auditable_id)
    if from_date:
        query = query.filter(AuditLog.created_at >= from_date)
    if to_date:
        query = query.filter(AuditLog.created_at <= to_date)

    total = query.count()

    if offset < 0:
        offset = 0
    if limit < 1:
        limit = 1
    if limit > 500:
        limit = 500

    rows = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(offset).limit(limit).all()
    return [r.to_dict() for r in rows], total


def prune_audit_logs(retention_days: int, *, org_id: int | None = None) -> int:
    """
    Delete entries older than retention_days. 0 keeps everything.

    Uses a bulk DELETE; per-row ORM deletes of audit entries are refused.
    """
    if not retention_days or retention_days <= 0:
        return 0

    cutoff = utcnow() - timedelta(days=retention_days)
    query = db.session.query(AuditLog).filter(AuditLog.created_at < cutoff)
    if org_id:
        query = query.filter(AuditLog.org_id == org_id)

    deleted = query.delete(synchronize_session=False)
    db.session.commit()
    return deleted
