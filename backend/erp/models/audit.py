from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from erp.time_utils import to_utc_z


class AuditLogImmutableError(RuntimeError):
    """Raised when code attempts to modify or delete a persisted audit entry."""


class AuditLog(db.Model):
    """
    Business audit trail: one entry per mutation of an auditable entity.

    IMMUTABLE: Entries are append-only. The ORM refuses updates and deletes;
    retention pruning uses a bulk DELETE in audit_service and nothing else.

    old_values / new_values hold only filtered, redacted attributes.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_org_created", "org_id", "created_at"),
        db.Index("ix_audit_logs_auditable", "auditable_type", "auditable_id"),
        {"sqlite_autoincrement": True},
    )

    ACTION_CREATE = "CREATE"
    ACTION_UPDATE = "UPDATE"
    ACTION_DELETE = "DELETE"
    ACTION_APPROVE = "APPROVE"
    ACTION_REJECT = "REJECT"
    ACTION_CANCEL = "CANCEL"
    ACTION_STATUS_CHANGE = "STATUS_CHANGE"
    ACTION_PAYMENT = "PAYMENT"
    ACTION_LOGIN = "LOGIN"
    ACTION_LOGOUT = "LOGOUT"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    user_email = db.Column(db.String(255), nullable=False, default="system")

    action = db.Column(db.String(32), nullable=False, index=True)

    auditable_type = db.Column(db.String(128), nullable=True, index=True)
    auditable_id = db.Column(db.Integer, nullable=True)
    auditable_display_type = db.Column(db.String(128), nullable=True)
    auditable_reference = db.Column(db.String(255), nullable=True)

    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)
    reason = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "user_id": self.user_id,
            "user_email": self.user_email,
            "action": self.action,
            "auditable_type": self.auditable_type,
            "auditable_id": self.auditable_id,
            "auditable_display_type": self.auditable_display_type,
            "auditable_reference": self.auditable_reference,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(AuditLog, "before_update")
def _refuse_audit_update(mapper, connection, target):
    raise AuditLogImmutableError("Audit log entries cannot be modified")


@event.listens_for(AuditLog, "before_delete")
def _refuse_audit_delete(mapper, connection, target):
    raise AuditLogImmutableError("Audit log entries cannot be deleted")
