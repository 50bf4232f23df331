from __future__ import annotations

from ..extensions import db
from erp.auditing import auditable
from erp.time_utils import to_utc_z


@auditable(reference="order_number")
class PurchaseOrder(db.Model):
    """
    Purchase order to a supplier.

    LIFECYCLE: PENDING -> APPROVED -> RECEIVED, or CANCELLED.
    Orders above the purchase threshold need a second-party approval
    before they can be received.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("org_id", "order_number", name="uq_purchase_orders_org_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    order_number = db.Column(db.String(64), nullable=False)
    supplier_name = db.Column(db.String(255), nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "order_number": self.order_number,
            "supplier_name": self.supplier_name,
            "total_cents": self.total_cents,
            "notes": self.notes,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "received_at": to_utc_z(self.received_at) if self.received_at else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
