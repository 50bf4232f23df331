from __future__ import annotations

from ..extensions import db
from erp.auditing import auditable
from erp.time_utils import to_utc_z


PAYMENT_TYPES = ("cash", "credit")
FULFILLMENT_STATUSES = ("AWAITING", "PROCESSING", "SHIPPED", "DELIVERED")


@auditable(reference="order_number")
class SalesOrder(db.Model):
    """
    Sales order (booking) document.

    LIFECYCLE: PENDING -> APPROVED -> COMPLETED (fulfilled), or CANCELLED.
    Payment is tracked separately: UNPAID -> PARTIAL -> PAID.

    APPROVAL: an order whose total is above the tenant threshold cannot be
    fulfilled until approved_by_user_id/approved_at are set, and the approver
    must not be the creator.
    """
    __tablename__ = "sales_orders"
    __table_args__ = (
        db.UniqueConstraint("org_id", "order_number", name="uq_sales_orders_org_number"),
        db.Index("ix_sales_orders_org_status_created", "org_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    order_number = db.Column(db.String(64), nullable=False)
    payment_type = db.Column(db.String(16), nullable=False, default="cash")  # cash, credit

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    fulfillment_status = db.Column(db.String(16), nullable=False, default="AWAITING")
    payment_status = db.Column(db.String(16), nullable=False, default="UNPAID", index=True)  # UNPAID, PARTIAL, PAID

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    delivery_address = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales_orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_credit_order(self) -> bool:
        return self.payment_type == "credit"

    @property
    def balance_due_cents(self) -> int:
        return max(0, self.total_cents - self.amount_paid_cents)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "customer_id": self.customer_id,
            "order_number": self.order_number,
            "payment_type": self.payment_type,
            "status": self.status,
            "fulfillment_status": self.fulfillment_status,
            "payment_status": self.payment_status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "balance_due_cents": self.balance_due_cents,
            "notes": self.notes,
            "delivery_address": self.delivery_address,
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class SalesOrderLine(db.Model):
    """Individual line items on a sales order."""
    __tablename__ = "sales_order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sales_order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=False, index=True)

    sequence = db.Column(db.Integer, nullable=False, default=1)
    description = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sales_order = db.relationship(
        "SalesOrder",
        backref=db.backref("lines", lazy=True, order_by="SalesOrderLine.sequence"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sales_order_id": self.sales_order_id,
            "sequence": self.sequence,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
