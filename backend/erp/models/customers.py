from __future__ import annotations

from ..extensions import db
from erp.auditing import auditable
from erp.time_utils import to_iso_date, to_utc_z


CUSTOMER_TYPES = ("cash", "credit", "both")


@auditable(reference="customer_code")
class Customer(db.Model):
    """
    Customer master data with credit facility.

    MULTI-TENANT: Customers are scoped to organizations via org_id.

    CREDIT:
    - outstanding_balance_cents is the current credit usage
    - usage must never exceed credit_limit_cents while the limit is enforced
    - usage only changes under a row lock (credit_service); version_id guards
      against lost updates from concurrent requests

    Never hard-deleted: deleted_at marks a removed customer so audit entries
    stay dereferenceable.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("org_id", "customer_code", name="uq_customers_org_code"),
        db.Index("ix_customers_org_active", "org_id", "is_active"),
        db.CheckConstraint("outstanding_balance_cents >= 0", name="ck_customers_usage_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    customer_code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.Text, nullable=True)

    customer_type = db.Column(db.String(16), nullable=False, default="cash")  # cash, credit, both

    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)
    outstanding_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_terms_days = db.Column(db.Integer, nullable=False, default=0)
    credit_blocked = db.Column(db.Boolean, nullable=False, default=False)

    total_purchases_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    organization = db.relationship("Organization", backref=db.backref("customers", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_cash_only(self) -> bool:
        return self.customer_type == "cash"

    @property
    def available_credit_cents(self) -> int:
        if self.is_cash_only:
            return 0
        return max(0, self.credit_limit_cents - self.outstanding_balance_cents)

    @property
    def credit_usage_pct(self) -> float:
        if self.credit_limit_cents <= 0:
            return 0.0
        return round(self.outstanding_balance_cents * 100 / self.credit_limit_cents, 2)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "customer_code": self.customer_code,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "customer_type": self.customer_type,
            "credit_limit_cents": self.credit_limit_cents,
            "outstanding_balance_cents": self.outstanding_balance_cents,
            "available_credit_cents": self.available_credit_cents,
            "payment_terms_days": self.payment_terms_days,
            "credit_blocked": self.credit_blocked,
            "total_purchases_cents": self.total_purchases_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


@auditable(reference="reference")
class CreditTransaction(db.Model):
    """
    One credit sale booked against a customer's facility.

    STATUS: pending -> partial -> paid, or overdue once due_date has passed.
    due_date = transaction_date + payment_terms_days + tenant grace period.
    """
    __tablename__ = "credit_transactions"
    __table_args__ = (
        db.Index("ix_credit_txns_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    sales_order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=True, index=True)

    reference = db.Column(db.String(64), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_cents = db.Column(db.Integer, nullable=False)

    transaction_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False, index=True)
    paid_date = db.Column(db.Date, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("credit_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "sales_order_id": self.sales_order_id,
            "reference": self.reference,
            "amount_cents": self.amount_cents,
            "paid_cents": self.paid_cents,
            "balance_cents": self.balance_cents,
            "transaction_date": to_iso_date(self.transaction_date),
            "due_date": to_iso_date(self.due_date),
            "paid_date": to_iso_date(self.paid_date),
            "status": self.status,
        }


@auditable(reference="reference")
class CreditPayment(db.Model):
    """
    Payment applied against a customer's outstanding credit.

    IMMUTABLE: Reversals are recorded as new rows, never as edits.
    """
    __tablename__ = "credit_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    sales_order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=True, index=True)

    reference = db.Column(db.String(64), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False, default="cash")
    is_on_time = db.Column(db.Boolean, nullable=False, default=True)
    days_late = db.Column(db.Integer, nullable=False, default=0)

    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "sales_order_id": self.sales_order_id,
            "reference": self.reference,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "is_on_time": self.is_on_time,
            "days_late": self.days_late,
            "received_by_user_id": self.received_by_user_id,
            "received_at": to_utc_z(self.received_at),
        }


@auditable
class CreditLimitChange(db.Model):
    """
    Requested change of a customer's credit limit awaiting sign-off.

    STATUS: PENDING -> APPROVED or REJECTED. The limit on the customer only
    moves when a user other than the requester approves the change with their
    own session.
    """
    __tablename__ = "credit_limit_changes"
    __table_args__ = (
        db.Index("ix_credit_limit_changes_org_status", "org_id", "status"),
        {"sqlite_autoincrement": True},
    )

    STATUS_PENDING = "PENDING"
    STATUS_APPROVED = "APPROVED"
    STATUS_REJECTED = "REJECTED"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    old_limit_cents = db.Column(db.Integer, nullable=False)
    requested_limit_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="PENDING")
    reason = db.Column(db.Text, nullable=True)

    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    decided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    decision_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("credit_limit_changes", lazy=True))

    @property
    def increase_cents(self) -> int:
        return self.requested_limit_cents - self.old_limit_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "old_limit_cents": self.old_limit_cents,
            "requested_limit_cents": self.requested_limit_cents,
            "increase_cents": self.increase_cents,
            "status": self.status,
            "reason": self.reason,
            "requested_by_user_id": self.requested_by_user_id,
            "decided_by_user_id": self.decided_by_user_id,
            "decided_at": to_utc_z(self.decided_at),
            "decision_reason": self.decision_reason,
            "created_at": to_utc_z(self.created_at),
        }
