# Overview: Sales order booking, approval, fulfillment and payment collection.

"""
Sales Order Service

LIFECYCLE:
    PENDING --approve--> APPROVED --fulfill(DELIVERED)--> COMPLETED
    PENDING --reject--> CANCELLED

BUSINESS RULES:
- Credit orders pass the credit limit guard when booked and again when
  approved; usage is increased at approval (or at booking for orders that
  are approved on creation)
- Orders above the sales_order threshold start PENDING and cannot be
  fulfilled or paid until a different user approves them
- Only booking officers edit order details; only cashiers collect payment;
  the booking officer of an order never collects its payment
"""

from __future__ import annotations

from ..context import ActorContext
from ..exceptions import BusinessRuleViolation, NotFoundError
from ..extensions import db
from ..models import AuditLog, SalesOrder, SalesOrderLine
from ..models.sales import FULFILLMENT_STATUSES, PAYMENT_TYPES
from ..time_utils import utcnow
from . import audit_service, credit_service, permission_service, settings_service
from .approval_service import STATUS_APPROVED, STATUS_PENDING, ensure_approved, initial_status
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .role_separation_service import (
    BOOKING_OFFICER,
    CASHIER,
    ensure_can_collect_payment,
    ensure_can_modify_invoice,
    ensure_not_self_approval,
    ensure_separate_duties,
)


STATUS_COMPLETED = "COMPLETED"
STATUS_CANCELLED = "CANCELLED"

PAYMENT_UNPAID = "UNPAID"
PAYMENT_PARTIAL = "PARTIAL"
PAYMENT_PAID = "PAID"

# Fields editable while an order is still PENDING
EDITABLE_FIELDS = ("notes", "delivery_address")


def calculate_tax(taxable_cents: int, vat_rate_bps: int) -> int:
    """VAT in cents, rounded half up."""
    if taxable_cents <= 0 or vat_rate_bps <= 0:
        return 0
    return (taxable_cents * vat_rate_bps + 5000) // 10000


def _parse_lines(raw_lines) -> list[dict]:
    if not raw_lines:
        raise ValueError("At least one line is required")

    lines = []
    for idx, raw in enumerate(raw_lines, start=1):
        description = (raw.get("description") or "").strip()
        quantity = raw.get("quantity")
        unit_price = raw.get("unit_price_cents")
        if not description:
            raise ValueError(f"Line {idx}: description is required")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValueError(f"Line {idx}: quantity must be a positive integer")
        if isinstance(unit_price, bool) or not isinstance(unit_price, int) or unit_price < 0:
            raise ValueError(f"Line {idx}: unit_price_cents must be a non-negative integer")
        lines.append({
            "sequence": idx,
            "description": description,
            "quantity": quantity,
            "unit_price_cents": unit_price,
            "line_total_cents": quantity * unit_price,
        })
    return lines


def get_sales_order(org_id: int, order_id: int) -> SalesOrder:
    order = db.session.query(SalesOrder).filter(
        SalesOrder.id == order_id,
        SalesOrder.org_id == org_id,
        SalesOrder.deleted_at.is_(None),
    ).first()
    if not order:
        raise NotFoundError(f"Sales order {order_id} not found")
    return order


def _get_order_for_update(org_id: int, order_id: int) -> SalesOrder:
    order = lock_for_update(
        db.session.query(SalesOrder).filter(
            SalesOrder.id == order_id,
            SalesOrder.org_id == org_id,
            SalesOrder.deleted_at.is_(None),
        )
    ).first()
    if not order:
        raise NotFoundError(f"Sales order {order_id} not found")
    return order


def _ensure_released(order: SalesOrder, policy: settings_service.TenantPolicy) -> None:
    """Order must be approved before fulfillment or payment."""
    if order.status == STATUS_CANCELLED:
        raise BusinessRuleViolation(
            f"Sales order {order.order_number} is cancelled",
            {"rule": "order_cancelled", "order_number": order.order_number},
        )
    if order.status == STATUS_PENDING:
        ensure_approved("sales_order", order.total_cents, policy.approvals, order.approved_by_user_id)
        raise BusinessRuleViolation(
            f"Sales order {order.order_number} has not been approved",
            {"rule": "order_not_approved", "order_number": order.order_number},
        )


def order_to_dict(order: SalesOrder) -> dict:
    data = order.to_dict()
    data["lines"] = [line.to_dict() for line in order.lines]
    data["customer"] = {
        "id": order.customer.id,
        "customer_code": order.customer.customer_code,
        "name": order.customer.name,
    }
    return data


# =============================================================================
# BOOKING
# =============================================================================

def create_sales_order(data: dict, ctx: ActorContext, reason: str | None = None) -> SalesOrder:
    """
    Book a sales order.

    data: customer_id, payment_type (cash|credit), lines[{description,
    quantity, unit_price_cents}], optional discount_cents, notes,
    delivery_address.

    Raises:
        CreditLimitExceeded: credit order above the customer's available credit
        BusinessRuleViolation: cash customer buying on credit, blocked facility
    """
    payment_type = data.get("payment_type") or "cash"
    if payment_type not in PAYMENT_TYPES:
        raise ValueError(f"payment_type must be one of {PAYMENT_TYPES}")

    customer_id = data.get("customer_id")
    if not customer_id:
        raise ValueError("customer_id is required")

    lines = _parse_lines(data.get("lines"))
    subtotal = sum(line["line_total_cents"] for line in lines)

    discount = data.get("discount_cents") or 0
    if isinstance(discount, bool) or not isinstance(discount, int) or discount < 0 or discount > subtotal:
        raise ValueError("discount_cents must be between 0 and the subtotal")

    def _op() -> SalesOrder:
        policy = settings_service.load_policy(ctx.org_id)
        customer = credit_service.get_customer_for_update(ctx.org_id, customer_id)

        if not customer.is_active:
            raise BusinessRuleViolation(
                f"Customer {customer.name} is inactive",
                {"rule": "customer_inactive", "customer": customer.name},
            )

        tax = calculate_tax(subtotal - discount, policy.vat_rate_bps)
        total = subtotal - discount + tax

        if payment_type == "credit":
            credit_service.ensure_credit_sale_allowed(customer, total, policy.credit)
        elif customer.credit_blocked and not policy.credit.allow_cash_when_blocked:
            raise BusinessRuleViolation(
                f"Customer {customer.name} is blocked",
                {"rule": "credit_blocked", "customer": customer.name},
            )

        status = initial_status(total, policy.approvals)
        now = utcnow()

        order = SalesOrder(
            org_id=ctx.org_id,
            customer_id=customer.id,
            order_number=next_document_number(org_id=ctx.org_id, document_type="sales_order"),
            payment_type=payment_type,
            status=status,
            fulfillment_status="AWAITING",
            payment_status=PAYMENT_UNPAID,
            subtotal_cents=subtotal,
            discount_cents=discount,
            tax_cents=tax,
            total_cents=total,
            amount_paid_cents=0,
            notes=data.get("notes"),
            delivery_address=data.get("delivery_address") or customer.address,
            created_by_user_id=ctx.user_id,
            approved_at=now if status == STATUS_APPROVED else None,
        )
        for line in lines:
            order.lines.append(SalesOrderLine(**line))
        audit_service.create_entity(order, ctx, reason)

        if status == STATUS_APPROVED and payment_type == "credit":
            credit_service.book_credit_sale_locked(
                customer, total, ctx, policy,
                sales_order_id=order.id, reason=reason,
            )

        db.session.commit()
        return order

    return run_with_retry(_op)


def update_sales_order(order_id: int, data: dict, ctx: ActorContext, reason: str | None = None) -> SalesOrder:
    """Edit order details. Cashiers cannot modify invoices."""
    ensure_can_modify_invoice(ctx.roles)

    unknown = set(data) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Fields cannot be updated here: {', '.join(sorted(unknown))}")

    def _op() -> SalesOrder:
        order = _get_order_for_update(ctx.org_id, order_id)
        if order.status != STATUS_PENDING:
            raise BusinessRuleViolation(
                f"Sales order {order.order_number} can no longer be edited",
                {"rule": "order_locked", "order_number": order.order_number, "status": order.status},
            )
        audit_service.update_entity(order, data, ctx, reason)
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# APPROVAL
# =============================================================================

def approve_sales_order(order_id: int, ctx: ActorContext, reason: str | None = None) -> SalesOrder:
    """
    Approve a PENDING order.

    The creator can never approve their own order. Credit orders are checked
    against the customer's current usage again and booked on the credit ledger.
    """
    def _op() -> SalesOrder:
        policy = settings_service.load_policy(ctx.org_id)
        order = _get_order_for_update(ctx.org_id, order_id)

        if order.status != STATUS_PENDING:
            raise BusinessRuleViolation(
                f"Sales order {order.order_number} is not pending approval",
                {"rule": "invalid_status", "order_number": order.order_number, "status": order.status},
            )

        ensure_not_self_approval("sales order", order.created_by_user_id, ctx.user_id)

        if order.is_credit_order:
            customer = credit_service.get_customer_for_update(ctx.org_id, order.customer_id)
            credit_service.book_credit_sale_locked(
                customer, order.total_cents, ctx, policy,
                sales_order_id=order.id, reason=reason,
            )

        approved_at = utcnow()
        order.status = STATUS_APPROVED
        order.approved_by_user_id = ctx.user_id
        order.approved_at = approved_at
        audit_service.log_action(
            order,
            AuditLog.ACTION_APPROVE,
            ctx,
            reason,
            data={"status": STATUS_APPROVED, "approved_by_user_id": ctx.user_id, "approved_at": approved_at},
            old_data={"status": STATUS_PENDING},
        )

        db.session.commit()
        return order

    return run_with_retry(_op)


def reject_sales_order(order_id: int, ctx: ActorContext, reason: str) -> SalesOrder:
    """Reject a PENDING order. A reason is mandatory."""
    if not (reason or "").strip():
        raise ValueError("reason is required to reject an order")

    def _op() -> SalesOrder:
        order = _get_order_for_update(ctx.org_id, order_id)
        if order.status != STATUS_PENDING:
            raise BusinessRuleViolation(
                f"Sales order {order.order_number} is not pending approval",
                {"rule": "invalid_status", "order_number": order.order_number, "status": order.status},
            )

        order.status = STATUS_CANCELLED
        order.cancelled_by_user_id = ctx.user_id
        order.cancelled_at = utcnow()
        order.cancel_reason = reason[:255]
        audit_service.log_action(
            order,
            AuditLog.ACTION_REJECT,
            ctx,
            reason,
            data={"status": STATUS_CANCELLED},
            old_data={"status": STATUS_PENDING},
        )

        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# FULFILLMENT
# =============================================================================

def fulfill_sales_order(
    order_id: int,
    fulfillment_status: str,
    ctx: ActorContext,
    reason: str | None = None,
) -> SalesOrder:
    """
    Move fulfillment forward (AWAITING -> PROCESSING -> SHIPPED -> DELIVERED).

    Raises ApprovalRequired for an order above the threshold that has not
    been approved. DELIVERED completes the order.
    """
    if fulfillment_status not in FULFILLMENT_STATUSES:
        raise ValueError(f"fulfillment_status must be one of {FULFILLMENT_STATUSES}")

    def _op() -> SalesOrder:
        policy = settings_service.load_policy(ctx.org_id)
        order = _get_order_for_update(ctx.org_id, order_id)
        _ensure_released(order, policy)

        current = FULFILLMENT_STATUSES.index(order.fulfillment_status)
        target = FULFILLMENT_STATUSES.index(fulfillment_status)
        if target <= current:
            raise BusinessRuleViolation(
                f"Cannot move fulfillment from {order.fulfillment_status} to {fulfillment_status}",
                {"rule": "invalid_transition", "order_number": order.order_number,
                 "from": order.fulfillment_status, "to": fulfillment_status},
            )

        old = {"fulfillment_status": order.fulfillment_status, "status": order.status}
        order.fulfillment_status = fulfillment_status
        if fulfillment_status == "DELIVERED":
            order.status = STATUS_COMPLETED
            order.completed_at = utcnow()

        audit_service.log_action(
            order,
            AuditLog.ACTION_STATUS_CHANGE,
            ctx,
            reason,
            data={"fulfillment_status": order.fulfillment_status, "status": order.status},
            old_data=old,
        )
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# PAYMENT
# =============================================================================

def collect_payment(
    order_id: int,
    amount_cents: int,
    ctx: ActorContext,
    *,
    payment_method: str = "cash",
    reason: str | None = None,
) -> SalesOrder:
    """
    Record a payment against an approved order.

    Booking officers cannot collect payment, and the user who booked an order
    as booking officer cannot collect it in another capacity. Payments on
    credit orders reduce the customer's credit usage.
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValueError("amount_cents must be a positive integer")

    ensure_can_collect_payment(ctx.roles)

    def _op() -> SalesOrder:
        policy = settings_service.load_policy(ctx.org_id)
        order = _get_order_for_update(ctx.org_id, order_id)

        if order.created_by_user_id is not None and BOOKING_OFFICER in permission_service.get_user_role_names(order.created_by_user_id):
            ensure_separate_duties(
                order.created_by_user_id, BOOKING_OFFICER,
                ctx.user_id, CASHIER,
                policy.role_separation,
            )

        _ensure_released(order, policy)

        if amount_cents > order.balance_due_cents:
            raise BusinessRuleViolation(
                f"Payment exceeds the balance due on {order.order_number}",
                {"rule": "overpayment", "order_number": order.order_number,
                 "balance_due": order.balance_due_cents, "amount": amount_cents},
            )

        old = {"amount_paid_cents": order.amount_paid_cents, "payment_status": order.payment_status}
        order.amount_paid_cents = order.amount_paid_cents + amount_cents
        order.payment_status = PAYMENT_PAID if order.balance_due_cents == 0 else PAYMENT_PARTIAL

        if order.is_credit_order:
            customer = credit_service.get_customer_for_update(ctx.org_id, order.customer_id)
            credit_service.apply_payment_locked(
                customer, amount_cents, ctx,
                sales_order_id=order.id, payment_method=payment_method, reason=reason,
            )

        audit_service.log_action(
            order,
            AuditLog.ACTION_PAYMENT,
            ctx,
            reason,
            data={
                "amount_cents": amount_cents,
                "payment_method": payment_method,
                "amount_paid_cents": order.amount_paid_cents,
                "payment_status": order.payment_status,
            },
            old_data=old,
        )
        db.session.commit()
        return order

    return run_with_retry(_op)


def list_sales_orders(
    org_id: int,
    *,
    status: str | None = None,
    customer_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[SalesOrder], int]:
    query = db.session.query(SalesOrder).filter(
        SalesOrder.org_id == org_id,
        SalesOrder.deleted_at.is_(None),
    )
    if status:
        query = query.filter(SalesOrder.status == status.upper())
    if customer_id:
        query = query.filter(SalesOrder.customer_id == customer_id)

    total = query.count()
    limit = max(1, min(limit, 500))
    rows = query.order_by(SalesOrder.id.desc()).offset(max(0, offset)).limit(limit).all()
    return rows, total
