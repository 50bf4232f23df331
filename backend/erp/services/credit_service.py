# Overview: Customer credit facility: limit guard, credit sales, payments, limit changes and alerts.

"""
Credit Management Service

WHY: Credit customers may owe at most their credit limit. The limit check
and the usage update happen on the same locked customer row in the same
transaction, so two concurrent sales cannot both pass the check.

CONCURRENCY:
- Customer row read with SELECT ... FOR UPDATE (lock_for_update)
- Customer.version_id rejects stale writes (StaleDataError)
- run_with_retry retries lock/version conflicts with backoff

All amounts are integer minor units (cents).
"""

from __future__ import annotations

import logging

from ..context import ActorContext
from ..exceptions import BusinessRuleViolation, CreditLimitExceeded, NotFoundError
from ..extensions import db
from ..models import AuditLog, CreditLimitChange, CreditPayment, CreditTransaction, Customer
from ..time_utils import add_days, today, to_iso_date, utcnow
from . import audit_service, settings_service
from .approval_service import requires_approval
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .role_separation_service import ensure_not_self_approval
from .settings_service import CreditPolicy, TenantPolicy


logger = logging.getLogger(__name__)


TXN_PENDING = "pending"
TXN_PARTIAL = "partial"
TXN_PAID = "paid"
TXN_OVERDUE = "overdue"
OPEN_TXN_STATUSES = (TXN_PENDING, TXN_PARTIAL, TXN_OVERDUE)


# =============================================================================
# GUARD
# =============================================================================

def check_credit_limit(customer: Customer, order_amount: int, policy: CreditPolicy) -> None:
    """
    Refuse a credit sale larger than the customer's available credit.

    available = credit_limit - current_usage; fails iff order_amount > available.
    Silent on success and never mutates the customer.
    """
    if not policy.enforce_limit:
        return
    if customer.is_cash_only:
        return

    usage = customer.outstanding_balance_cents or 0
    limit = customer.credit_limit_cents or 0
    if usage < 0:
        raise BusinessRuleViolation(
            f"Customer {customer.name} has negative credit usage",
            {"rule": "negative_credit_usage", "customer": customer.name, "current_usage": usage},
        )

    if order_amount > limit - usage:
        raise CreditLimitExceeded(customer.name, limit, usage, order_amount)


def is_credit_allowed(customer: Customer) -> bool:
    """Customer has a credit facility that is usable right now."""
    if not customer.is_active or customer.deleted_at is not None:
        return False
    if customer.credit_blocked:
        return False
    return customer.customer_type in ("credit", "both") or (customer.credit_limit_cents or 0) > 0


def ensure_credit_sale_allowed(customer: Customer, amount_cents: int, policy: CreditPolicy) -> None:
    if customer.is_cash_only:
        raise BusinessRuleViolation(
            f"Customer {customer.name} is a cash customer and cannot buy on credit",
            {"rule": "cash_customer", "customer": customer.name},
        )
    if not is_credit_allowed(customer):
        raise BusinessRuleViolation(
            f"Credit is not available for {customer.name}",
            {"rule": "credit_blocked" if customer.credit_blocked else "credit_not_allowed", "customer": customer.name},
        )
    check_credit_limit(customer, amount_cents, policy)


# =============================================================================
# HELPERS
# =============================================================================

def get_customer(org_id: int, customer_id: int) -> Customer:
    customer = db.session.query(Customer).filter(
        Customer.id == customer_id,
        Customer.org_id == org_id,
        Customer.deleted_at.is_(None),
    ).first()
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def get_customer_for_update(org_id: int, customer_id: int) -> Customer:
    customer = lock_for_update(
        db.session.query(Customer).filter(
            Customer.id == customer_id,
            Customer.org_id == org_id,
            Customer.deleted_at.is_(None),
        )
    ).first()
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def ensure_credit_approver(ctx: ActorContext, change: CreditLimitChange) -> None:
    """The approver of a limit change is the acting user: not the requester, holding APPROVE_CREDIT_LIMIT."""
    ensure_not_self_approval("credit limit change", change.requested_by_user_id, ctx.user_id)
    if ctx.user_id is None or not ctx.has_permission("APPROVE_CREDIT_LIMIT"):
        raise BusinessRuleViolation(
            "Approver is not allowed to approve credit limit changes",
            {"rule": "approver_not_authorized", "approver_user_id": ctx.user_id},
            403,
        )


def _validate_amount(amount_cents) -> int:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise ValueError("amount_cents must be an integer")
    if amount_cents <= 0:
        raise ValueError("amount_cents must be positive")
    return amount_cents


def _warn_if_near_limit(customer: Customer, policy: CreditPolicy) -> None:
    if customer.credit_limit_cents <= 0:
        return
    if customer.credit_usage_pct >= policy.warning_threshold_pct:
        logger.warning(
            "Customer %s (%s) at %.2f%% of credit limit (%s of %s)",
            customer.customer_code,
            customer.id,
            customer.credit_usage_pct,
            customer.outstanding_balance_cents,
            customer.credit_limit_cents,
        )


def _open_transactions(customer_id: int) -> list[CreditTransaction]:
    return (
        db.session.query(CreditTransaction)
        .filter(
            CreditTransaction.customer_id == customer_id,
            CreditTransaction.status.in_(OPEN_TXN_STATUSES),
        )
        .order_by(CreditTransaction.transaction_date.asc(), CreditTransaction.id.asc())
        .all()
    )


# =============================================================================
# LOCKED OPERATIONS (caller owns the transaction)
# =============================================================================

def book_credit_sale_locked(
    customer: Customer,
    amount_cents: int,
    ctx: ActorContext,
    policy: TenantPolicy,
    *,
    sales_order_id: int | None = None,
    reason: str | None = None,
) -> CreditTransaction:
    """
    Check the limit and increase usage on an already locked customer.

    Used by record_credit_sale and by sales order approval, which needs the
    credit booking inside its own transaction.
    """
    ensure_credit_sale_allowed(customer, amount_cents, policy.credit)

    before = audit_service.track_changes(customer)
    customer.outstanding_balance_cents = customer.outstanding_balance_cents + amount_cents
    customer.total_purchases_cents = customer.total_purchases_cents + amount_cents
    audit_service.record_update(customer, before, ctx, reason)

    txn_date = today()
    txn = CreditTransaction(
        org_id=customer.org_id,
        customer_id=customer.id,
        sales_order_id=sales_order_id,
        reference=next_document_number(org_id=customer.org_id, document_type="credit_transaction"),
        amount_cents=amount_cents,
        paid_cents=0,
        balance_cents=amount_cents,
        transaction_date=txn_date,
        due_date=add_days(txn_date, (customer.payment_terms_days or 0) + policy.credit.grace_period_days),
        status=TXN_PENDING,
    )
    audit_service.create_entity(txn, ctx, reason)

    _warn_if_near_limit(customer, policy.credit)
    return txn


def apply_payment_locked(
    customer: Customer,
    amount_cents: int,
    ctx: ActorContext,
    *,
    sales_order_id: int | None = None,
    payment_method: str = "cash",
    reason: str | None = None,
) -> CreditPayment:
    """
    Reduce usage on an already locked customer and allocate the payment to
    open credit transactions, oldest first (the given order's own
    transactions before any other). Usage never goes below zero.
    """
    on_date = today()
    open_txns = _open_transactions(customer.id)
    if sales_order_id is not None:
        # the order being paid comes first, then oldest first
        open_txns.sort(key=lambda t: t.sales_order_id != sales_order_id)

    days_late = 0
    if open_txns and open_txns[0].due_date < on_date:
        days_late = (on_date - open_txns[0].due_date).days

    remaining = amount_cents
    for txn in open_txns:
        if remaining <= 0:
            break
        portion = min(remaining, txn.balance_cents)
        before = audit_service.track_changes(txn)
        txn.paid_cents = txn.paid_cents + portion
        txn.balance_cents = txn.balance_cents - portion
        if txn.balance_cents == 0:
            txn.status = TXN_PAID
            txn.paid_date = on_date
        elif txn.status == TXN_PENDING:
            txn.status = TXN_PARTIAL
        audit_service.record_update(txn, before, ctx, reason)
        remaining -= portion

    before = audit_service.track_changes(customer)
    customer.outstanding_balance_cents = max(0, customer.outstanding_balance_cents - amount_cents)
    audit_service.record_update(customer, before, ctx, reason)

    payment = CreditPayment(
        org_id=customer.org_id,
        customer_id=customer.id,
        sales_order_id=sales_order_id,
        reference=next_document_number(org_id=customer.org_id, document_type="credit_payment"),
        amount_cents=amount_cents,
        payment_method=payment_method,
        is_on_time=days_late == 0,
        days_late=days_late,
        received_by_user_id=ctx.user_id,
    )
    audit_service.create_entity(payment, ctx, reason)
    return payment


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================

def record_credit_sale(
    customer_id: int,
    amount_cents: int,
    ctx: ActorContext,
    *,
    sales_order_id: int | None = None,
    reason: str | None = None,
) -> CreditTransaction:
    """
    Book a credit sale against a customer's facility.

    Raises:
        CreditLimitExceeded: amount above available credit
        BusinessRuleViolation: cash customer, blocked or inactive facility
        NotFoundError: unknown customer in the actor's organization
    """
    _validate_amount(amount_cents)

    def _op() -> CreditTransaction:
        policy = settings_service.load_policy(ctx.org_id)
        customer = get_customer_for_update(ctx.org_id, customer_id)
        txn = book_credit_sale_locked(
            customer, amount_cents, ctx, policy,
            sales_order_id=sales_order_id, reason=reason,
        )
        db.session.commit()
        return txn

    return run_with_retry(_op)


def apply_payment(
    customer_id: int,
    amount_cents: int,
    ctx: ActorContext,
    *,
    payment_method: str = "cash",
    reason: str | None = None,
) -> CreditPayment:
    """Apply a payment to a customer's outstanding credit."""
    _validate_amount(amount_cents)

    def _op() -> CreditPayment:
        customer = get_customer_for_update(ctx.org_id, customer_id)
        if customer.outstanding_balance_cents <= 0:
            raise BusinessRuleViolation(
                f"Customer {customer.name} has no outstanding credit",
                {"rule": "no_outstanding_balance", "customer": customer.name},
            )
        payment = apply_payment_locked(
            customer, amount_cents, ctx,
            payment_method=payment_method, reason=reason,
        )
        db.session.commit()
        return payment

    return run_with_retry(_op)


def _ensure_limit_allowed(customer: Customer, new_limit_cents: int) -> None:
    if customer.is_cash_only:
        raise BusinessRuleViolation(
            f"Customer {customer.name} is a cash customer; change the customer type first",
            {"rule": "cash_customer", "customer": customer.name},
        )
    if new_limit_cents < customer.outstanding_balance_cents:
        raise BusinessRuleViolation(
            "Credit limit cannot be set below current usage",
            {
                "rule": "limit_below_usage",
                "customer": customer.name,
                "current_usage": customer.outstanding_balance_cents,
                "requested_limit": new_limit_cents,
            },
        )


def _pending_change(customer_id: int) -> CreditLimitChange | None:
    return db.session.query(CreditLimitChange).filter_by(
        customer_id=customer_id, status=CreditLimitChange.STATUS_PENDING,
    ).first()


def record_limit_change_request(
    customer: Customer,
    new_limit_cents: int,
    ctx: ActorContext,
    reason: str | None = None,
) -> CreditLimitChange:
    """Record a pending limit change on an already flushed customer; the limit itself is untouched."""
    if _pending_change(customer.id) is not None:
        raise BusinessRuleViolation(
            f"Customer {customer.name} already has a credit limit change awaiting approval",
            {"rule": "pending_change_exists", "customer": customer.name},
        )
    change = CreditLimitChange(
        org_id=customer.org_id,
        customer_id=customer.id,
        old_limit_cents=customer.credit_limit_cents,
        requested_limit_cents=new_limit_cents,
        status=CreditLimitChange.STATUS_PENDING,
        reason=reason,
        requested_by_user_id=ctx.user_id,
    )
    audit_service.create_entity(change, ctx, reason)
    return change


def update_credit_limit(
    customer_id: int,
    new_limit_cents: int,
    ctx: ActorContext,
    *,
    reason: str | None = None,
) -> CreditLimitChange | None:
    """
    Change a customer's credit limit.

    RULES:
    - Cash customers have no facility to change
    - The new limit cannot be below current usage
    - An increase above the credit_limit_change threshold is not applied;
      a PENDING CreditLimitChange is recorded instead and returned, and the
      limit only moves once another user approves it

    Returns the pending change, or None when the limit was applied directly.
    """
    if isinstance(new_limit_cents, bool) or not isinstance(new_limit_cents, int) or new_limit_cents < 0:
        raise ValueError("credit_limit_cents must be a non-negative integer")

    def _op() -> CreditLimitChange | None:
        policy = settings_service.load_policy(ctx.org_id)
        customer = get_customer_for_update(ctx.org_id, customer_id)
        _ensure_limit_allowed(customer, new_limit_cents)

        increase = new_limit_cents - customer.credit_limit_cents
        if increase > 0 and requires_approval("credit_limit_change", increase, policy.approvals):
            change = record_limit_change_request(customer, new_limit_cents, ctx, reason)
            db.session.commit()
            logger.info(
                "Credit limit change %s for customer %s awaits approval (%s -> %s)",
                change.id, customer.customer_code, change.old_limit_cents, new_limit_cents,
            )
            return change

        audit_service.update_entity(customer, {"credit_limit_cents": new_limit_cents}, ctx, reason)
        _warn_if_near_limit(customer, policy.credit)
        db.session.commit()
        return None

    return run_with_retry(_op)


def get_credit_limit_change(org_id: int, change_id: int, *, for_update: bool = False) -> CreditLimitChange:
    query = db.session.query(CreditLimitChange).filter(
        CreditLimitChange.id == change_id,
        CreditLimitChange.org_id == org_id,
    )
    if for_update:
        query = lock_for_update(query)
    change = query.first()
    if not change:
        raise NotFoundError(f"Credit limit change {change_id} not found")
    return change


def _ensure_pending(change: CreditLimitChange) -> None:
    if change.status != CreditLimitChange.STATUS_PENDING:
        raise BusinessRuleViolation(
            f"Credit limit change {change.id} is not pending approval",
            {"rule": "invalid_status", "credit_limit_change_id": change.id, "status": change.status},
        )


def approve_credit_limit_change(change_id: int, ctx: ActorContext, reason: str | None = None) -> Customer:
    """
    Approve a pending limit change as the acting user and apply it.

    The approver must not be the requester and must hold APPROVE_CREDIT_LIMIT.
    Usage is re-checked against the requested limit under the customer lock.
    """
    def _op() -> Customer:
        policy = settings_service.load_policy(ctx.org_id)
        change = get_credit_limit_change(ctx.org_id, change_id, for_update=True)
        _ensure_pending(change)
        ensure_credit_approver(ctx, change)

        customer = get_customer_for_update(ctx.org_id, change.customer_id)
        _ensure_limit_allowed(customer, change.requested_limit_cents)

        approved_at = utcnow()
        audit_service.update_entity(
            change,
            {
                "status": CreditLimitChange.STATUS_APPROVED,
                "decided_by_user_id": ctx.user_id,
                "decided_at": approved_at,
                "decision_reason": reason,
            },
            ctx,
            reason,
        )

        old_limit = customer.credit_limit_cents
        audit_service.update_entity(customer, {"credit_limit_cents": change.requested_limit_cents}, ctx, reason)
        audit_service.log_action(
            customer,
            AuditLog.ACTION_APPROVE,
            ctx,
            reason,
            data={
                "credit_limit_cents": change.requested_limit_cents,
                "credit_limit_change_id": change.id,
                "requested_by_user_id": change.requested_by_user_id,
                "approved_by_user_id": ctx.user_id,
                "approved_at": approved_at,
            },
            old_data={"credit_limit_cents": old_limit},
        )

        _warn_if_near_limit(customer, policy.credit)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def reject_credit_limit_change(change_id: int, ctx: ActorContext, reason: str) -> CreditLimitChange:
    """Reject a pending limit change. The requester may withdraw their own request."""
    if not (reason or "").strip():
        raise ValueError("reason is required to reject a credit limit change")

    def _op() -> CreditLimitChange:
        change = get_credit_limit_change(ctx.org_id, change_id, for_update=True)
        _ensure_pending(change)
        if change.requested_by_user_id != ctx.user_id:
            ensure_credit_approver(ctx, change)

        rejected_at = utcnow()
        audit_service.update_entity(
            change,
            {
                "status": CreditLimitChange.STATUS_REJECTED,
                "decided_by_user_id": ctx.user_id,
                "decided_at": rejected_at,
                "decision_reason": reason,
            },
            ctx,
            reason,
        )
        audit_service.log_action(
            change,
            AuditLog.ACTION_REJECT,
            ctx,
            reason,
            data={"status": CreditLimitChange.STATUS_REJECTED, "rejected_at": rejected_at},
            old_data={"status": CreditLimitChange.STATUS_PENDING},
        )
        db.session.commit()
        return change

    return run_with_retry(_op)


def list_credit_limit_changes(
    org_id: int,
    *,
    status: str | None = None,
    customer_id: int | None = None,
) -> list[CreditLimitChange]:
    query = db.session.query(CreditLimitChange).filter(CreditLimitChange.org_id == org_id)
    if status:
        query = query.filter(CreditLimitChange.status == status)
    if customer_id is not None:
        query = query.filter(CreditLimitChange.customer_id == customer_id)
    return query.order_by(CreditLimitChange.id.desc()).all()


def set_credit_block(customer_id: int, blocked: bool, ctx: ActorContext, *, reason: str | None = None) -> Customer:
    """Block or unblock a customer's credit facility."""
    def _op() -> Customer:
        customer = get_customer_for_update(ctx.org_id, customer_id)
        audit_service.update_entity(customer, {"credit_blocked": bool(blocked)}, ctx, reason)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def mark_overdue_transactions(org_id: int) -> int:
    """Flag open credit transactions whose due date has passed."""
    on_date = today()
    txns = db.session.query(CreditTransaction).filter(
        CreditTransaction.org_id == org_id,
        CreditTransaction.status.in_((TXN_PENDING, TXN_PARTIAL)),
        CreditTransaction.due_date < on_date,
    ).all()

    ctx = ActorContext.system(org_id)
    for txn in txns:
        audit_service.update_entity(txn, {"status": TXN_OVERDUE}, ctx, "Due date passed")

    db.session.commit()
    return len(txns)


# =============================================================================
# REPORTING
# =============================================================================

def credit_summary(org_id: int, customer_id: int, policy: TenantPolicy | None = None) -> dict:
    policy = policy or settings_service.load_policy(org_id)
    customer = get_customer(org_id, customer_id)
    open_txns = _open_transactions(customer.id)
    on_date = today()

    overdue = [t for t in open_txns if t.due_date < on_date]

    return {
        "customer_id": customer.id,
        "customer_code": customer.customer_code,
        "name": customer.name,
        "customer_type": customer.customer_type,
        "credit_limit_cents": customer.credit_limit_cents,
        "current_usage_cents": customer.outstanding_balance_cents,
        "available_credit_cents": customer.available_credit_cents,
        "usage_pct": customer.credit_usage_pct,
        "is_near_limit": customer.credit_limit_cents > 0 and customer.credit_usage_pct >= policy.credit.warning_threshold_pct,
        "credit_blocked": customer.credit_blocked,
        "is_credit_allowed": is_credit_allowed(customer),
        "payment_terms_days": customer.payment_terms_days,
        "open_transactions": len(open_txns),
        "overdue_cents": sum(t.balance_cents for t in overdue),
        "oldest_due_date": to_iso_date(min((t.due_date for t in open_txns), default=None)),
    }


def credit_alerts(org_id: int, policy: TenantPolicy | None = None) -> dict:
    """
    Customers needing credit-control attention.

    near_limit: usage at or above the warning threshold (but within limit)
    over_limit: usage above the limit (e.g. after a limit was lowered by data fix)
    blocked: credit_blocked facilities with outstanding usage
    overdue: customers with open transactions past due date
    """
    policy = policy or settings_service.load_policy(org_id)
    customers = db.session.query(Customer).filter(
        Customer.org_id == org_id,
        Customer.deleted_at.is_(None),
        Customer.is_active.is_(True),
        Customer.customer_type != "cash",
    ).order_by(Customer.customer_code).all()

    def row(c: Customer) -> dict:
        return {
            "customer_id": c.id,
            "customer_code": c.customer_code,
            "name": c.name,
            "credit_limit_cents": c.credit_limit_cents,
            "current_usage_cents": c.outstanding_balance_cents,
            "usage_pct": c.credit_usage_pct,
        }

    near_limit, over_limit, blocked = [], [], []
    for c in customers:
        if c.credit_blocked and c.outstanding_balance_cents > 0:
            blocked.append(row(c))
        if c.credit_limit_cents <= 0:
            continue
        if c.outstanding_balance_cents > c.credit_limit_cents:
            over_limit.append(row(c))
        elif c.credit_usage_pct >= policy.credit.warning_threshold_pct:
            near_limit.append(row(c))

    overdue_ids = {
        customer_id
        for (customer_id,) in db.session.query(CreditTransaction.customer_id).filter(
            CreditTransaction.org_id == org_id,
            CreditTransaction.status.in_(OPEN_TXN_STATUSES),
            CreditTransaction.due_date < today(),
        ).distinct().all()
    }
    overdue = [row(c) for c in customers if c.id in overdue_ids]

    return {
        "warning_threshold_pct": policy.credit.warning_threshold_pct,
        "near_limit": near_limit,
        "over_limit": over_limit,
        "blocked": blocked,
        "overdue": overdue,
    }
