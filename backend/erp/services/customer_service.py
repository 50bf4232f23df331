# Overview: Customer master data maintenance with audited create/update/delete.

from __future__ import annotations

from ..context import ActorContext
from ..exceptions import BusinessRuleViolation
from ..extensions import db
from ..models import Customer
from ..models.customers import CUSTOMER_TYPES
from . import audit_service, settings_service
from .approval_service import requires_approval
from .concurrency import run_with_retry
from .credit_service import get_customer, get_customer_for_update, record_limit_change_request
from .document_service import next_document_number


# Fields a plain update may touch; credit limit and block go through credit_service
EDITABLE_FIELDS = ("name", "email", "phone", "address", "customer_type", "payment_terms_days", "is_active")


def _clean_int(data: dict, key: str, default: int = 0) -> int:
    value = data.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{key} must be a non-negative integer")
    return value


def create_customer(data: dict, ctx: ActorContext, reason: str | None = None) -> Customer:
    """
    Create a customer in the actor's organization.

    Credit customers start with the tenant default limit unless one is given.
    A starting limit above the credit_limit_change threshold is treated like
    any other large increase: the customer starts at 0 and a PENDING
    CreditLimitChange waits for another user's approval.
    """
    name = (data.get("name") or "").strip()
    if not name:
        raise ValueError("name is required")

    customer_type = data.get("customer_type") or "cash"
    if customer_type not in CUSTOMER_TYPES:
        raise ValueError(f"customer_type must be one of {CUSTOMER_TYPES}")

    payment_terms_days = _clean_int(data, "payment_terms_days", 0)

    policy = settings_service.load_policy(ctx.org_id)

    requested_limit = 0
    if customer_type != "cash":
        requested_limit = _clean_int(data, "credit_limit_cents", policy.credit.default_limit_cents)
    needs_approval = requires_approval("credit_limit_change", requested_limit, policy.approvals)

    code = (data.get("customer_code") or "").strip() or None
    if code:
        exists = db.session.query(Customer.id).filter_by(org_id=ctx.org_id, customer_code=code).first()
        if exists:
            raise ValueError(f"Customer code {code} already exists")

    try:
        if not code:
            code = next_document_number(org_id=ctx.org_id, document_type="customer")

        customer = Customer(
            org_id=ctx.org_id,
            customer_code=code,
            name=name,
            email=data.get("email"),
            phone=data.get("phone"),
            address=data.get("address"),
            customer_type=customer_type,
            credit_limit_cents=0 if needs_approval else requested_limit,
            outstanding_balance_cents=0,
            payment_terms_days=payment_terms_days,
            credit_blocked=False,
            is_active=True,
        )
        audit_service.create_entity(customer, ctx, reason)
        if needs_approval:
            record_limit_change_request(customer, requested_limit, ctx, reason)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return customer


def update_customer(customer_id: int, data: dict, ctx: ActorContext, reason: str | None = None) -> Customer:
    """
    Update customer details.

    A customer with outstanding credit cannot be switched to cash-only.
    """
    unknown = set(data) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Fields cannot be updated here: {', '.join(sorted(unknown))}")

    if "customer_type" in data and data["customer_type"] not in CUSTOMER_TYPES:
        raise ValueError(f"customer_type must be one of {CUSTOMER_TYPES}")
    if "payment_terms_days" in data:
        _clean_int(data, "payment_terms_days")
    if "name" in data and not (data["name"] or "").strip():
        raise ValueError("name cannot be empty")

    def _op() -> Customer:
        customer = get_customer_for_update(ctx.org_id, customer_id)
        changes = dict(data)
        if changes.get("customer_type") == "cash" and customer.customer_type != "cash":
            if customer.outstanding_balance_cents > 0:
                raise BusinessRuleViolation(
                    "Customer with outstanding credit cannot become cash-only",
                    {"rule": "outstanding_balance", "customer": customer.name,
                     "current_usage": customer.outstanding_balance_cents},
                )
            changes["credit_limit_cents"] = 0

        audit_service.update_entity(customer, changes, ctx, reason)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def delete_customer(customer_id: int, ctx: ActorContext, reason: str | None = None) -> None:
    """Soft-delete a customer without outstanding credit."""
    def _op() -> None:
        customer = get_customer_for_update(ctx.org_id, customer_id)
        if customer.outstanding_balance_cents > 0:
            raise BusinessRuleViolation(
                "Customer with outstanding credit cannot be deleted",
                {"rule": "outstanding_balance", "customer": customer.name,
                 "current_usage": customer.outstanding_balance_cents},
            )
        audit_service.delete_entity(customer, ctx, reason)
        db.session.commit()

    run_with_retry(_op)


def list_customers(
    org_id: int,
    *,
    search: str | None = None,
    customer_type: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Customer], int]:
    query = db.session.query(Customer).filter(
        Customer.org_id == org_id,
        Customer.deleted_at.is_(None),
    )
    if customer_type:
        query = query.filter(Customer.customer_type == customer_type)
    if search:
        like = f"%{search}%"
        query = query.filter(db.or_(Customer.name.ilike(like), Customer.customer_code.ilike(like)))

    total = query.count()
    limit = max(1, min(limit, 500))
    rows = query.order_by(Customer.customer_code.asc()).offset(max(0, offset)).limit(limit).all()
    return rows, total
