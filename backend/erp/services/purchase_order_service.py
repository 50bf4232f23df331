# Overview: Purchase order raising, approval and receipt.

from __future__ import annotations

from ..context import ActorContext
from ..exceptions import BusinessRuleViolation, NotFoundError
from ..extensions import db
from ..models import AuditLog, PurchaseOrder
from ..time_utils import utcnow
from . import audit_service, settings_service
from .approval_service import STATUS_APPROVED, STATUS_PENDING, ensure_approved, requires_approval
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .role_separation_service import ensure_not_self_approval


STATUS_RECEIVED = "RECEIVED"
STATUS_CANCELLED = "CANCELLED"


def get_purchase_order(org_id: int, po_id: int) -> PurchaseOrder:
    po = db.session.query(PurchaseOrder).filter(
        PurchaseOrder.id == po_id,
        PurchaseOrder.org_id == org_id,
        PurchaseOrder.deleted_at.is_(None),
    ).first()
    if not po:
        raise NotFoundError(f"Purchase order {po_id} not found")
    return po


def _get_for_update(org_id: int, po_id: int) -> PurchaseOrder:
    po = lock_for_update(
        db.session.query(PurchaseOrder).filter(
            PurchaseOrder.id == po_id,
            PurchaseOrder.org_id == org_id,
            PurchaseOrder.deleted_at.is_(None),
        )
    ).first()
    if not po:
        raise NotFoundError(f"Purchase order {po_id} not found")
    return po


def create_purchase_order(data: dict, ctx: ActorContext, reason: str | None = None) -> PurchaseOrder:
    """Raise a purchase order; above the purchase threshold it waits for approval."""
    supplier_name = (data.get("supplier_name") or "").strip()
    if not supplier_name:
        raise ValueError("supplier_name is required")

    total = data.get("total_cents")
    if isinstance(total, bool) or not isinstance(total, int) or total <= 0:
        raise ValueError("total_cents must be a positive integer")

    policy = settings_service.load_policy(ctx.org_id)
    needs_approval = requires_approval("purchase_order", total, policy.approvals)

    try:
        po = PurchaseOrder(
            org_id=ctx.org_id,
            order_number=next_document_number(org_id=ctx.org_id, document_type="purchase_order"),
            supplier_name=supplier_name,
            total_cents=total,
            notes=data.get("notes"),
            status=STATUS_PENDING if needs_approval else STATUS_APPROVED,
            created_by_user_id=ctx.user_id,
            approved_at=None if needs_approval else utcnow(),
        )
        audit_service.create_entity(po, ctx, reason)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return po


def approve_purchase_order(po_id: int, ctx: ActorContext, reason: str | None = None) -> PurchaseOrder:
    def _op() -> PurchaseOrder:
        po = _get_for_update(ctx.org_id, po_id)
        if po.status != STATUS_PENDING:
            raise BusinessRuleViolation(
                f"Purchase order {po.order_number} is not pending approval",
                {"rule": "invalid_status", "order_number": po.order_number, "status": po.status},
            )

        ensure_not_self_approval("purchase order", po.created_by_user_id, ctx.user_id)

        approved_at = utcnow()
        po.status = STATUS_APPROVED
        po.approved_by_user_id = ctx.user_id
        po.approved_at = approved_at
        audit_service.log_action(
            po,
            AuditLog.ACTION_APPROVE,
            ctx,
            reason,
            data={"status": STATUS_APPROVED, "approved_by_user_id": ctx.user_id, "approved_at": approved_at},
            old_data={"status": STATUS_PENDING},
        )
        db.session.commit()
        return po

    return run_with_retry(_op)


def receive_purchase_order(po_id: int, ctx: ActorContext, reason: str | None = None) -> PurchaseOrder:
    """
    Mark goods received.

    A PENDING order is never received: above the threshold it raises
    ApprovalRequired, otherwise order_not_approved.
    """
    def _op() -> PurchaseOrder:
        policy = settings_service.load_policy(ctx.org_id)
        po = _get_for_update(ctx.org_id, po_id)

        if po.status == STATUS_PENDING:
            ensure_approved("purchase_order", po.total_cents, policy.approvals, po.approved_by_user_id)
            raise BusinessRuleViolation(
                f"Purchase order {po.order_number} has not been approved",
                {"rule": "order_not_approved", "order_number": po.order_number, "status": po.status},
            )
        if po.status != STATUS_APPROVED:
            raise BusinessRuleViolation(
                f"Purchase order {po.order_number} cannot be received",
                {"rule": "invalid_status", "order_number": po.order_number, "status": po.status},
            )

        old_status = po.status
        po.status = STATUS_RECEIVED
        po.received_at = utcnow()
        audit_service.log_action(
            po,
            AuditLog.ACTION_STATUS_CHANGE,
            ctx,
            reason,
            data={"status": STATUS_RECEIVED},
            old_data={"status": old_status},
        )
        db.session.commit()
        return po

    return run_with_retry(_op)
