# Overview: Approval threshold checks for documents that need a second-party sign-off.

from __future__ import annotations

from ..exceptions import ApprovalRequired
from .settings_service import APPROVAL_KINDS, ApprovalThresholds


STATUS_PENDING = "PENDING"
STATUS_APPROVED = "APPROVED"

_ACTION_LABELS = {
    "sales_order": "sales order",
    "purchase_order": "purchase order",
    "expense": "expense",
    "inventory_adjustment": "inventory adjustment",
    "credit_limit_change": "credit limit change",
}


def requires_approval(kind: str, amount: int, thresholds: ApprovalThresholds) -> bool:
    """
    True when amount is strictly above the configured threshold for kind.

    A threshold of None disables the check for that kind.
    """
    threshold = thresholds.threshold_for(kind)
    if threshold is None:
        return False
    return amount > threshold


def ensure_approved(
    kind: str,
    amount: int,
    thresholds: ApprovalThresholds,
    approved_by_user_id: int | None,
) -> None:
    """Raise ApprovalRequired when the amount needs approval and none is recorded."""
    if approved_by_user_id is not None:
        return
    if requires_approval(kind, amount, thresholds):
        raise ApprovalRequired(
            _ACTION_LABELS.get(kind, kind),
            f"Amount {amount:,} exceeds approval threshold {thresholds.threshold_for(kind):,}",
        )


def initial_status(amount: int, thresholds: ApprovalThresholds) -> str:
    """Starting status for a new sales order."""
    if not thresholds.sales_order_approval_required:
        return STATUS_APPROVED
    if requires_approval("sales_order", amount, thresholds):
        return STATUS_PENDING
    return STATUS_APPROVED


__all__ = [
    "APPROVAL_KINDS",
    "STATUS_PENDING",
    "STATUS_APPROVED",
    "requires_approval",
    "ensure_approved",
    "initial_status",
]
