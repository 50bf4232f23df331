# Overview: Business-rule error taxonomy shared by services and API routes.

"""
Business Rule Errors

WHY: Credit limits, approval thresholds and separation of duties are policy
decisions, not failures. They surface to the API as structured JSON and are
never reported to error tracking.

TAXONOMY:
- BusinessRuleViolation (422): generic rule violation
- CreditLimitExceeded (422): credit sale larger than the available credit
- ApprovalRequired (403): document needs a second-party sign-off
- RoleSeparationViolation (403): separation-of-duties rule broken
"""

from __future__ import annotations

from typing import Any


class BusinessRuleViolation(Exception):
    """Raised when a business rule is violated."""

    error_type = "business_rule_violation"
    status_code = 422
    # Expected application behaviour: do not send to error tracking
    should_report = False

    def __init__(self, message: str, context: dict[str, Any] | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "error_type": self.error_type,
            "context": self.context,
        }


class CreditLimitExceeded(BusinessRuleViolation):
    """Raised when a credit sale would exceed the customer's credit limit."""

    error_type = "credit_limit_exceeded"

    def __init__(self, customer: str, credit_limit: int, current_usage: int, order_amount: int):
        available = credit_limit - current_usage
        message = (
            f"Credit limit exceeded for {customer}. "
            f"Credit Limit: {credit_limit:,}, "
            f"Current Usage: {current_usage:,}, "
            f"Available: {available:,}, "
            f"Order Amount: {order_amount:,}"
        )
        super().__init__(message, {
            "customer": customer,
            "credit_limit": credit_limit,
            "current_usage": current_usage,
            "available_credit": available,
            "order_amount": order_amount,
            "excess_amount": order_amount - available,
        }, 422)


class ApprovalRequired(BusinessRuleViolation):
    """Raised when an action requires approval before proceeding."""

    error_type = "approval_required"

    def __init__(self, action: str, reason: str | None = None):
        message = f"Approval required for: {action}"
        if reason:
            message += f". Reason: {reason}"
        super().__init__(message, {
            "action": action,
            "reason": reason,
            "requires_role": "approver",
        }, 403)


class RoleSeparationViolation(BusinessRuleViolation):
    """
    Raised when role separation rules are violated.

    Use the named constructors; each one sets a distinct violated_rule tag.
    """

    error_type = "role_separation_violation"

    def __init__(self, message: str, violated_rule: str | None = None):
        super().__init__(message, {"violated_rule": violated_rule}, 403)

    @property
    def violated_rule(self) -> str | None:
        return self.context.get("violated_rule")

    @classmethod
    def cannot_approve_self(cls, document_type: str) -> "RoleSeparationViolation":
        return cls(
            f"You cannot approve your own {document_type}. "
            "Separation of duties requires a different user.",
            "creator_cannot_approve",
        )

    @classmethod
    def booking_cannot_collect_payment(cls) -> "RoleSeparationViolation":
        return cls(
            "Booking officers cannot collect payments. This must be done by a cashier.",
            "booking_cannot_collect",
        )

    @classmethod
    def cashier_cannot_modify_invoice(cls) -> "RoleSeparationViolation":
        return cls(
            "Cashiers cannot modify invoices. Only booking officers can edit order details.",
            "cashier_cannot_modify",
        )

    @classmethod
    def conflicting_roles(cls, role: str, other: str) -> "RoleSeparationViolation":
        return cls(
            f"Role '{role}' cannot be combined with role '{other}'.",
            "conflicting_roles",
        )


class NotFoundError(LookupError):
    """Raised when a tenant-scoped record does not exist."""
