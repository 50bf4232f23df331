# Overview: Separation-of-duties guards invoked at document state transitions.

"""
Role Separation

RULES:
- The creator of a document can never approve it
- Booking officers book orders; cashiers collect payments
- Cashiers cannot modify invoice details
- Roles marked mutually exclusive by tenant policy can never be held by one
  user, and one user cannot act in two exclusive capacities on one document

Guards are silent on success and raise RoleSeparationViolation (403) otherwise.
"""

from __future__ import annotations

from typing import Iterable

from ..exceptions import RoleSeparationViolation
from .settings_service import RoleSeparationPolicy


BOOKING_OFFICER = "booking_officer"
CASHIER = "cashier"

# Roles that may do both sides of a duty pair
OVERRIDE_ROLES = frozenset({"admin"})


def ensure_not_self_approval(document_type: str, created_by_user_id: int | None, actor_user_id: int | None) -> None:
    if created_by_user_id is not None and created_by_user_id == actor_user_id:
        raise RoleSeparationViolation.cannot_approve_self(document_type)


def ensure_can_collect_payment(actor_roles: Iterable[str]) -> None:
    roles = set(actor_roles)
    if roles & OVERRIDE_ROLES:
        return
    if BOOKING_OFFICER in roles and CASHIER not in roles:
        raise RoleSeparationViolation.booking_cannot_collect_payment()


def ensure_can_modify_invoice(actor_roles: Iterable[str]) -> None:
    roles = set(actor_roles)
    if roles & OVERRIDE_ROLES:
        return
    if CASHIER in roles and BOOKING_OFFICER not in roles:
        raise RoleSeparationViolation.cashier_cannot_modify_invoice()


def ensure_separate_duties(
    first_actor_id: int | None,
    first_role: str,
    second_actor_id: int | None,
    second_role: str,
    policy: RoleSeparationPolicy,
) -> None:
    """One user cannot act as two mutually exclusive roles on the same document."""
    if first_actor_id is None or first_actor_id != second_actor_id:
        return
    if policy.are_exclusive(first_role, second_role):
        if first_role == BOOKING_OFFICER and second_role == CASHIER:
            raise RoleSeparationViolation.booking_cannot_collect_payment()
        raise RoleSeparationViolation.conflicting_roles(first_role, second_role)


def ensure_roles_compatible(held_roles: Iterable[str], new_role: str, policy: RoleSeparationPolicy) -> None:
    conflicts = policy.conflicts_for(new_role)
    for role in sorted(set(held_roles)):
        if role in conflicts:
            raise RoleSeparationViolation.conflicting_roles(new_role, role)
