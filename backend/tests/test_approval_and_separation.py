"""
Approval threshold and role separation guard tests.

Pure guard functions: they take a frozen policy and either return silently
or raise ApprovalRequired / RoleSeparationViolation (both 403).
"""

from types import MappingProxyType

import pytest

from erp.exceptions import ApprovalRequired, RoleSeparationViolation
from erp.services.approval_service import (
    STATUS_APPROVED,
    STATUS_PENDING,
    ensure_approved,
    initial_status,
    requires_approval,
)
from erp.services.role_separation_service import (
    ensure_can_collect_payment,
    ensure_can_modify_invoice,
    ensure_not_self_approval,
    ensure_roles_compatible,
    ensure_separate_duties,
)
from erp.services.settings_service import (
    ApprovalThresholds,
    RoleSeparationPolicy,
    SettingsValidationError,
)


THRESHOLDS = ApprovalThresholds(
    thresholds=MappingProxyType({
        "sales_order": 50_000_000,
        "purchase_order": 100_000_000,
        "expense": 5_000_000,
        "inventory_adjustment": 100,
        "credit_limit_change": None,
    }),
)

SEPARATION = RoleSeparationPolicy(
    exclusions=MappingProxyType({
        "booking_officer": frozenset({"cashier"}),
        "cashier": frozenset({"accountant"}),
    }),
)


# =============================================================================
# APPROVAL THRESHOLDS
# =============================================================================


class TestRequiresApproval:

    def test_amount_strictly_above_threshold_requires_approval(self):
        assert requires_approval("sales_order", 50_000_001, THRESHOLDS) is True

    def test_amount_equal_to_threshold_does_not(self):
        assert requires_approval("sales_order", 50_000_000, THRESHOLDS) is False

    def test_quantity_threshold_for_inventory_adjustments(self):
        assert requires_approval("inventory_adjustment", 101, THRESHOLDS) is True
        assert requires_approval("inventory_adjustment", 100, THRESHOLDS) is False

    def test_null_threshold_disables_the_check(self):
        assert requires_approval("credit_limit_change", 10**12, THRESHOLDS) is False

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(SettingsValidationError):
            requires_approval("refund", 1, THRESHOLDS)


class TestEnsureApproved:

    def test_unapproved_amount_above_threshold_raises(self):
        with pytest.raises(ApprovalRequired) as exc_info:
            ensure_approved("purchase_order", 150_000_000, THRESHOLDS, None)

        error = exc_info.value
        assert error.status_code == 403
        assert error.error_type == "approval_required"
        assert error.context["action"] == "purchase order"
        assert error.context["requires_role"] == "approver"
        assert "100,000,000" in error.context["reason"]

    def test_recorded_approver_satisfies_the_check(self):
        ensure_approved("purchase_order", 150_000_000, THRESHOLDS, approved_by_user_id=7)

    def test_amount_below_threshold_needs_no_approver(self):
        ensure_approved("expense", 4_999_999, THRESHOLDS, None)


class TestInitialStatus:

    def test_large_order_starts_pending(self):
        assert initial_status(60_000_000, THRESHOLDS) == STATUS_PENDING

    def test_small_order_is_approved_on_creation(self):
        assert initial_status(1_000, THRESHOLDS) == STATUS_APPROVED

    def test_approval_switched_off_approves_everything(self):
        thresholds = ApprovalThresholds(
            thresholds=THRESHOLDS.thresholds,
            sales_order_approval_required=False,
        )
        assert initial_status(60_000_000, thresholds) == STATUS_APPROVED


# =============================================================================
# ROLE SEPARATION
# =============================================================================


class TestSelfApproval:

    def test_creator_cannot_approve(self):
        with pytest.raises(RoleSeparationViolation) as exc_info:
            ensure_not_self_approval("sales order", 5, 5)
        assert exc_info.value.violated_rule == "creator_cannot_approve"
        assert "your own sales order" in exc_info.value.message

    def test_other_user_can_approve(self):
        ensure_not_self_approval("sales order", 5, 6)

    def test_system_created_document_can_be_approved(self):
        ensure_not_self_approval("purchase order", None, None)


class TestDutyPairs:

    def test_booking_officer_cannot_collect_payment(self):
        with pytest.raises(RoleSeparationViolation) as exc_info:
            ensure_can_collect_payment({"booking_officer"})
        assert exc_info.value.violated_rule == "booking_cannot_collect"

    def test_cashier_can_collect_payment(self):
        ensure_can_collect_payment({"cashier"})

    def test_admin_overrides_duty_pairs(self):
        ensure_can_collect_payment({"booking_officer", "admin"})
        ensure_can_modify_invoice({"cashier", "admin"})

    def test_cashier_cannot_modify_invoice(self):
        with pytest.raises(RoleSeparationViolation) as exc_info:
            ensure_can_modify_invoice(["cashier"])
        assert exc_info.value.violated_rule == "cashier_cannot_modify"

    def test_booking_officer_can_modify_invoice(self):
        ensure_can_modify_invoice(["booking_officer"])


class TestSeparateDuties:

    def test_same_user_in_exclusive_capacities_is_refused(self):
        with pytest.raises(RoleSeparationViolation) as exc_info:
            ensure_separate_duties(3, "booking_officer", 3, "cashier", SEPARATION)
        assert exc_info.value.violated_rule == "booking_cannot_collect"

    def test_exclusion_is_symmetric(self):
        with pytest.raises(RoleSeparationViolation) as exc_info:
            ensure_separate_duties(3, "accountant", 3, "cashier", SEPARATION)
        assert exc_info.value.violated_rule == "conflicting_roles"

    def test_different_users_pass(self):
        ensure_separate_duties(3, "booking_officer", 4, "cashier", SEPARATION)

    def test_compatible_roles_pass_for_same_user(self):
        ensure_separate_duties(3, "booking_officer", 3, "accountant", SEPARATION)


class TestRolesCompatible:

    def test_conflicting_role_is_refused(self):
        with pytest.raises(RoleSeparationViolation) as exc_info:
            ensure_roles_compatible(["booking_officer"], "cashier", SEPARATION)
        assert exc_info.value.violated_rule == "conflicting_roles"
        assert "'cashier'" in exc_info.value.message

    def test_reverse_direction_is_refused(self):
        with pytest.raises(RoleSeparationViolation):
            ensure_roles_compatible(["cashier"], "booking_officer", SEPARATION)

    def test_unrelated_roles_are_allowed(self):
        ensure_roles_compatible(["approver", "booking_officer"], "accountant", SEPARATION)
        assert SEPARATION.conflicts_for("cashier") == frozenset({"booking_officer", "accountant"})
