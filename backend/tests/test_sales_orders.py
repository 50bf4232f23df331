# Overview: Pytest coverage for the sales order lifecycle and its business rules.

"""
Sales Order Tests

Verifies:
- credit orders pass the credit limit guard at booking and at approval
- orders above the approval threshold are held PENDING until a different
  user approves them; fulfillment and payment raise ApprovalRequired
- booking officers never collect payment; cashiers never edit invoices
"""

import pytest

from erp.exceptions import (
    ApprovalRequired,
    BusinessRuleViolation,
    CreditLimitExceeded,
    RoleSeparationViolation,
)
from erp.models import AuditLog, CreditTransaction, Customer, SalesOrder
from erp.services import credit_service, sales_order_service
from erp.services.sales_order_service import calculate_tax

from conftest import actor


LARGE = 60_000_000  # above the 50,000,000 sales order threshold


def _order_data(customer, amount, payment_type="cash", **extra):
    data = {
        "customer_id": customer.id,
        "payment_type": payment_type,
        "lines": [{"description": "NPK fertilizer 50kg", "quantity": 1, "unit_price_cents": amount}],
    }
    data.update(extra)
    return data


@pytest.fixture
def big_credit_customer(db_session, org_a):
    customer = Customer(
        org_id=org_a.id,
        customer_code="CUST-A-BIG",
        name="Savannah Estates",
        customer_type="credit",
        credit_limit_cents=100_000_000,
        outstanding_balance_cents=0,
        payment_terms_days=14,
    )
    db_session.add(customer)
    db_session.commit()
    return customer


def _usage(db_session, customer):
    db_session.expire_all()
    return db_session.get(Customer, customer.id).outstanding_balance_cents


class TestCalculateTax:

    @pytest.mark.parametrize(
        "taxable,bps,expected",
        [
            (10_000, 750, 750),
            (7, 750, 1),
            (6, 750, 0),
            (10_000, 0, 0),
            (0, 750, 0),
        ],
    )
    def test_rounds_half_up(self, taxable, bps, expected):
        assert calculate_tax(taxable, bps) == expected


class TestBooking:

    def test_small_cash_order_is_approved_on_creation(self, db_session, cash_customer_a, booking_a):
        order = sales_order_service.create_sales_order(
            _order_data(cash_customer_a, 1_500_000), actor(booking_a),
        )

        assert order.order_number == "SO-00001"
        assert order.status == "APPROVED"
        assert order.fulfillment_status == "AWAITING"
        assert order.payment_status == "UNPAID"
        assert order.total_cents == 1_500_000
        assert order.created_by_user_id == booking_a.id

    def test_totals_are_computed_from_lines(self, db_session, cash_customer_a, booking_a):
        data = _order_data(cash_customer_a, 0, discount_cents=500)
        data["lines"] = [
            {"description": "Maize seed", "quantity": 4, "unit_price_cents": 2_500},
            {"description": "Herbicide", "quantity": 2, "unit_price_cents": 1_000},
        ]
        order = sales_order_service.create_sales_order(data, actor(booking_a))

        assert order.subtotal_cents == 12_000
        assert order.total_cents == 11_500
        assert [line.sequence for line in order.lines] == [1, 2]

    def test_credit_order_within_limit_books_usage(self, db_session, credit_customer_a, booking_a):
        order = sales_order_service.create_sales_order(
            _order_data(credit_customer_a, 2_000_000, "credit"), actor(booking_a),
        )

        assert order.status == "APPROVED"
        assert _usage(db_session, credit_customer_a) == 4_150_000
        txn = db_session.query(CreditTransaction).one()
        assert txn.sales_order_id == order.id

    def test_credit_order_above_limit_is_refused(self, db_session, credit_customer_a, booking_a):
        with pytest.raises(CreditLimitExceeded) as exc_info:
            sales_order_service.create_sales_order(
                _order_data(credit_customer_a, 3_000_000, "credit"), actor(booking_a),
            )

        assert exc_info.value.context["excess_amount"] == 150_000
        assert db_session.query(SalesOrder).count() == 0
        assert _usage(db_session, credit_customer_a) == 2_150_000

    def test_cash_customer_cannot_order_on_credit(self, db_session, cash_customer_a, booking_a):
        with pytest.raises(BusinessRuleViolation) as exc_info:
            sales_order_service.create_sales_order(
                _order_data(cash_customer_a, 100, "credit"), actor(booking_a),
            )
        assert exc_info.value.context["rule"] == "cash_customer"

    @pytest.mark.parametrize(
        "bad",
        [
            {"lines": []},
            {"lines": [{"description": "", "quantity": 1, "unit_price_cents": 1}]},
            {"lines": [{"description": "Seed", "quantity": 0, "unit_price_cents": 1}]},
            {"payment_type": "barter"},
            {"discount_cents": 10**9},
        ],
    )
    def test_invalid_input(self, db_session, cash_customer_a, booking_a, bad):
        data = _order_data(cash_customer_a, 1_000)
        data.update(bad)
        with pytest.raises(ValueError):
            sales_order_service.create_sales_order(data, actor(booking_a))


class TestApproval:

    def test_large_order_starts_pending_without_booking_credit(self, db_session, big_credit_customer, booking_a):
        order = sales_order_service.create_sales_order(
            _order_data(big_credit_customer, LARGE, "credit"), actor(booking_a),
        )

        assert order.status == "PENDING"
        assert order.approved_at is None
        assert _usage(db_session, big_credit_customer) == 0

    def test_pending_order_cannot_be_fulfilled(self, db_session, cash_customer_a, booking_a):
        order = sales_order_service.create_sales_order(_order_data(cash_customer_a, LARGE), actor(booking_a))

        with pytest.raises(ApprovalRequired) as exc_info:
            sales_order_service.fulfill_sales_order(order.id, "PROCESSING", actor(booking_a))
        assert exc_info.value.context["action"] == "sales order"

    def test_pending_order_cannot_be_paid(self, db_session, cash_customer_a, booking_a, cashier_a):
        order = sales_order_service.create_sales_order(_order_data(cash_customer_a, LARGE), actor(booking_a))

        with pytest.raises(ApprovalRequired):
            sales_order_service.collect_payment(order.id, 1_000, actor(cashier_a))

    def test_creator_cannot_approve_own_order(self, db_session, cash_customer_a, admin_a):
        order = sales_order_service.create_sales_order(_order_data(cash_customer_a, LARGE), actor(admin_a))

        with pytest.raises(RoleSeparationViolation) as exc_info:
            sales_order_service.approve_sales_order(order.id, actor(admin_a))
        assert exc_info.value.violated_rule == "creator_cannot_approve"

    def test_approval_books_credit_and_releases_order(self, db_session, big_credit_customer, booking_a, approver_a):
        order = sales_order_service.create_sales_order(
            _order_data(big_credit_customer, LARGE, "credit"), actor(booking_a),
        )

        approved = sales_order_service.approve_sales_order(order.id, actor(approver_a), "Seasonal contract")

        assert approved.status == "APPROVED"
        assert approved.approved_by_user_id == approver_a.id
        assert _usage(db_session, big_credit_customer) == LARGE

        entry = db_session.query(AuditLog).filter_by(
            auditable_type="SalesOrder", auditable_id=order.id, action="APPROVE",
        ).one()
        assert entry.old_values == {"status": "PENDING"}
        assert entry.new_values["approved_by_user_id"] == approver_a.id
        assert entry.new_values["approved_at"] is not None
        assert entry.reason == "Seasonal contract"

        fulfilled = sales_order_service.fulfill_sales_order(order.id, "PROCESSING", actor(booking_a))
        assert fulfilled.fulfillment_status == "PROCESSING"

    def test_approval_rechecks_credit_against_current_usage(
        self, db_session, big_credit_customer, booking_a, approver_a,
    ):
        order = sales_order_service.create_sales_order(
            _order_data(big_credit_customer, LARGE, "credit"), actor(booking_a),
        )
        credit_service.record_credit_sale(big_credit_customer.id, 50_000_000, actor(booking_a))

        with pytest.raises(CreditLimitExceeded) as exc_info:
            sales_order_service.approve_sales_order(order.id, actor(approver_a))

        assert exc_info.value.context["excess_amount"] == 10_000_000
        db_session.expire_all()
        assert db_session.get(SalesOrder, order.id).status == "PENDING"

    def test_reject_requires_reason(self, db_session, cash_customer_a, booking_a, approver_a):
        order = sales_order_service.create_sales_order(_order_data(cash_customer_a, LARGE), actor(booking_a))

        with pytest.raises(ValueError):
            sales_order_service.reject_sales_order(order.id, actor(approver_a), "  ")

        rejected = sales_order_service.reject_sales_order(order.id, actor(approver_a), "Price not agreed")
        assert rejected.status == "CANCELLED"
        assert rejected.cancel_reason == "Price not agreed"

        with pytest.raises(BusinessRuleViolation) as exc_info:
            sales_order_service.fulfill_sales_order(order.id, "PROCESSING", actor(booking_a))
        assert exc_info.value.context["rule"] == "order_cancelled"

    def test_only_pending_orders_can_be_approved(self, db_session, cash_customer_a, booking_a, approver_a):
        order = sales_order_service.create_sales_order(_order_data(cash_customer_a, 1_000), actor(booking_a))

        with pytest.raises(BusinessRuleViolation) as exc_info:
            sales_order_service.approve_sales_order(order.id, actor(approver_a))
        assert exc_info.value.context["rule"] == "invalid_status"


class TestEditing:

    def test_cashier_cannot_modify_invoice(self, db_session, cash_customer_a, booking_a, cashier_a):
        order = sales_order_service.create_sales_order(_order_data(cash_customer_a, LARGE), actor(booking_a))

        with pytest.raises(RoleSeparationViolation) as exc_info:
            sales_order_service.update_sales_order(order.id, {"notes": "discount please"}, actor(cashier_a))
        assert exc_info.value.violated_rule == "cashier_cannot_modify"

    def test_booking_officer_edits_pending_order(self, db_session, cash_customer_a, booking_a):
        order = sales_order_service.create_sales_order(_order_data(cash_customer_a, LARGE), actor(booking_a))

        updated = sales_order_service.update_sales_order(
            order.id, {"delivery_address": "Farm gate 3"}, actor(booking_a), "Customer call",
        )

        assert updated.delivery_address == "Farm gate 3"
        entry = db_session.query(AuditLog).filter_by(
            auditable_type="SalesOrder", auditable_id=order.id, action="UPDATE",
        ).one()
        assert entry.new_values == {"delivery_address": "Farm gate 3"}

    def test_approved_order_is_locked(self, db_session, cash_customer_a, booking_a):
        order = sales_order_service.create_sales_order(_order_data(cash_customer_a, 1_000), actor(booking_a))

        with pytest.raises(BusinessRuleViolation) as exc_info:
            sales_order_service.update_sales_order(order.id, {"notes": "late edit"}, actor(booking_a))
        assert exc_info.value.context["rule"] == "order_locked"

    def test_amounts_are_not_editable(self, db_session, cash_customer_a, booking_a):
        order = sales_order_service.create_sales_order(_order_data(cash_customer_a, LARGE), actor(booking_a))

        with pytest.raises(ValueError):
            sales_order_service.update_sales_order(order.id, {"total_cents": 1}, actor(booking_a))


class TestFulfillment:

    def test_fulfillment_moves_forward_and_completes(self, db_session, cash_customer_a, booking_a):
        order = sales_order_service.create_sales_order(_order_data(cash_customer_a, 1_000), actor(booking_a))
        ctx = actor(booking_a)

        sales_order_service.fulfill_sales_order(order.id, "SHIPPED", ctx)
        with pytest.raises(BusinessRuleViolation) as exc_info:
            sales_order_service.fulfill_sales_order(order.id, "PROCESSING", ctx)
        assert exc_info.value.context["rule"] == "invalid_transition"

        done = sales_order_service.fulfill_sales_order(order.id, "DELIVERED", ctx)
        assert done.status == "COMPLETED"
        assert done.completed_at is not None

    def test_unknown_fulfillment_status(self, db_session, cash_customer_a, booking_a):
        order = sales_order_service.create_sales_order(_order_data(cash_customer_a, 1_000), actor(booking_a))

        with pytest.raises(ValueError):
            sales_order_service.fulfill_sales_order(order.id, "LOST", actor(booking_a))


class TestPayment:

    def test_booking_officer_cannot_collect(self, db_session, cash_customer_a, booking_a):
        order = sales_order_service.create_sales_order(_order_data(cash_customer_a, 1_000), actor(booking_a))

        with pytest.raises(RoleSeparationViolation) as exc_info:
            sales_order_service.collect_payment(order.id, 1_000, actor(booking_a))
        assert exc_info.value.violated_rule == "booking_cannot_collect"

    def test_booking_officer_of_the_order_cannot_collect_as_cashier(self, db_session, org_a, cash_customer_a, make_user):
        dual = make_user(org_a, "dual_role", "booking_officer", "cashier")
        order = sales_order_service.create_sales_order(_order_data(cash_customer_a, 1_000), actor(dual))

        with pytest.raises(RoleSeparationViolation) as exc_info:
            sales_order_service.collect_payment(order.id, 1_000, actor(dual))
        assert exc_info.value.violated_rule == "booking_cannot_collect"

    def test_cashier_collects_partial_then_full(self, db_session, cash_customer_a, booking_a, cashier_a):
        order = sales_order_service.create_sales_order(_order_data(cash_customer_a, 10_000), actor(booking_a))

        partial = sales_order_service.collect_payment(order.id, 4_000, actor(cashier_a))
        assert (partial.payment_status, partial.balance_due_cents) == ("PARTIAL", 6_000)

        paid = sales_order_service.collect_payment(order.id, 6_000, actor(cashier_a), payment_method="transfer")
        assert (paid.payment_status, paid.balance_due_cents) == ("PAID", 0)

        actions = [
            e.action for e in db_session.query(AuditLog)
            .filter_by(auditable_type="SalesOrder", auditable_id=order.id)
            .order_by(AuditLog.id)
        ]
        assert actions == ["CREATE", "PAYMENT", "PAYMENT"]

    def test_overpayment_is_refused(self, db_session, cash_customer_a, booking_a, cashier_a):
        order = sales_order_service.create_sales_order(_order_data(cash_customer_a, 1_000), actor(booking_a))

        with pytest.raises(BusinessRuleViolation) as exc_info:
            sales_order_service.collect_payment(order.id, 1_001, actor(cashier_a))
        assert exc_info.value.context["rule"] == "overpayment"

    def test_credit_order_payment_reduces_usage(self, db_session, credit_customer_a, booking_a, cashier_a):
        order = sales_order_service.create_sales_order(
            _order_data(credit_customer_a, 2_000_000, "credit"), actor(booking_a),
        )

        sales_order_service.collect_payment(order.id, 2_000_000, actor(cashier_a))

        assert _usage(db_session, credit_customer_a) == 2_150_000
        txn = db_session.query(CreditTransaction).filter_by(sales_order_id=order.id).one()
        assert txn.status == "paid"
