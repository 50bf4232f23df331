# Overview: Pytest coverage for the credit limit guard.

"""
Credit Limit Guard Tests

The guard is a pure check: available = limit - usage, and a credit sale
fails iff the order amount is strictly above the available credit.
No database is needed; customers are transient model instances.
"""

import pytest

from erp.exceptions import BusinessRuleViolation, CreditLimitExceeded
from erp.models import Customer
from erp.services.credit_service import check_credit_limit, ensure_credit_sale_allowed, is_credit_allowed
from erp.services.settings_service import CreditPolicy


ENFORCED = CreditPolicy(enforce_limit=True)


def _customer(**overrides):
    values = dict(
        name="Green Farms",
        customer_code="CUST-00001",
        customer_type="credit",
        credit_limit_cents=5_000_000,
        outstanding_balance_cents=2_150_000,
        credit_blocked=False,
        is_active=True,
    )
    values.update(overrides)
    return Customer(**values)


class TestCheckCreditLimit:

    def test_order_above_available_credit_is_refused(self):
        customer = _customer()

        with pytest.raises(CreditLimitExceeded) as exc_info:
            check_credit_limit(customer, 3_000_000, ENFORCED)

        error = exc_info.value
        assert error.status_code == 422
        assert error.error_type == "credit_limit_exceeded"
        assert error.context == {
            "customer": "Green Farms",
            "credit_limit": 5_000_000,
            "current_usage": 2_150_000,
            "available_credit": 2_850_000,
            "order_amount": 3_000_000,
            "excess_amount": 150_000,
        }
        assert "Credit limit exceeded for Green Farms" in error.message
        assert "Available: 2,850,000" in error.message

    def test_order_within_available_credit_passes(self):
        customer = _customer()

        check_credit_limit(customer, 2_000_000, ENFORCED)

        assert customer.available_credit_cents == 2_850_000

    def test_order_exactly_equal_to_available_credit_passes(self):
        check_credit_limit(_customer(), 2_850_000, ENFORCED)

    def test_one_cent_over_available_credit_fails(self):
        with pytest.raises(CreditLimitExceeded) as exc_info:
            check_credit_limit(_customer(), 2_850_001, ENFORCED)
        assert exc_info.value.context["excess_amount"] == 1

    def test_guard_never_mutates_the_customer(self):
        customer = _customer()

        check_credit_limit(customer, 1_000, ENFORCED)
        with pytest.raises(CreditLimitExceeded):
            check_credit_limit(customer, 9_000_000, ENFORCED)

        assert customer.outstanding_balance_cents == 2_150_000
        assert customer.credit_limit_cents == 5_000_000

    def test_cash_customer_bypasses_the_guard(self):
        customer = _customer(customer_type="cash", credit_limit_cents=0, outstanding_balance_cents=0)
        check_credit_limit(customer, 10_000_000, ENFORCED)

    def test_zero_limit_refuses_any_positive_amount(self):
        customer = _customer(credit_limit_cents=0, outstanding_balance_cents=0)

        check_credit_limit(customer, 0, ENFORCED)
        with pytest.raises(CreditLimitExceeded) as exc_info:
            check_credit_limit(customer, 1, ENFORCED)
        assert exc_info.value.context["available_credit"] == 0

    def test_usage_above_limit_reports_negative_available(self):
        customer = _customer(credit_limit_cents=1_000, outstanding_balance_cents=1_500)

        with pytest.raises(CreditLimitExceeded) as exc_info:
            check_credit_limit(customer, 100, ENFORCED)
        assert exc_info.value.context["available_credit"] == -500
        assert exc_info.value.context["excess_amount"] == 600

    def test_negative_usage_is_refused(self):
        customer = _customer(outstanding_balance_cents=-1)

        with pytest.raises(BusinessRuleViolation) as exc_info:
            check_credit_limit(customer, 100, ENFORCED)
        assert not isinstance(exc_info.value, CreditLimitExceeded)
        assert exc_info.value.context["rule"] == "negative_credit_usage"

    def test_enforcement_disabled_passes_everything(self):
        check_credit_limit(_customer(), 99_000_000, CreditPolicy(enforce_limit=False))


class TestCreditSaleAllowed:

    def test_cash_customer_cannot_buy_on_credit(self):
        customer = _customer(customer_type="cash")

        with pytest.raises(BusinessRuleViolation) as exc_info:
            ensure_credit_sale_allowed(customer, 100, ENFORCED)
        assert exc_info.value.context["rule"] == "cash_customer"

    def test_blocked_facility_is_refused(self):
        customer = _customer(credit_blocked=True)

        assert is_credit_allowed(customer) is False
        with pytest.raises(BusinessRuleViolation) as exc_info:
            ensure_credit_sale_allowed(customer, 100, ENFORCED)
        assert exc_info.value.context["rule"] == "credit_blocked"

    def test_inactive_customer_is_refused(self):
        with pytest.raises(BusinessRuleViolation) as exc_info:
            ensure_credit_sale_allowed(_customer(is_active=False), 100, ENFORCED)
        assert exc_info.value.context["rule"] == "credit_not_allowed"

    def test_both_type_customer_runs_the_limit_guard(self):
        customer = _customer(customer_type="both")

        ensure_credit_sale_allowed(customer, 2_000_000, ENFORCED)
        with pytest.raises(CreditLimitExceeded):
            ensure_credit_sale_allowed(customer, 3_000_000, ENFORCED)

    def test_error_serializes_for_api(self):
        with pytest.raises(CreditLimitExceeded) as exc_info:
            ensure_credit_sale_allowed(_customer(), 3_000_000, ENFORCED)

        body = exc_info.value.to_dict()
        assert set(body) == {"message", "error_type", "context"}
        assert body["context"]["excess_amount"] == 150_000
