import pytest

from erp.models import AuditLog, OrganizationSetting
from erp.services import settings_service
from erp.services.settings_service import (
    SettingsNotFoundError,
    SettingsValidationError,
    build_policy,
)

from conftest import actor


BASE_CONFIG = {
    "CREDIT_DEFAULT_LIMIT_CENTS": 0,
    "CREDIT_GRACE_PERIOD_DAYS": 30,
    "CREDIT_WARNING_THRESHOLD_PCT": 80,
    "CREDIT_ENFORCE_LIMIT": True,
    "CREDIT_ALLOW_CASH_WHEN_BLOCKED": True,
    "SALES_ORDER_REQUIRE_APPROVAL": True,
    "APPROVAL_THRESHOLDS": {
        "sales_order": 50_000_000,
        "purchase_order": 100_000_000,
        "expense": 5_000_000,
        "inventory_adjustment": 100,
        "credit_limit_change": 50_000_000,
    },
    "ROLE_SEPARATION": {"booking_officer": ["cashier"]},
    "AUDIT_RETENTION_DAYS": 0,
    "VAT_RATE_BPS": 750,
}


class TestBuildPolicy:

    def test_config_values_are_the_defaults(self):
        policy = build_policy(BASE_CONFIG)

        assert policy.credit.grace_period_days == 30
        assert policy.credit.enforce_limit is True
        assert policy.approvals.threshold_for("sales_order") == 50_000_000
        assert policy.role_separation.are_exclusive("cashier", "booking_officer")
        assert policy.vat_rate_bps == 750

    def test_overrides_win_over_config(self):
        policy = build_policy(BASE_CONFIG, {
            "credit.grace_period_days": 10,
            "approval.thresholds": {"sales_order": 1_000},
            "roles.separation": {},
        }, org_id=9)

        assert policy.org_id == 9
        assert policy.credit.grace_period_days == 10
        assert policy.approvals.threshold_for("sales_order") == 1_000
        # kinds not overridden keep the configured threshold
        assert policy.approvals.threshold_for("purchase_order") == 100_000_000
        assert policy.role_separation.conflicts_for("cashier") == frozenset()

    def test_none_override_falls_back_to_config(self):
        policy = build_policy(BASE_CONFIG, {"credit.warning_threshold_pct": None})
        assert policy.credit.warning_threshold_pct == 80

    def test_policy_is_frozen(self):
        policy = build_policy(BASE_CONFIG)

        with pytest.raises(Exception):
            policy.credit.enforce_limit = False
        with pytest.raises(TypeError):
            policy.approvals.thresholds["sales_order"] = 0


class TestSetSetting:

    def test_set_setting_changes_effective_policy(self, db_session, org_a, admin_a):
        settings_service.set_setting(org_a.id, "credit.grace_period_days", "15", actor(admin_a))

        policy = settings_service.load_policy(org_a.id)
        assert policy.credit.grace_period_days == 15

    def test_setting_is_scoped_to_the_organization(self, db_session, org_a, org_b, admin_a):
        settings_service.set_setting(org_a.id, "credit.enforce_limit", False, actor(admin_a))

        assert settings_service.load_policy(org_a.id).credit.enforce_limit is False
        assert settings_service.load_policy(org_b.id).credit.enforce_limit is True

    def test_clearing_a_setting_restores_the_default(self, db_session, org_a, admin_a):
        ctx = actor(admin_a)
        settings_service.set_setting(org_a.id, "tax.vat_rate_bps", 500, ctx)
        settings_service.set_setting(org_a.id, "tax.vat_rate_bps", None, ctx)

        assert settings_service.load_policy(org_a.id).vat_rate_bps == 0

    def test_setting_change_is_audited(self, db_session, org_a, admin_a):
        settings_service.set_setting(
            org_a.id, "approval.thresholds", {"purchase_order": 2_000}, actor(admin_a),
        )

        entry = db_session.query(AuditLog).filter_by(auditable_type="OrganizationSetting").one()
        assert entry.action == "UPDATE"
        assert entry.user_id == admin_a.id
        assert entry.new_values == {"key": "approval.thresholds", "value": {"purchase_order": 2_000}}
        assert entry.old_values == {"key": "approval.thresholds", "value": None}

    @pytest.mark.parametrize(
        "key,value",
        [
            ("credit.warning_threshold_pct", 150),
            ("credit.grace_period_days", -1),
            ("credit.enforce_limit", "maybe"),
            ("approval.thresholds", {"refund": 10}),
            ("approval.thresholds", {"sales_order": -5}),
            ("roles.separation", {"cashier": "accountant"}),
            ("no.such.key", 1),
        ],
    )
    def test_invalid_values_are_rejected(self, db_session, org_a, admin_a, key, value):
        with pytest.raises(SettingsValidationError):
            settings_service.set_setting(org_a.id, key, value, actor(admin_a))
        assert db_session.query(OrganizationSetting).count() == 0

    def test_unknown_organization(self, db_session, org_a, admin_a):
        with pytest.raises(SettingsNotFoundError):
            settings_service.set_setting(99999, "credit.enforce_limit", True, actor(admin_a))
