# backend/erp/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///agro_erp.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Company defaults (amounts are minor currency units)
    COMPANY_CURRENCY = os.environ.get("COMPANY_CURRENCY", "NGN")
    VAT_RATE_BPS = _env_int("VAT_RATE_BPS", 750)

    # Credit policy defaults; tenants override these through organization settings
    CREDIT_DEFAULT_LIMIT_CENTS = _env_int("DEFAULT_CREDIT_LIMIT_CENTS", 0)
    CREDIT_GRACE_PERIOD_DAYS = _env_int("CREDIT_GRACE_PERIOD", 30)
    CREDIT_WARNING_THRESHOLD_PCT = _env_int("CREDIT_WARNING_THRESHOLD", 80)
    CREDIT_ENFORCE_LIMIT = _env_bool("CREDIT_ENFORCE_LIMIT", True)
    CREDIT_ALLOW_CASH_WHEN_BLOCKED = _env_bool("CREDIT_ALLOW_CASH_WHEN_BLOCKED", True)

    # Approval thresholds: amounts above these require a second-party sign-off
    SALES_ORDER_REQUIRE_APPROVAL = _env_bool("SALES_ORDER_REQUIRE_APPROVAL", True)
    APPROVAL_THRESHOLDS = {
        "sales_order": _env_int("APPROVAL_THRESHOLD_SALES_CENTS", 50_000_000),
        "purchase_order": _env_int("APPROVAL_THRESHOLD_PURCHASE_CENTS", 100_000_000),
        "expense": _env_int("APPROVAL_THRESHOLD_EXPENSE_CENTS", 5_000_000),
        "inventory_adjustment": _env_int("APPROVAL_THRESHOLD_INVENTORY", 100),  # quantity, not money
        "credit_limit_change": _env_int("APPROVAL_THRESHOLD_CREDIT_CENTS", 50_000_000),
    }

    # Roles that cannot coexist on the same user or the same transaction
    ROLE_SEPARATION = {
        "booking_officer": ["cashier"],
        "cashier": ["booking_officer", "accountant"],
    }

    # 0 = keep audit logs forever
    AUDIT_RETENTION_DAYS = _env_int("AUDIT_RETENTION_DAYS", 0)
