# Overview: Tenant policy resolution: environment defaults overridden by organization settings.

"""
Tenant Policy Settings

The business-rule guards never read configuration themselves. They receive a
TenantPolicy resolved once per call site by load_policy(): Config values are
the defaults, OrganizationSetting rows override them per organization.

All policy objects are frozen; a guard cannot mutate the policy it is given.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from flask import current_app

from ..extensions import db
from ..models import Organization, OrganizationSetting


APPROVAL_KINDS = (
    "sales_order",
    "purchase_order",
    "expense",
    "inventory_adjustment",
    "credit_limit_change",
)


class SettingsError(ValueError):
    pass


class SettingsValidationError(SettingsError):
    pass


class SettingsNotFoundError(SettingsError):
    pass


@dataclass(frozen=True)
class CreditPolicy:
    default_limit_cents: int = 0
    grace_period_days: int = 30
    warning_threshold_pct: int = 80
    enforce_limit: bool = True
    allow_cash_when_blocked: bool = True


@dataclass(frozen=True)
class ApprovalThresholds:
    """
    Per-kind approval thresholds. A threshold of None disables the check for
    that kind; an amount strictly above the threshold requires approval.
    """
    thresholds: Mapping[str, int | None] = field(default_factory=lambda: MappingProxyType({}))
    sales_order_approval_required: bool = True

    def threshold_for(self, kind: str) -> int | None:
        if kind not in APPROVAL_KINDS:
            raise SettingsValidationError(f"Unknown approval kind: {kind}")
        return self.thresholds.get(kind)


@dataclass(frozen=True)
class RoleSeparationPolicy:
    """
    Mutually exclusive roles. The map is read symmetrically: if A excludes B,
    B also excludes A.
    """
    exclusions: Mapping[str, frozenset[str]] = field(default_factory=lambda: MappingProxyType({}))

    def conflicts_for(self, role: str) -> frozenset[str]:
        direct = set(self.exclusions.get(role, frozenset()))
        reverse = {other for other, excluded in self.exclusions.items() if role in excluded}
        return frozenset(direct | reverse)

    def are_exclusive(self, role: str, other: str) -> bool:
        return other in self.conflicts_for(role)


@dataclass(frozen=True)
class TenantPolicy:
    org_id: int | None
    credit: CreditPolicy
    approvals: ApprovalThresholds
    role_separation: RoleSeparationPolicy
    audit_retention_days: int = 0
    vat_rate_bps: int = 0


# key -> value type
SETTING_KEYS = {
    "credit.default_limit_cents": "int",
    "credit.grace_period_days": "int",
    "credit.warning_threshold_pct": "int",
    "credit.enforce_limit": "bool",
    "credit.allow_cash_when_blocked": "bool",
    "approval.thresholds": "json",
    "approval.sales_order_required": "bool",
    "roles.separation": "json",
    "audit.retention_days": "int",
    "tax.vat_rate_bps": "int",
}


def _coerce_value(key: str, raw_value: Any) -> Any:
    t = SETTING_KEYS.get(key)
    if t is None:
        raise SettingsValidationError(f"Unknown setting: {key}")
    v = raw_value
    if t == "bool":
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            s = v.strip().lower()
            if s in {"true", "1", "yes", "on"}:
                return True
            if s in {"false", "0", "no", "off"}:
                return False
        raise SettingsValidationError(f"{key}: expected boolean")
    if t == "int":
        if isinstance(v, bool):
            raise SettingsValidationError(f"{key}: expected integer")
        if isinstance(v, int):
            value = v
        elif isinstance(v, float) and int(v) == v:
            value = int(v)
        elif isinstance(v, str) and v.strip().lstrip("-").isdigit():
            value = int(v.strip())
        else:
            raise SettingsValidationError(f"{key}: expected integer")
        if value < 0:
            raise SettingsValidationError(f"{key}: must be >= 0")
        if key == "credit.warning_threshold_pct" and value > 100:
            raise SettingsValidationError(f"{key}: must be <= 100")
        return value
    # json
    if isinstance(v, str):
        try:
            v = json.loads(v)
        except ValueError:
            raise SettingsValidationError(f"{key}: expected JSON object")
    if not isinstance(v, dict):
        raise SettingsValidationError(f"{key}: expected JSON object")
    if key == "approval.thresholds":
        for kind, threshold in v.items():
            if kind not in APPROVAL_KINDS:
                raise SettingsValidationError(f"{key}: unknown approval kind {kind}")
            if threshold is not None and (isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 0):
                raise SettingsValidationError(f"{key}: threshold for {kind} must be a non-negative integer or null")
    if key == "roles.separation":
        for role, excluded in v.items():
            if not isinstance(excluded, list) or not all(isinstance(r, str) for r in excluded):
                raise SettingsValidationError(f"{key}: exclusions for {role} must be a list of role names")
    return v


def _overrides(org_id: int | None) -> dict[str, Any]:
    if not org_id:
        return {}
    rows = db.session.query(OrganizationSetting).filter_by(org_id=org_id).all()
    return {r.key: r.value_json for r in rows if r.key in SETTING_KEYS}


def build_policy(config: Mapping[str, Any], overrides: Mapping[str, Any] | None = None, org_id: int | None = None) -> TenantPolicy:
    """Combine configuration defaults with per-organization overrides."""
    overrides = overrides or {}

    def pick(key: str, default):
        return overrides[key] if overrides.get(key) is not None else default

    credit = CreditPolicy(
        default_limit_cents=pick("credit.default_limit_cents", config.get("CREDIT_DEFAULT_LIMIT_CENTS", 0)),
        grace_period_days=pick("credit.grace_period_days", config.get("CREDIT_GRACE_PERIOD_DAYS", 30)),
        warning_threshold_pct=pick("credit.warning_threshold_pct", config.get("CREDIT_WARNING_THRESHOLD_PCT", 80)),
        enforce_limit=pick("credit.enforce_limit", config.get("CREDIT_ENFORCE_LIMIT", True)),
        allow_cash_when_blocked=pick("credit.allow_cash_when_blocked", config.get("CREDIT_ALLOW_CASH_WHEN_BLOCKED", True)),
    )

    thresholds = dict(config.get("APPROVAL_THRESHOLDS") or {})
    thresholds.update(overrides.get("approval.thresholds") or {})
    approvals = ApprovalThresholds(
        thresholds=MappingProxyType({k: thresholds.get(k) for k in APPROVAL_KINDS}),
        sales_order_approval_required=pick(
            "approval.sales_order_required",
            config.get("SALES_ORDER_REQUIRE_APPROVAL", True),
        ),
    )

    separation = overrides.get("roles.separation")
    if separation is None:
        separation = config.get("ROLE_SEPARATION") or {}
    role_separation = RoleSeparationPolicy(
        exclusions=MappingProxyType({role: frozenset(excluded) for role, excluded in separation.items()}),
    )

    return TenantPolicy(
        org_id=org_id,
        credit=credit,
        approvals=approvals,
        role_separation=role_separation,
        audit_retention_days=pick("audit.retention_days", config.get("AUDIT_RETENTION_DAYS", 0)),
        vat_rate_bps=pick("tax.vat_rate_bps", config.get("VAT_RATE_BPS", 0)),
    )


def load_policy(org_id: int | None) -> TenantPolicy:
    """Resolve the effective policy for an organization (needs an app context)."""
    return build_policy(current_app.config, _overrides(org_id), org_id=org_id)


def get_org_settings(org_id: int) -> list[dict]:
    rows = db.session.query(OrganizationSetting).filter_by(org_id=org_id).order_by(OrganizationSetting.key).all()
    return [r.to_dict() for r in rows]


def set_setting(org_id: int, key: str, value: Any, ctx) -> dict:
    """
    Create or replace one organization-level override.

    Passing value=None removes the override so the configuration default
    applies again.
    """
    from . import audit_service

    if not db.session.get(Organization, org_id):
        raise SettingsNotFoundError("Organization not found")
    if key not in SETTING_KEYS:
        raise SettingsValidationError(f"Unknown setting: {key}")

    coerced = None if value is None else _coerce_value(key, value)

    row = db.session.query(OrganizationSetting).filter_by(org_id=org_id, key=key).first()
    old_value = row.value_json if row else None
    if row:
        row.value_json = coerced
        row.updated_by_user_id = ctx.user_id
    else:
        row = OrganizationSetting(org_id=org_id, key=key, value_json=coerced, updated_by_user_id=ctx.user_id)
        db.session.add(row)
    db.session.flush()

    audit_service.log_action(
        row,
        "UPDATE",
        ctx,
        old_data={"key": key, "value": old_value},
        data={"key": key, "value": coerced},
    )
    db.session.commit()
    return row.to_dict()
