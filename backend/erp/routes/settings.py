# Overview: Organization policy settings API (credit policy, approval thresholds, role separation).

from flask import Blueprint, request, jsonify, current_app, g

from ..services import settings_service
from ..services.settings_service import SettingsError, SettingsNotFoundError
from ..decorators import require_auth, require_permission


settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


def _policy_to_dict(policy: settings_service.TenantPolicy) -> dict:
    return {
        "credit": {
            "default_limit_cents": policy.credit.default_limit_cents,
            "grace_period_days": policy.credit.grace_period_days,
            "warning_threshold_pct": policy.credit.warning_threshold_pct,
            "enforce_limit": policy.credit.enforce_limit,
            "allow_cash_when_blocked": policy.credit.allow_cash_when_blocked,
        },
        "approvals": {
            "thresholds": dict(policy.approvals.thresholds),
            "sales_order_approval_required": policy.approvals.sales_order_approval_required,
        },
        "role_separation": {
            role: sorted(excluded) for role, excluded in policy.role_separation.exclusions.items()
        },
        "audit_retention_days": policy.audit_retention_days,
        "vat_rate_bps": policy.vat_rate_bps,
    }


@settings_bp.get("/")
@require_auth
@require_permission("MANAGE_SETTINGS")
def get_settings_route():
    try:
        return jsonify({
            "overrides": settings_service.get_org_settings(g.org_id),
            "effective": _policy_to_dict(settings_service.load_policy(g.org_id)),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to load settings")
        return jsonify({"error": "Internal server error"}), 500


@settings_bp.put("/<string:key>")
@require_auth
@require_permission("MANAGE_SETTINGS")
def put_setting_route(key: str):
    try:
        data = request.get_json() or {}
        if "value" not in data:
            return jsonify({"error": "value required"}), 400
        setting = settings_service.set_setting(g.org_id, key, data["value"], g.actor)
        return jsonify({"setting": setting}), 200
    except SettingsNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except SettingsError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update setting")
        return jsonify({"error": "Internal server error"}), 500
