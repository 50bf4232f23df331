# Overview: Flask API routes for customers and their credit facility.

"""
Customer API routes

Business rule errors (credit limit, approval, role separation) are returned
as {"message", "error_type", "context"} with their own status code.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..exceptions import BusinessRuleViolation, NotFoundError
from ..services import credit_service, customer_service, settings_service
from ..decorators import require_auth, require_permission


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("/")
@require_auth
@require_permission("VIEW_CUSTOMERS")
def list_customers_route():
    try:
        rows, total = customer_service.list_customers(
            g.org_id,
            search=request.args.get("search"),
            customer_type=request.args.get("customer_type"),
            limit=request.args.get("limit", 100, type=int),
            offset=request.args.get("offset", 0, type=int),
        )
        return jsonify({"customers": [c.to_dict() for c in rows], "total": total}), 200
    except Exception:
        current_app.logger.exception("Failed to list customers")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/")
@require_auth
@require_permission("MANAGE_CUSTOMERS")
def create_customer_route():
    try:
        data = request.get_json() or {}
        reason = data.pop("reason", None)
        customer = customer_service.create_customer(data, g.actor, reason)
        pending = credit_service.list_credit_limit_changes(g.org_id, status="PENDING", customer_id=customer.id)
        return jsonify({
            "customer": customer.to_dict(),
            "pending_credit_limit_change": pending[0].to_dict() if pending else None,
        }), 201
    except BusinessRuleViolation as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>")
@require_auth
@require_permission("VIEW_CUSTOMERS")
def get_customer_route(customer_id: int):
    try:
        customer = customer_service.get_customer(g.org_id, customer_id)
        return jsonify({"customer": customer.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.put("/<int:customer_id>")
@require_auth
@require_permission("MANAGE_CUSTOMERS")
def update_customer_route(customer_id: int):
    try:
        data = request.get_json() or {}
        reason = data.pop("reason", None)
        customer = customer_service.update_customer(customer_id, data, g.actor, reason)
        return jsonify({"customer": customer.to_dict()}), 200
    except BusinessRuleViolation as e:
        return jsonify(e.to_dict()), e.status_code
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_permission("MANAGE_CUSTOMERS")
def delete_customer_route(customer_id: int):
    try:
        data = request.get_json(silent=True) or {}
        customer_service.delete_customer(customer_id, g.actor, data.get("reason"))
        return jsonify({"message": "Customer deleted"}), 200
    except BusinessRuleViolation as e:
        return jsonify(e.to_dict()), e.status_code
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to delete customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>/credit")
@require_auth
@require_permission("VIEW_CUSTOMERS")
def credit_summary_route(customer_id: int):
    try:
        return jsonify({"credit": credit_service.credit_summary(g.org_id, customer_id)}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load credit summary")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.put("/<int:customer_id>/credit")
@require_auth
@require_permission("MANAGE_CREDIT")
def update_credit_limit_route(customer_id: int):
    """
    Change a credit limit.

    Body: {"credit_limit_cents": int, "reason": str}

    Returns 200 with the customer when applied, or 202 with the pending
    credit_limit_change when the increase needs another user's approval.
    """
    try:
        data = request.get_json() or {}
        if "credit_limit_cents" not in data:
            return jsonify({"error": "credit_limit_cents required"}), 400
        change = credit_service.update_credit_limit(
            customer_id,
            data["credit_limit_cents"],
            g.actor,
            reason=data.get("reason"),
        )
        if change is not None:
            return jsonify({
                "message": "Credit limit change awaits approval",
                "credit_limit_change": change.to_dict(),
            }), 202
        customer = customer_service.get_customer(g.org_id, customer_id)
        return jsonify({"customer": customer.to_dict()}), 200
    except BusinessRuleViolation as e:
        return jsonify(e.to_dict()), e.status_code
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update credit limit")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/credit-limit-changes")
@require_auth
@require_permission("VIEW_CUSTOMERS")
def list_credit_limit_changes_route():
    try:
        changes = credit_service.list_credit_limit_changes(
            g.org_id,
            status=request.args.get("status"),
            customer_id=request.args.get("customer_id", type=int),
        )
        return jsonify({"credit_limit_changes": [c.to_dict() for c in changes]}), 200
    except Exception:
        current_app.logger.exception("Failed to list credit limit changes")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/credit-limit-changes/<int:change_id>/approve")
@require_auth
@require_permission("APPROVE_CREDIT_LIMIT")
def approve_credit_limit_change_route(change_id: int):
    """Approve a pending limit change as the calling user; the requester cannot approve."""
    try:
        data = request.get_json(silent=True) or {}
        customer = credit_service.approve_credit_limit_change(change_id, g.actor, data.get("reason"))
        return jsonify({"customer": customer.to_dict()}), 200
    except BusinessRuleViolation as e:
        return jsonify(e.to_dict()), e.status_code
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to approve credit limit change")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/credit-limit-changes/<int:change_id>/reject")
@require_auth
@require_permission("VIEW_CUSTOMERS")
def reject_credit_limit_change_route(change_id: int):
    """Reject (or, for the requester, withdraw) a pending limit change. Body: {"reason": str}"""
    try:
        data = request.get_json(silent=True) or {}
        change = credit_service.reject_credit_limit_change(change_id, g.actor, data.get("reason"))
        return jsonify({"credit_limit_change": change.to_dict()}), 200
    except BusinessRuleViolation as e:
        return jsonify(e.to_dict()), e.status_code
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to reject credit limit change")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/<int:customer_id>/credit-block")
@require_auth
@require_permission("MANAGE_CREDIT")
def credit_block_route(customer_id: int):
    try:
        data = request.get_json() or {}
        if "blocked" not in data:
            return jsonify({"error": "blocked required"}), 400
        customer = credit_service.set_credit_block(
            customer_id, bool(data["blocked"]), g.actor, reason=data.get("reason"),
        )
        return jsonify({"customer": customer.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to change credit block")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/<int:customer_id>/check-credit")
@require_auth
@require_permission("VIEW_CUSTOMERS")
def check_credit_route(customer_id: int):
    """Dry-run the credit limit guard for an order amount."""
    try:
        data = request.get_json() or {}
        amount = data.get("amount_cents")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            return jsonify({"error": "amount_cents must be a non-negative integer"}), 400

        policy = settings_service.load_policy(g.org_id)
        customer = customer_service.get_customer(g.org_id, customer_id)
        credit_service.ensure_credit_sale_allowed(customer, amount, policy.credit)
        return jsonify({
            "allowed": True,
            "available_credit_cents": customer.available_credit_cents,
        }), 200
    except BusinessRuleViolation as e:
        return jsonify({"allowed": False, **e.to_dict()}), e.status_code
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to check credit")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/credit-alerts")
@require_auth
@require_permission("VIEW_CUSTOMERS")
def credit_alerts_route():
    try:
        return jsonify(credit_service.credit_alerts(g.org_id)), 200
    except Exception:
        current_app.logger.exception("Failed to compute credit alerts")
        return jsonify({"error": "Internal server error"}), 500
