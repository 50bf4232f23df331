# Overview: Flask API routes for sales orders; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..exceptions import BusinessRuleViolation, NotFoundError
from ..services import sales_order_service
from ..services.sales_order_service import order_to_dict
from ..decorators import require_auth, require_permission


sales_orders_bp = Blueprint("sales_orders", __name__, url_prefix="/api/sales-orders")


def _rule_error(e: BusinessRuleViolation):
    return jsonify(e.to_dict()), e.status_code


@sales_orders_bp.get("/")
@require_auth
@require_permission("VIEW_SALES_ORDERS")
def list_sales_orders_route():
    try:
        rows, total = sales_order_service.list_sales_orders(
            g.org_id,
            status=request.args.get("status"),
            customer_id=request.args.get("customer_id", type=int),
            limit=request.args.get("limit", 100, type=int),
            offset=request.args.get("offset", 0, type=int),
        )
        return jsonify({"sales_orders": [o.to_dict() for o in rows], "total": total}), 200
    except Exception:
        current_app.logger.exception("Failed to list sales orders")
        return jsonify({"error": "Internal server error"}), 500


@sales_orders_bp.post("/")
@require_auth
@require_permission("CREATE_SALES_ORDER")
def create_sales_order_route():
    """
    Book a sales order.

    Credit orders above the customer's available credit are refused with
    error_type "credit_limit_exceeded" (422).
    """
    try:
        data = request.get_json() or {}
        reason = data.pop("reason", None)
        order = sales_order_service.create_sales_order(data, g.actor, reason)
        return jsonify({"sales_order": order_to_dict(order)}), 201
    except BusinessRuleViolation as e:
        return _rule_error(e)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create sales order")
        return jsonify({"error": "Internal server error"}), 500


@sales_orders_bp.get("/<int:order_id>")
@require_auth
@require_permission("VIEW_SALES_ORDERS")
def get_sales_order_route(order_id: int):
    try:
        order = sales_order_service.get_sales_order(g.org_id, order_id)
        return jsonify({"sales_order": order_to_dict(order)}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load sales order")
        return jsonify({"error": "Internal server error"}), 500


@sales_orders_bp.put("/<int:order_id>")
@require_auth
@require_permission("MODIFY_SALES_ORDER")
def update_sales_order_route(order_id: int):
    try:
        data = request.get_json() or {}
        reason = data.pop("reason", None)
        order = sales_order_service.update_sales_order(order_id, data, g.actor, reason)
        return jsonify({"sales_order": order_to_dict(order)}), 200
    except BusinessRuleViolation as e:
        return _rule_error(e)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update sales order")
        return jsonify({"error": "Internal server error"}), 500


@sales_orders_bp.post("/<int:order_id>/approve")
@require_auth
@require_permission("APPROVE_SALES_ORDER")
def approve_sales_order_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = sales_order_service.approve_sales_order(order_id, g.actor, data.get("reason"))
        return jsonify({"sales_order": order_to_dict(order)}), 200
    except BusinessRuleViolation as e:
        return _rule_error(e)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to approve sales order")
        return jsonify({"error": "Internal server error"}), 500


@sales_orders_bp.post("/<int:order_id>/reject")
@require_auth
@require_permission("APPROVE_SALES_ORDER")
def reject_sales_order_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = sales_order_service.reject_sales_order(order_id, g.actor, data.get("reason"))
        return jsonify({"sales_order": order_to_dict(order)}), 200
    except BusinessRuleViolation as e:
        return _rule_error(e)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to reject sales order")
        return jsonify({"error": "Internal server error"}), 500


@sales_orders_bp.post("/<int:order_id>/fulfill")
@require_auth
@require_permission("FULFILL_SALES_ORDER")
def fulfill_sales_order_route(order_id: int):
    try:
        data = request.get_json() or {}
        status = data.get("fulfillment_status")
        if not status:
            return jsonify({"error": "fulfillment_status required"}), 400
        order = sales_order_service.fulfill_sales_order(order_id, status, g.actor, data.get("reason"))
        return jsonify({"sales_order": order_to_dict(order)}), 200
    except BusinessRuleViolation as e:
        return _rule_error(e)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to fulfill sales order")
        return jsonify({"error": "Internal server error"}), 500


@sales_orders_bp.post("/<int:order_id>/payments")
@require_auth
@require_permission("COLLECT_PAYMENT")
def collect_payment_route(order_id: int):
    try:
        data = request.get_json() or {}
        amount = data.get("amount_cents")
        if amount is None:
            return jsonify({"error": "amount_cents required"}), 400
        order = sales_order_service.collect_payment(
            order_id,
            amount,
            g.actor,
            payment_method=data.get("payment_method") or "cash",
            reason=data.get("reason"),
        )
        return jsonify({"sales_order": order_to_dict(order)}), 200
    except BusinessRuleViolation as e:
        return _rule_error(e)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to collect payment")
        return jsonify({"error": "Internal server error"}), 500
