# Overview: Flask API routes for purchase orders.

from flask import Blueprint, request, jsonify, current_app, g

from ..exceptions import BusinessRuleViolation, NotFoundError
from ..services import purchase_order_service
from ..decorators import require_auth, require_permission


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


@purchase_orders_bp.post("/")
@require_auth
@require_permission("CREATE_PURCHASE_ORDER")
def create_purchase_order_route():
    try:
        data = request.get_json() or {}
        reason = data.pop("reason", None)
        po = purchase_order_service.create_purchase_order(data, g.actor, reason)
        return jsonify({"purchase_order": po.to_dict()}), 201
    except BusinessRuleViolation as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.get("/<int:po_id>")
@require_auth
@require_permission("CREATE_PURCHASE_ORDER")
def get_purchase_order_route(po_id: int):
    try:
        po = purchase_order_service.get_purchase_order(g.org_id, po_id)
        return jsonify({"purchase_order": po.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.post("/<int:po_id>/approve")
@require_auth
@require_permission("APPROVE_PURCHASE_ORDER")
def approve_purchase_order_route(po_id: int):
    try:
        data = request.get_json(silent=True) or {}
        po = purchase_order_service.approve_purchase_order(po_id, g.actor, data.get("reason"))
        return jsonify({"purchase_order": po.to_dict()}), 200
    except BusinessRuleViolation as e:
        return jsonify(e.to_dict()), e.status_code
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to approve purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.post("/<int:po_id>/receive")
@require_auth
@require_permission("RECEIVE_PURCHASE_ORDER")
def receive_purchase_order_route(po_id: int):
    try:
        data = request.get_json(silent=True) or {}
        po = purchase_order_service.receive_purchase_order(po_id, g.actor, data.get("reason"))
        return jsonify({"purchase_order": po.to_dict()}), 200
    except BusinessRuleViolation as e:
        return jsonify(e.to_dict()), e.status_code
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to receive purchase order")
        return jsonify({"error": "Internal server error"}), 500
