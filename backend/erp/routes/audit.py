# Overview: Read-only API over the business audit trail.

from flask import Blueprint, request, jsonify, current_app, g

from ..services import audit_service
from ..decorators import require_auth, require_permission
from ..time_utils import parse_iso_datetime


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit-logs")


@audit_bp.get("/")
@require_auth
@require_permission("VIEW_AUDIT_LOG")
def list_audit_logs_route():
    """
    List audit entries of the caller's organization, newest first.

    Filters: action, user_id, auditable_type, auditable_id, from, to (ISO-8601),
    limit, offset.
    """
    try:
        from_date = parse_iso_datetime(request.args.get("from"))
        to_date = parse_iso_datetime(request.args.get("to"))
    except ValueError:
        return jsonify({"error": "from/to must be ISO-8601 datetimes"}), 400

    try:
        rows, total = audit_service.list_audit_logs(
            g.org_id,
            action=request.args.get("action"),
            user_id=request.args.get("user_id", type=int),
            auditable_type=request.args.get("auditable_type"),
            auditable_id=request.args.get("auditable_id", type=int),
            from_date=from_date,
            to_date=to_date,
            limit=request.args.get("limit", 100, type=int),
            offset=request.args.get("offset", 0, type=int),
        )
        return jsonify({"audit_logs": rows, "total": total}), 200
    except Exception:
        current_app.logger.exception("Failed to list audit logs")
        return jsonify({"error": "Internal server error"}), 500
