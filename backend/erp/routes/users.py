# Overview: User creation and role assignment API.

from flask import Blueprint, request, jsonify, current_app, g

from ..exceptions import BusinessRuleViolation
from ..models import User
from ..services import auth_service, permission_service
from ..services.auth_service import PasswordValidationError
from ..decorators import require_auth, require_permission
from ..extensions import db


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("/")
@require_auth
@require_permission("VIEW_USERS")
def list_users_route():
    try:
        users = db.session.query(User).filter_by(org_id=g.org_id).order_by(User.username).all()
        return jsonify({
            "users": [
                {**u.to_dict(), "roles": permission_service.get_user_role_names(u.id)}
                for u in users
            ]
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list users")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.post("/")
@require_auth
@require_permission("ASSIGN_ROLES")
def create_user_route():
    try:
        data = request.get_json() or {}
        username = data.get("username")
        email = data.get("email")
        password = data.get("password")
        if not all([username, email, password]):
            return jsonify({"error": "username, email and password required"}), 400

        user = auth_service.create_user(
            username=username,
            email=email,
            password=password,
            org_id=g.org_id,
            full_name=data.get("full_name"),
            ctx=g.actor,
        )
        return jsonify({"user": user.to_dict()}), 201
    except (PasswordValidationError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.post("/<int:user_id>/roles")
@require_auth
@require_permission("ASSIGN_ROLES")
def assign_role_route(user_id: int):
    """
    Assign a role. Roles the tenant declares mutually exclusive are refused
    with error_type "role_separation_violation" (403).
    """
    try:
        data = request.get_json() or {}
        role_name = data.get("role")
        if not role_name:
            return jsonify({"error": "role required"}), 400
        auth_service.assign_role(user_id, role_name, g.actor, data.get("reason"))
        return jsonify({"roles": permission_service.get_user_role_names(user_id)}), 200
    except BusinessRuleViolation as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to assign role")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.delete("/<int:user_id>/roles/<string:role_name>")
@require_auth
@require_permission("ASSIGN_ROLES")
def remove_role_route(user_id: int, role_name: str):
    try:
        data = request.get_json(silent=True) or {}
        removed = auth_service.remove_role(user_id, role_name, g.actor, data.get("reason"))
        if not removed:
            return jsonify({"error": "Role not assigned"}), 404
        return jsonify({"roles": permission_service.get_user_role_names(user_id)}), 200
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to remove role")
        return jsonify({"error": "Internal server error"}), 500
