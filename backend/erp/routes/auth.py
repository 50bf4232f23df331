# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..models import AuditLog
from ..services import audit_service, auth_service, permission_service, session_service
from ..decorators import require_auth
from ..extensions import db


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    The token must be sent as "Authorization: Bearer <token>" on protected routes.
    """
    try:
        data = request.get_json() or {}
        username = data.get("username") or data.get("email")
        password = data.get("password")
        org_id = data.get("org_id")

        if not all([username, password]):
            return jsonify({"error": "username/email and password required"}), 400

        user_agent = request.headers.get("User-Agent")
        ip_address = request.remote_addr

        user = auth_service.authenticate(username, password, org_id=org_id)
        if not user:
            permission_service.log_security_event(
                user_id=None,
                event_type="LOGIN_FAILED",
                success=False,
                resource=request.path,
                action="LOGIN",
                reason=f"Invalid credentials for {username}",
                ip_address=ip_address,
                user_agent=user_agent,
                org_id=org_id,
            )
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=user_agent,
            ip_address=ip_address
        )

        actor = auth_service.build_actor_context(user, ip_address=ip_address, user_agent=user_agent)
        audit_service.log_action(user, AuditLog.ACTION_LOGIN, actor)
        db.session.commit()

        return jsonify({
            "user": user.to_dict(),
            "roles": sorted(actor.roles),
            "permissions": sorted(actor.permissions),
            "token": token,
            "session": session.to_dict(),
            "org_id": session.org_id,
            "message": "Login successful"
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(g.session_token)
        audit_service.log_action(g.current_user, AuditLog.ACTION_LOGOUT, g.actor)
        db.session.commit()
        return jsonify({"message": "Logged out"}), 200
    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({
        "user": g.current_user.to_dict(),
        "org_id": g.org_id,
        "roles": sorted(g.actor.roles),
        "permissions": sorted(g.actor.permissions),
    }), 200
