# Overview: Request and permission decorators for API routes.

from functools import wraps

from flask import request, jsonify, g

from .services import auth_service, session_service, permission_service
from .services.permission_service import PermissionDeniedError
from .permissions import validate_permission_code


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'actor')


def _extract_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1]


def require_auth(f):
    """
    Require authentication and establish tenant context.

    Sets on flask.g:
    - g.current_user: the authenticated User
    - g.org_id: the session's organization (tenant context)
    - g.actor: ActorContext handed to every guarded or audited service call

    Returns 401 for a missing, invalid, expired or revoked token.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _extract_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.org_id = context.org_id
        g.session_token = token
        g.actor = auth_service.build_actor_context(
            context.user,
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a specific permission. Denials are logged to security_events."""
    if not validate_permission_code(permission_code):
        raise ValueError(f"Unknown permission code: {permission_code}")

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.require_permission(
                    user_id=g.current_user.id,
                    permission_code=permission_code,
                    resource=request.path,
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                    org_id=g.org_id,
                )
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                    "message": str(e)
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
