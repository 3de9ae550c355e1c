# backend/backoffice/routes/auth.py
"""
Authentication API routes

Self-registration does not exist; users are created with `flask users create`.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..services import auth_service, session_service
from ..services.permission_service import log_security_event, resolve_capabilities


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be sent as `Authorization: Bearer <token>` on protected routes.
    Failed attempts are recorded as LOGIN_FAILED security events.
    """
    try:
        data = request.get_json(silent=True) or {}
        identifier = data.get("username") or data.get("email") or data.get("identifier")
        password = data.get("password")

        if not identifier or not password:
            return jsonify({"error": "username/email and password required"}), 400

        user = auth_service.authenticate(identifier, password)
        if not user:
            log_security_event(
                user_id=None,
                event_type="LOGIN_FAILED",
                success=False,
                reason=f"Invalid credentials for {identifier}",
            )
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        capabilities = resolve_capabilities(user, session.company_id, session.store_id)

        return jsonify({
            "user": user.to_dict(),
            "capabilities": capabilities.to_dict(),
            "token": token,
            "session": session.to_dict(),
            "company_id": session.company_id,
            "store_id": session.store_id,
            "message": "Login successful",
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    try:
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authorization header required"}), 401

        if not session_service.revoke_session(auth_header.split(" ", 1)[1]):
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current user, tenant context and capabilities (for UI filtering)."""
    return jsonify({
        "user": g.current_user.to_dict(),
        "capabilities": g.capabilities.to_dict(),
        "company_id": g.company_id,
        "store_id": g.store_id,
    }), 200
