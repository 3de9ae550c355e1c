# Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .errors import PermissionDeniedError
from .services import session_service
from .services.permission_service import require_capability


def require_auth(f):
    """
    Require a valid bearer token and establish tenant context.

    Sets on flask.g:
    - g.current_user: the authenticated User
    - g.company_id / g.store_id: tenant context captured at login
    - g.capabilities: the caller's resolved Capabilities
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(auth_header.split(" ", 1)[1])
        if context is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.company_id = context.company_id
        g.store_id = context.store_id
        g.capabilities = context.capabilities
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_capability_flag(flag: str):
    """Require a capability (e.g. "can_process_sales"). Use after @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            caps = getattr(g, "capabilities", None)
            if caps is None:
                return jsonify({"error": "Authentication required"}), 401
            try:
                require_capability(caps, flag)
            except PermissionDeniedError as e:
                return jsonify(e.to_dict()), 403
            return f(*args, **kwargs)

        return decorated_function

    return decorator
