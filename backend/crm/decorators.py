# Overview: Request authentication decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service
from .services.session_service import Unauthenticated


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid bearer session.

    Sets g.actor (user id + role, read from the users table for THIS request)
    and g.token. Returns 401 when the token is missing, invalid, expired or
    revoked, or when the user has been deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        try:
            actor = session_service.current_actor(token)
        except Unauthenticated as e:
            return jsonify({"error": str(e)}), 401

        g.actor = actor
        g.token = token
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Require the authenticated caller to hold the admin role. Use after @require_auth."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not hasattr(g, "actor"):
            return jsonify({"error": "Authentication required"}), 401
        if not g.actor.is_admin:
            return jsonify({"error": "Not authorized"}), 403
        return f(*args, **kwargs)
    return decorated_function
