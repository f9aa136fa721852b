# backend/crm/routes/auth.py
"""
Authentication routes.

- POST /api/auth/login   {"username", "password"} -> {"token", "user"}
- POST /api/auth/logout  revoke the bearer token in use
- GET  /api/auth/me      caller's identity with the CURRENT role
"""

from datetime import timedelta

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..models import User
from ..services import auth_service, session_service
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    data = request.get_json(silent=True) or {}
    username = data.get("username")
    password = data.get("password")
    if not username or not password:
        return jsonify({"error": "username and password are required"}), 400

    try:
        user = auth_service.authenticate(username, password)
        if user is None:
            return jsonify({"error": "Invalid credentials"}), 401

        ttl = timedelta(hours=current_app.config.get("SESSION_TTL_HOURS", 12))
        _, token = session_service.create_session(user.id, ttl=ttl)
        return jsonify({"token": token, "user": user.to_dict()}), 200
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(g.token)
        return jsonify({"message": "Logged out"}), 200
    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    user = db.session.get(User, g.actor.user_id)
    return jsonify({"user": user.to_dict()}), 200
