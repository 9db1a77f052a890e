"""
Auth Blueprint — login and current-user endpoints.

Endpoints:
    POST /api/v1/auth/login   — email + password → access token
    GET  /api/v1/auth/me      — current user
"""

import logging

from flask import Blueprint, jsonify, request

from app.auth import current_user, login_required
from app.models import db, utcnow
from app.models.auth import User
from app.services.jwt_service import generate_login_response
from app.utils.crypto import verify_password
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


@auth_bp.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        return api_error(E.VALIDATION_REQUIRED, "Email and password are required", sanitize=False)

    user = User.query.filter_by(email=email).first()
    if user is None or not user.is_active or not verify_password(password, user.password_hash):
        logger.info("Failed login attempt", extra={"event_type": "auth.login_failed"})
        return api_error(E.UNAUTHORIZED, "Invalid email or password", status=401, sanitize=False)

    user.last_login_at = utcnow()
    db.session.commit()
    logger.info("User logged in", extra={"user_id": user.id, "event_type": "auth.login"})
    return jsonify(generate_login_response(user)), 200


@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify({"success": True, "user": current_user().to_dict()}), 200
