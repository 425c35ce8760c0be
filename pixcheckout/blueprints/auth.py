"""Auth blueprint: /auth/*

Admin login and logout for the JSON admin API. Session cookie based
(Flask-Login). The login response carries a CSRF token for the admin
routes, which stay CSRF-protected.
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, logout_user, login_user
from flask_wtf.csrf import generate_csrf
from werkzeug.security import check_password_hash

from pixcheckout.extensions import csrf, limiter
from pixcheckout.models.user import User
from pixcheckout.services.persistence import get_persistence

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _user_payload(user):
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "is_admin": bool(user.is_admin),
    }


# ──────────────────────────────────────────────
# POST /auth/login
# ──────────────────────────────────────────────

@auth_bp.route("/login", methods=["POST"])
@limiter.limit("15 per minute")
@csrf.exempt
def login():
    """Email + password login. Body: {email, password, remember?}"""
    if current_user.is_authenticated:
        return jsonify(user=_user_payload(current_user), csrf_token=generate_csrf())

    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").lower().strip()
    password = data.get("password") or ""

    if not email or not password:
        return jsonify(
            error="validation_error", message="Email and password are required."
        ), 400

    user = User.query.filter_by(email=email).first()

    if user is None or not check_password_hash(user.password_hash, password):
        return jsonify(
            error="invalid_credentials", message="Invalid email or password."
        ), 401

    if not user.is_active:
        return jsonify(
            error="account_disabled", message="Your account has been deactivated."
        ), 403

    login_user(user, remember=bool(data.get("remember")))

    persistence = get_persistence()
    persistence.log_audit("user.logged_in", {"email": email}, actor_user_id=user.id)
    persistence.commit()

    return jsonify(user=_user_payload(user), csrf_token=generate_csrf())


# ──────────────────────────────────────────────
# POST /auth/logout
# ──────────────────────────────────────────────

@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify(status="logged_out")
