"""Session login and logout."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required, login_user, logout_user

from .. import get_users_repository

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@auth_bp.post("/login")
def login():
    """Start a session for the account matching ``email``/``password``."""

    data = request.get_json(silent=True) or request.form
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""
    user = get_users_repository().authenticate(email, password)
    if user is None:
        current_app.logger.info("Failed login for %s", email)
        return jsonify({"error": "Invalid email or password."}), 401
    login_user(user)
    return jsonify({"id": user.id, "name": user.name, "role": user.role})


@auth_bp.post("/logout")
@login_required
def logout():
    logout_user()
    return jsonify({"status": "logged_out"})
