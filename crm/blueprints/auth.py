"""Auth blueprint — /api/auth/*

The dashboard has a single operator, authenticated by MASTER_PIN.

Route Map:
  POST /api/auth/login   — PIN login, sets the session cookie
  POST /api/auth/logout  — end the session
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import login_required, login_user, logout_user

from crm.extensions import limiter
from crm.operator import Operator

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.route("/login", methods=["POST"])
@limiter.limit("15 per minute")
def login():
    data = request.get_json(silent=True) or {}
    pin = str(data.get("pin") or "")

    if not pin:
        return jsonify({"error": "PIN is required"}), 400

    if not Operator.check_pin(pin):
        logger.warning(f"Failed login attempt from {request.remote_addr}")
        return jsonify({"error": "Invalid PIN"}), 401

    login_user(Operator(), remember=True)
    return jsonify({"success": True})


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"success": True})
