"""Settings blueprint — /api/settings/*

Route Map:
  GET  /api/settings/business-context — notes + documents fed to AI drafts
  POST /api/settings/business-context — replace them
"""

from flask import Blueprint, jsonify, request
from flask_login import login_required

from crm.services import ai_service

settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.route("/business-context", methods=["GET"])
@login_required
def get_business_context():
    context = ai_service.get_business_context()
    if context is None:
        return jsonify({"notes": "", "attachments": []})
    return jsonify(context.to_dict())


@settings_bp.route("/business-context", methods=["POST"])
@login_required
def save_business_context():
    data = request.get_json(silent=True) or {}
    context = ai_service.save_business_context(
        data.get("notes", ""), data.get("attachments", [])
    )
    return jsonify({"success": True, **context.to_dict()})
