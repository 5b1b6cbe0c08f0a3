"""AI blueprint — /api/ai/*

Route Map:
  POST /api/ai/draft — draft a reply to an email
                       {email: {from, from_email, subject, body},
                        reply_type?: professional|friendly|brief,
                        custom_prompt?: str}
"""

from flask import Blueprint, jsonify, request
from flask_login import login_required

from crm.services import ai_service

ai_bp = Blueprint("ai", __name__, url_prefix="/api/ai")


@ai_bp.route("/draft", methods=["POST"])
@login_required
def draft():
    data = request.get_json(silent=True) or {}
    text = ai_service.draft_reply(
        data.get("email"),
        reply_type=data.get("reply_type") or "professional",
        custom_prompt=data.get("custom_prompt"),
    )
    return jsonify({"draft": text})
