"""Meta blueprint — /api/meta/*

Webhook deliveries are always acknowledged with 200 so Meta doesn't retry
into a storm; processing failures are logged instead.

Route Map:
  GET  /api/meta/webhook     — subscription handshake (hub.challenge)
  POST /api/meta/webhook     — leadgen changes + Instagram/Messenger DMs
  POST /api/meta/sync-leads  — pull recent leads from every connected form
  GET  /api/meta/status      — connected pages
  POST /api/meta/disconnect  — forget all page tokens
"""

import json
import logging

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from crm.services import meta_service

logger = logging.getLogger(__name__)

meta_bp = Blueprint("meta", __name__, url_prefix="/api/meta")


@meta_bp.route("/webhook", methods=["GET"])
def verify_webhook():
    mode = request.args.get("hub.mode")
    token = request.args.get("hub.verify_token")
    challenge = request.args.get("hub.challenge", "")
    expected = current_app.config.get("META_WEBHOOK_VERIFY_TOKEN")

    if mode == "subscribe" and expected and token == expected:
        logger.info("Meta webhook verified successfully")
        return challenge, 200, {"Content-Type": "text/plain"}

    logger.warning("Meta webhook verification failed")
    return "Forbidden", 403, {"Content-Type": "text/plain"}


@meta_bp.route("/webhook", methods=["POST"])
def receive_webhook():
    """Receive a Meta webhook delivery.

    1. Verify X-Hub-Signature-256 (when META_VERIFY_SIGNATURES is on)
    2. Dispatch leadgen changes and messaging events
    3. Return 200 regardless of processing outcome
    """
    payload = request.get_data()

    if current_app.config.get("META_VERIFY_SIGNATURES"):
        signature = request.headers.get("X-Hub-Signature-256", "")
        if not meta_service.verify_signature(payload, signature):
            logger.warning("Invalid Meta webhook signature")
            return jsonify({"error": "Invalid signature"}), 401

    try:
        data = json.loads(payload or b"{}")
        meta_service.process_webhook_payload(data)
    except Exception as e:
        logger.error(f"Error processing Meta webhook: {e}")
        return jsonify({"received": True, "error": "Processing failed"})

    return jsonify({"received": True})


@meta_bp.route("/sync-leads", methods=["POST"])
@login_required
def sync_leads():
    if not meta_service.list_connections():
        return jsonify({
            "success": True,
            "message": "No Meta connections found",
            "leads_imported": 0,
        })

    imported = meta_service.sync_leads()
    return jsonify({
        "success": True,
        "message": "Successfully synced leads from Meta",
        "leads_imported": imported,
    })


@meta_bp.route("/status", methods=["GET"])
@login_required
def status():
    connections = meta_service.list_connections()
    return jsonify({
        "connected": bool(connections),
        "pages": [
            {"page_id": c.page_id, "page_name": c.page_name}
            for c in connections
        ],
    })


@meta_bp.route("/disconnect", methods=["POST"])
@login_required
def disconnect():
    removed = meta_service.disconnect()
    return jsonify({"success": True, "removed": removed})
