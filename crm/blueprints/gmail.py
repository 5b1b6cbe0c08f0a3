"""Gmail blueprint — /api/gmail/*

All mailbox calls use the shared credential in the settings table and get
one automatic refresh-and-retry if Google rejects the access token.

Route Map:
  GET  /api/gmail/status     — connected? and which address
  GET  /api/gmail/auth-url   — Google consent URL
  GET  /api/gmail/callback   — OAuth redirect target, stores the credential
  POST /api/gmail/disconnect — forget the credential
  GET  /api/gmail/emails     — list inbox (max_results, query, label_ids)
  GET  /api/gmail/thread     — one thread, quoted text trimmed
  POST /api/gmail/send       — send or reply, stamps the lead's last_contacted
  POST /api/gmail/actions    — archive / trash / star / markAsRead / markAsUnread
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, jsonify, request
from flask_login import login_required

from crm.errors import ValidationError
from crm.extensions import db
from crm.models.activity import LeadActivity
from crm.models.email_log import EmailLog
from crm.services import gmail_service, lead_service

logger = logging.getLogger(__name__)

gmail_bp = Blueprint("gmail", __name__, url_prefix="/api/gmail")

MAX_RESULTS_CAP = 100


def _serialize(message):
    out = dict(message)
    if out.get("date") is not None:
        out["date"] = out["date"].isoformat()
    return out


@gmail_bp.route("/status", methods=["GET"])
@login_required
def status():
    setting = gmail_service.load_credential()
    if setting is None:
        return jsonify({"connected": False, "email": None})
    return jsonify({"connected": True, "email": (setting.value or {}).get("email")})


@gmail_bp.route("/auth-url", methods=["GET"])
@login_required
def auth_url():
    return jsonify({"url": gmail_service.get_auth_url()})


@gmail_bp.route("/callback", methods=["GET"])
def callback():
    error = request.args.get("error")
    if error:
        logger.warning(f"Gmail consent denied: {error}")
        return jsonify({"error": f"Gmail authorization failed: {error}"}), 400

    code = request.args.get("code")
    if not code:
        return jsonify({"error": "Missing authorization code"}), 400

    email = gmail_service.connect_with_code(code)
    return jsonify({"success": True, "email": email})


@gmail_bp.route("/disconnect", methods=["POST"])
@login_required
def disconnect():
    gmail_service.clear_credential()
    return jsonify({"success": True})


@gmail_bp.route("/emails", methods=["GET"])
@login_required
def list_emails():
    try:
        max_results = int(request.args.get("max_results", 20))
    except ValueError:
        raise ValidationError("max_results must be an integer")
    max_results = max(1, min(max_results, MAX_RESULTS_CAP))

    label_ids = [l for l in request.args.get("label_ids", "INBOX").split(",") if l]

    emails = gmail_service.call_with_mailbox(
        lambda mailbox: mailbox.list_messages(
            query=request.args.get("query") or None,
            max_results=max_results,
            label_ids=label_ids,
        )
    )
    return jsonify({"emails": [_serialize(m) for m in emails]})


@gmail_bp.route("/thread", methods=["GET"])
@login_required
def thread():
    thread_id = request.args.get("thread_id")
    if not thread_id:
        raise ValidationError("thread_id is required")

    messages = gmail_service.call_with_mailbox(
        lambda mailbox: mailbox.get_thread(thread_id)
    )
    return jsonify({"messages": [_serialize(m) for m in messages]})


@gmail_bp.route("/send", methods=["POST"])
@login_required
def send():
    data = request.get_json(silent=True) or {}
    to = (data.get("to") or "").strip()
    subject = data.get("subject") or ""
    body = data.get("body") or ""
    if not to or not body:
        raise ValidationError("to and body are required")

    # Resolve the lead first so a bad lead_id fails before anything is sent.
    if data.get("lead_id"):
        lead = lead_service.get_lead(data["lead_id"])
    else:
        lead = lead_service.find_by_email(to)
    lead_id = lead.id if lead else None

    message_id = gmail_service.call_with_mailbox(
        lambda mailbox: mailbox.send_message(
            to=to,
            subject=subject,
            body=body,
            thread_id=data.get("thread_id"),
            in_reply_to=data.get("in_reply_to"),
        )
    )

    # The email is out; a bookkeeping failure is logged, not reported.
    try:
        now = datetime.now(timezone.utc)
        db.session.add(EmailLog(
            lead_id=lead_id,
            subject=subject,
            body=body,
            gmail_message_id=message_id,
            thread_id=data.get("thread_id"),
            is_sent=True,
            sent_at=now,
        ))
        if lead is not None:
            lead.last_contacted = now
            db.session.add(LeadActivity(
                lead_id=lead_id,
                activity_type="email",
                description=f"Email sent: {subject or '(no subject)'}",
            ))
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Email {message_id} sent but logging failed: {e}")

    return jsonify({"success": True, "message_id": message_id})


@gmail_bp.route("/actions", methods=["POST"])
@login_required
def actions():
    data = request.get_json(silent=True) or {}
    action = data.get("action")
    message_id = data.get("message_id")

    if not message_id:
        raise ValidationError("message_id is required")
    if action != "trash" and action not in gmail_service.LABEL_ACTIONS:
        raise ValidationError(f"Unknown action '{action}'")

    gmail_service.call_with_mailbox(
        lambda mailbox: mailbox.perform_action(
            action, message_id, starred=data.get("starred", True)
        )
    )
    return jsonify({"success": True})
